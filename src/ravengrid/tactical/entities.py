# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Entity model shared by the picture, the symbology resolver and the codecs.

Records are frozen.  The picture owns the registry and replaces a record on
every update; everyone else only ever sees read-only snapshots.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ravengrid.tactical.geo import LatLon

# Server-side placeholder for "no fix yet"
UNKNOWN_COORDINATE = 999999.0


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class EntityKind(str, Enum):
    """What an entity on the picture represents."""
    UNIT_TRACK = "unit_track"
    STATIC_MARKER = "static_marker"
    SPOT_MARKER = "spot_marker"
    CASEVAC_REQUEST = "casevac_request"
    RANGE_BEARING_LINE = "range_bearing_line"
    FIELD_OF_VIEW = "field_of_view"


class EntityStatus(str, Enum):
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"

    @classmethod
    def parse(cls, value: str | None) -> "EntityStatus":
        """Anything other than an exact "Connected" counts as disconnected."""
        if value == cls.CONNECTED.value:
            return cls.CONNECTED
        return cls.DISCONNECTED


# ---------------------------------------------------------------------------
# Value records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Position:
    """WGS84 position.  Out-of-range values mean "unknown position"."""

    lat: float = UNKNOWN_COORDINATE
    lon: float = UNKNOWN_COORDINATE
    alt: float | None = None

    @property
    def known(self) -> bool:
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lon <= 180.0

    def to_latlon(self) -> LatLon:
        return LatLon(self.lat, self.lon)

    def to_dict(self) -> dict[str, Any]:
        return {"lat": self.lat, "lon": self.lon, "alt": self.alt, "known": self.known}


UNKNOWN_POSITION = Position()


@dataclass(frozen=True)
class Heading:
    azimuth: float | None = None
    course: float | None = None

    @property
    def facing(self) -> float | None:
        """Azimuth wins; course is the fallback."""
        if self.azimuth is not None:
            return self.azimuth
        return self.course


@dataclass(frozen=True)
class IconRef:
    """Opaque icon asset reference, passed through untouched."""

    bitmap: str
    shadow: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"bitmap": self.bitmap, "shadow": self.shadow}


@dataclass(frozen=True)
class Style:
    team_color: str | None = None         # TAK team name, e.g. "Cyan"
    color_hex: str | None = None          # ARGB hex as sent by the server
    classification_code: str | None = None  # MIL-STD-2525C symbol code
    icon: IconRef | None = None
    iconset_path: str | None = None
    cot_type: str | None = None
    battle_dimension: str | None = None


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Entity:
    """One trackable object on the tactical picture."""

    uid: str
    kind: EntityKind
    callsign: str = ""
    position: Position = UNKNOWN_POSITION
    heading: Heading = field(default_factory=Heading)
    status: EntityStatus | None = None    # only unit tracks carry a status
    style: Style = field(default_factory=Style)
    fov_deg: float | None = None

    @property
    def connected(self) -> bool:
        return self.status is EntityStatus.CONNECTED

    def evolve(self, **changes: Any) -> "Entity":
        """Return a new record with ``changes`` applied."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "kind": self.kind.value,
            "callsign": self.callsign,
            "position": self.position.to_dict(),
            "azimuth": self.heading.azimuth,
            "course": self.heading.course,
            "status": self.status.value if self.status is not None else None,
            "team_color": self.style.team_color,
            "color_hex": self.style.color_hex,
            "classification_code": self.style.classification_code,
            "icon": self.style.icon.to_dict() if self.style.icon else None,
            "iconset_path": self.style.iconset_path,
            "cot_type": self.style.cot_type,
            "fov": self.fov_deg,
        }


@dataclass(frozen=True)
class FieldOfViewCone:
    """Triangle of a connected unit's angular coverage, keyed by owner uid."""

    owner_uid: str
    origin: LatLon
    left: LatLon
    right: LatLon
    azimuth_deg: float
    fov_deg: float
    range_m: float

    @property
    def vertices(self) -> tuple[LatLon, LatLon, LatLon]:
        return (self.origin, self.left, self.right)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": EntityKind.FIELD_OF_VIEW.value,
            "owner_uid": self.owner_uid,
            "vertices": [v.to_dict() for v in self.vertices],
            "azimuth": self.azimuth_deg,
            "fov": self.fov_deg,
            "range_m": self.range_m,
        }


@dataclass(frozen=True)
class RangeBearingLine:
    uid: str
    start: LatLon
    end: LatLon
    color_hex: str = "#ffffff"
    stroke_weight: float = 1.0
    length_m: float = 0.0
    bearing_deg: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": EntityKind.RANGE_BEARING_LINE.value,
            "uid": self.uid,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "color": self.color_hex,
            "weight": self.stroke_weight,
            "length_m": self.length_m,
            "bearing": self.bearing_deg,
        }
