# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Symbology resolver — picks how an entity is drawn.

resolve() maps an Entity to exactly one representation variant:

    ArmySymbol   MIL-STD-2525C symbol code + facing + affiliation color
    VideoGlyph   video-stream unit (OpenTAK ICU and friends)
    SpotCircle   small colored circle for spot-map markers
    IconAsset    icon reference passed through unmodified
    DefaultPin   plain pin, tinted with the team color

Rules are evaluated in priority order; the first match wins.  The resolver
is pure and never touches the entity it is given.

Also holds the RF detection styling used on the sensor map.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ravengrid.tactical.entities import Entity, EntityKind, IconRef

# CoT type of a video stream location report
VIDEO_STREAM_TYPE = "b-m-p-s-p-loc"

# Iconset path fragment that marks a spot-map marker
SPOT_ICONSET_MARKER = "COT_MAPPING_SPOTMAP"

# Fixed icon for casualty evacuation requests
MEDEVAC_ICON = IconRef(
    bitmap="/map_icons/medevac.png",
    shadow="/map_icons/marker-shadow.png",
)

AFFILIATION_COLORS: dict[str, str] = {
    "friendly": "#00ffff",
    "hostile":  "#ff0000",
    "neutral":  "#00ff00",
    "unknown":  "#ffa500",
}

# 2525C position 2 (standard identity)
_SIDC_AFFILIATION: dict[str, str] = {
    "F": "friendly", "A": "friendly", "D": "friendly", "M": "friendly",
    "H": "hostile",  "S": "hostile",  "J": "hostile",  "K": "hostile",
    "N": "neutral",  "L": "neutral",
}

# CoT atom affiliation char: a-{f/h/n/u}-...
_COT_AFFILIATION: dict[str, str] = {
    "f": "friendly",
    "a": "friendly",
    "h": "hostile",
    "s": "hostile",
    "j": "hostile",
    "k": "hostile",
    "n": "neutral",
}


# ---------------------------------------------------------------------------
# Representation variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ArmySymbol:
    code: str
    direction_deg: float | None
    color_hex: str
    kind: str = "army_symbol"


@dataclass(frozen=True)
class VideoGlyph:
    kind: str = "video"


@dataclass(frozen=True)
class SpotCircle:
    color_hex: str
    radius_m: float = 5.0
    kind: str = "spot_circle"


@dataclass(frozen=True)
class IconAsset:
    bitmap: str
    shadow: str | None = None
    kind: str = "icon"


@dataclass(frozen=True)
class DefaultPin:
    color_hex: str | None = None
    connected: bool = False
    kind: str = "default_pin"


RepresentationVariant = Union[ArmySymbol, VideoGlyph, SpotCircle, IconAsset, DefaultPin]


def to_dict(variant: RepresentationVariant) -> dict[str, Any]:
    """Flatten a variant for JSON responses."""
    return dict(variant.__dict__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def argb_to_hex(color: str | None, default: str = "#ffffff") -> str:
    """TAK ARGB hex ("ff00ff00") -> CSS "#00ff00".

    The first two characters are alpha and are dropped.  Anything that is
    not 8 hex digits comes back as ``default``.
    """
    if not color:
        return default
    value = color[1:] if color.startswith("#") else color
    if len(value) != 8:
        return default
    try:
        int(value, 16)
    except ValueError:
        return default
    return f"#{value[2:].lower()}"


def affiliation_of(classification_code: str | None, cot_type: str | None = None) -> str:
    """friendly / hostile / neutral / unknown.

    Prefers the 2525C code; falls back to the CoT type's affiliation char.
    Anything unresolvable is "unknown".
    """
    if classification_code and len(classification_code) >= 2:
        affil = _SIDC_AFFILIATION.get(classification_code[1].upper())
        if affil is not None:
            return affil
        return "unknown"
    if cot_type and cot_type.startswith("a-") and len(cot_type) >= 3:
        return _COT_AFFILIATION.get(cot_type[2].lower(), "unknown")
    return "unknown"


def is_spot_marker(entity: Entity) -> bool:
    if entity.kind is EntityKind.SPOT_MARKER:
        return True
    path = entity.style.iconset_path
    return bool(path) and SPOT_ICONSET_MARKER in path


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve(entity: Entity) -> RepresentationVariant:
    """Representation for ``entity``, first matching rule wins."""
    style = entity.style

    if entity.kind is EntityKind.UNIT_TRACK and style.cot_type == VIDEO_STREAM_TYPE:
        return VideoGlyph()

    if style.classification_code and style.icon is None:
        affil = affiliation_of(style.classification_code, style.cot_type)
        return ArmySymbol(
            code=style.classification_code,
            direction_deg=entity.heading.facing,
            color_hex=AFFILIATION_COLORS[affil],
        )

    if style.icon is not None:
        return IconAsset(bitmap=style.icon.bitmap, shadow=style.icon.shadow)

    if is_spot_marker(entity):
        return SpotCircle(color_hex=argb_to_hex(style.color_hex))

    if entity.kind is EntityKind.CASEVAC_REQUEST:
        return IconAsset(bitmap=MEDEVAC_ICON.bitmap, shadow=MEDEVAC_ICON.shadow)

    return DefaultPin(color_hex=style.team_color, connected=entity.connected)


# ---------------------------------------------------------------------------
# RF detection styling
# ---------------------------------------------------------------------------

def detection_color(signal_type: str, confidence: float) -> str:
    """Marker color for an RF detection on the sensor map."""
    if "Jamming" in signal_type:
        return "#ff4444"
    if "Radar" in signal_type:
        return "#ffaa00"
    if "Tactical" in signal_type:
        return "#64ffda"
    if confidence > 0.8:
        return "#00ff88"
    return "#00aaff"


def detection_marker_size(power_dbm: float) -> float:
    """Marker radius in pixels: stronger signals draw bigger, clamped to 20..40."""
    return max(20.0, min(40.0, power_dbm + 100.0))
