# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""TacticalPicture — the live entity registry and its reconciliation loop.

Owns every Entity, FieldOfViewCone and RangeBearingLine on the picture.
Nothing else writes to these maps; readers get frozen records.

Inputs:
    - one snapshot ({euds, markers, rb_lines, casevacs}) at startup
    - a LiveEventStream of point / marker / eud / rb_line / casevac events

Per-uid lifecycle:
    Unseen -> Active(Connected) <-> Active(Disconnected) -> Removed
Removal is explicit only; silence never expires an entity.

Snapshot merge: the snapshot may resolve after live events have started
flowing.  Any uid a live event has already written is skipped when the
snapshot lands, so the fresher live state wins.

Malformed events are dropped, logged and counted at the handle() boundary;
one bad payload never stops the loop.

Change notifications go out on an optional EventBus:
    picture:entity_upserted, picture:entity_removed, picture:cone_updated,
    picture:cone_removed, picture:line_updated, picture:snapshot_loaded
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ravengrid.comms.live_events import (
    CasevacEvent,
    EudEvent,
    LiveEvent,
    MalformedEventError,
    MarkerEvent,
    PointData,
    PointEvent,
    RangeBearingLineEvent,
    parse_live_event,
)
from ravengrid.tactical.entities import (
    Entity,
    EntityKind,
    EntityStatus,
    FieldOfViewCone,
    Heading,
    IconRef,
    Position,
    RangeBearingLine,
    Style,
    UNKNOWN_POSITION,
)
from ravengrid.tactical.geo import (
    fov_cone,
    haversine_distance,
    initial_bearing,
)
from ravengrid.tactical.symbology import (
    SPOT_ICONSET_MARKER,
    RepresentationVariant,
    argb_to_hex,
    resolve,
)
from ravengrid.tactical import symbology

if TYPE_CHECKING:
    from ravengrid.comms.event_bus import EventBus
    from ravengrid.comms.live_events import LiveEventStream

logger = logging.getLogger("ravengrid.picture")

# Default CoT type of an EUD that never reported one (friendly ground unit, combat)
DEFAULT_UNIT_TYPE = "a-f-G-U-C"

# Snapshot section -> live event name
_SNAPSHOT_SECTIONS: tuple[tuple[str, str], ...] = (
    ("euds", "eud"),
    ("markers", "marker"),
    ("rb_lines", "rb_line"),
    ("casevacs", "casevac"),
)

SnapshotFetch = Callable[[], Awaitable["dict | None"]]


class SnapshotState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    APPLIED = "applied"
    FAILED = "failed"


def _position(point: PointData | None) -> Position:
    if point is None:
        return UNKNOWN_POSITION
    return Position(point.latitude, point.longitude, point.altitude)


def _icon(data: dict | None) -> IconRef | None:
    if not data:
        return None
    return IconRef(bitmap=data["bitmap"], shadow=data.get("shadow"))


class TacticalPicture:
    """Single-writer registry of everything on the tactical picture."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        fov_range_m: float = 100.0,
    ) -> None:
        self._event_bus = event_bus
        self._fov_range_m = fov_range_m

        self._entities: dict[str, Entity] = {}
        self._cones: dict[str, FieldOfViewCone] = {}
        self._lines: dict[str, RangeBearingLine] = {}
        # uids written by a live event; the snapshot must not overwrite them
        self._touched: set[str] = set()

        self._snapshot_state = SnapshotState.IDLE

        # Stats
        self._events_applied = 0
        self._events_dropped = 0
        self._points_rejected = 0
        self._points_unmatched = 0
        self._snapshot_applied = 0
        self._snapshot_skipped = 0

    # -----------------------------------------------------------------------
    # Read API
    # -----------------------------------------------------------------------

    @property
    def fov_range_m(self) -> float:
        return self._fov_range_m

    @property
    def snapshot_state(self) -> SnapshotState:
        return self._snapshot_state

    def get(self, uid: str) -> Entity | None:
        return self._entities.get(uid)

    def entities(self) -> list[Entity]:
        return list(self._entities.values())

    def cones(self) -> dict[str, FieldOfViewCone]:
        return dict(self._cones)

    def cone(self, uid: str) -> FieldOfViewCone | None:
        return self._cones.get(uid)

    def lines(self) -> dict[str, RangeBearingLine]:
        return dict(self._lines)

    def representation(self, uid: str) -> RepresentationVariant | None:
        entity = self._entities.get(uid)
        if entity is None:
            return None
        return resolve(entity)

    def __contains__(self, uid: object) -> bool:
        return uid in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    @property
    def stats(self) -> dict:
        return {
            "entities": len(self._entities),
            "cones": len(self._cones),
            "lines": len(self._lines),
            "events_applied": self._events_applied,
            "events_dropped": self._events_dropped,
            "points_rejected": self._points_rejected,
            "points_unmatched": self._points_unmatched,
            "snapshot_state": self._snapshot_state.value,
            "snapshot_applied": self._snapshot_applied,
            "snapshot_skipped": self._snapshot_skipped,
        }

    def entity_to_dict(self, entity: Entity) -> dict[str, Any]:
        d = entity.to_dict()
        d["representation"] = symbology.to_dict(resolve(entity))
        return d

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [self.entity_to_dict(e) for e in self._entities.values()],
            "cones": [c.to_dict() for c in self._cones.values()],
            "lines": [ln.to_dict() for ln in self._lines.values()],
            "stats": self.stats,
        }

    # -----------------------------------------------------------------------
    # Handler boundary
    # -----------------------------------------------------------------------

    def handle(self, event: LiveEvent) -> bool:
        """Apply one typed live event.  Never raises on bad data."""
        return self._guarded(getattr(event, "name", "?"), event, live=True)

    def handle_raw(self, name: str, payload: Any) -> bool:
        """Parse and apply a raw socket payload.  Never raises on bad data."""
        return self._guarded(name, payload, live=True)

    def _guarded(self, name: str, payload: Any, live: bool) -> bool:
        """Single entry for every write: malformed input is dropped and counted."""
        try:
            applied = self._apply(self._coerce(name, payload), live)
        except MalformedEventError as e:
            self._events_dropped += 1
            logger.warning(f"Dropped malformed {name} event: {e}")
            return False
        if applied:
            self._events_applied += 1
        return applied

    def _apply(self, event: LiveEvent, live: bool) -> bool:
        if isinstance(event, PointEvent):
            return self._apply_point(event, live)
        if isinstance(event, EudEvent):
            return self._apply_eud(event, live)
        if isinstance(event, MarkerEvent):
            return self._apply_marker(event, live)
        if isinstance(event, RangeBearingLineEvent):
            return self._apply_rb_line(event, live)
        if isinstance(event, CasevacEvent):
            return self._apply_casevac(event, live)
        raise MalformedEventError(f"unsupported event type: {type(event).__name__}")

    @staticmethod
    def _coerce(name: str, value: Any) -> LiveEvent:
        """Accept either a typed event of kind ``name`` or its raw payload dict."""
        if isinstance(value, dict):
            return parse_live_event(name, value)
        if getattr(value, "name", None) != name:
            raise MalformedEventError(f"expected a {name} event, got {type(value).__name__}")
        return value

    # -----------------------------------------------------------------------
    # Snapshot
    # -----------------------------------------------------------------------

    def apply_snapshot(self, snapshot: dict) -> int:
        """Bulk upsert from a snapshot, skipping uids live events already wrote.

        Returns:
            Number of snapshot items applied.
        """
        applied = 0
        for section, name in _SNAPSHOT_SECTIONS:
            for item in snapshot.get(section) or []:
                uid = item.get("uid") if isinstance(item, dict) else None
                if uid in self._touched:
                    self._snapshot_skipped += 1
                    logger.debug(f"Snapshot {name} {uid} skipped, live state is newer")
                    continue
                try:
                    event = parse_live_event(name, item)
                    ok = self._apply(event, live=False)
                except MalformedEventError as e:
                    self._events_dropped += 1
                    logger.warning(f"Dropped malformed snapshot {name}: {e}")
                    continue
                if ok:
                    applied += 1
        self._snapshot_applied += applied
        self._snapshot_state = SnapshotState.APPLIED
        logger.info(
            f"Snapshot applied: {applied} items, {self._snapshot_skipped} skipped"
        )
        self._publish("picture:snapshot_loaded", {"applied": applied})
        return applied

    async def load_snapshot(self, fetch: SnapshotFetch) -> int:
        """Fetch and apply the snapshot.

        A failed fetch leaves the picture as it is (empty at startup) and
        sets the state to FAILED; live processing is unaffected.
        """
        if self._snapshot_state is SnapshotState.IN_FLIGHT:
            logger.debug("Snapshot already in flight")
            return 0
        self._snapshot_state = SnapshotState.IN_FLIGHT
        try:
            data = await fetch()
        except Exception as e:
            logger.warning(f"Snapshot fetch raised: {e}")
            data = None
        if data is None:
            self._snapshot_state = SnapshotState.FAILED
            logger.warning("Snapshot unavailable, continuing with live events only")
            return 0
        return self.apply_snapshot(data)

    # -----------------------------------------------------------------------
    # Live loop
    # -----------------------------------------------------------------------

    async def run(self, stream: LiveEventStream) -> None:
        """Consume ``stream`` until it is closed, one event at a time."""
        logger.info("Live reconciliation loop started")
        async for event in stream:
            try:
                self.handle(event)
            except Exception:
                self._events_dropped += 1
                logger.exception(f"Unexpected error handling {getattr(event, 'name', '?')} event")
        logger.info("Live reconciliation loop stopped")

    # -----------------------------------------------------------------------
    # Upserts
    # -----------------------------------------------------------------------

    # Public writers take a typed event or its raw payload; none of them
    # raise on malformed input.

    def apply_point_update(self, payload: PointEvent | dict, *, live: bool = True) -> bool:
        """Move an existing entity.  Unknown uids and invalid coordinates are ignored."""
        return self._guarded("point", payload, live)

    def apply_entity_upsert(self, payload: EudEvent | dict, *, live: bool = True) -> bool:
        """Create or update a unit track (EUD)."""
        return self._guarded("eud", payload, live)

    def apply_marker(self, payload: MarkerEvent | dict, *, live: bool = True) -> bool:
        """Create or update a static or spot-map marker."""
        return self._guarded("marker", payload, live)

    def apply_range_bearing_line(
        self, payload: RangeBearingLineEvent | dict, *, live: bool = True,
    ) -> bool:
        """Create or update a range/bearing line and its measurement."""
        return self._guarded("rb_line", payload, live)

    def apply_casevac(self, payload: CasevacEvent | dict, *, live: bool = True) -> bool:
        """Create or update a casualty evacuation request marker."""
        return self._guarded("casevac", payload, live)

    def _apply_point(self, event: PointEvent, live: bool) -> bool:
        point = event.point

        uid = event.uid
        if uid not in self._entities and point.device_uid in self._entities:
            uid = point.device_uid
        current = self._entities.get(uid)
        if current is None:
            self._points_unmatched += 1
            logger.debug(f"Point for unknown uid {event.uid} ignored")
            return False

        position = _position(point)
        if not position.known:
            # 999999 is the server's "no fix"; keep the last good position
            self._points_rejected += 1
            logger.debug(
                f"Point for {uid} rejected: ({point.latitude}, {point.longitude})"
            )
            return False

        changes: dict[str, Any] = {
            "position": position,
            "heading": Heading(point.azimuth, point.course),
        }
        if point.fov is not None:
            changes["fov_deg"] = point.fov
        if point.type:
            changes["style"] = replace(current.style, cot_type=point.type)

        self._store(current.evolve(**changes), live)
        return True

    def _apply_eud(self, event: EudEvent, live: bool) -> bool:
        current = self._entities.get(event.uid)
        lp = event.last_point

        position = _position(lp)
        if not position.known:
            position = current.position if current is not None else UNKNOWN_POSITION

        if lp is not None:
            heading = Heading(lp.azimuth, lp.course)
        elif current is not None:
            heading = current.heading
        else:
            heading = Heading()

        if lp is not None and lp.fov is not None:
            fov = lp.fov
        else:
            fov = current.fov_deg if current is not None else None

        if lp is not None and lp.type:
            cot_type = lp.type
        elif event.type:
            cot_type = event.type
        elif current is not None and current.style.cot_type:
            cot_type = current.style.cot_type
        else:
            cot_type = DEFAULT_UNIT_TYPE

        entity = Entity(
            uid=event.uid,
            kind=EntityKind.UNIT_TRACK,
            callsign=event.callsign or (current.callsign if current else ""),
            position=position,
            heading=heading,
            status=EntityStatus.parse(event.last_status),
            style=Style(team_color=event.team_color, cot_type=cot_type),
            fov_deg=fov,
        )
        self._store(entity, live)
        return True

    def _apply_marker(self, event: MarkerEvent, live: bool) -> bool:
        current = self._entities.get(event.uid)

        spot = bool(event.iconset_path) and SPOT_ICONSET_MARKER in event.iconset_path
        position = _position(event.point)
        if not position.known and current is not None:
            position = current.position

        entity = Entity(
            uid=event.uid,
            kind=EntityKind.SPOT_MARKER if spot else EntityKind.STATIC_MARKER,
            callsign=event.callsign,
            position=position,
            heading=Heading(event.point.azimuth, event.point.course),
            style=Style(
                color_hex=event.color_hex,
                classification_code=event.classification_code,
                icon=_icon(event.icon),
                iconset_path=event.iconset_path,
                battle_dimension=event.battle_dimension,
                cot_type=event.point.type,
            ),
        )
        self._store(entity, live)
        return True

    def _apply_rb_line(self, event: RangeBearingLineEvent, live: bool) -> bool:
        start_pos = _position(event.point)
        end_pos = Position(event.end_latitude, event.end_longitude)
        if not (start_pos.known and end_pos.known):
            raise MalformedEventError(f"rb_line {event.uid} has an invalid endpoint")

        start = start_pos.to_latlon()
        end = end_pos.to_latlon()
        line = RangeBearingLine(
            uid=event.uid,
            start=start,
            end=end,
            color_hex=argb_to_hex(event.color_hex),
            stroke_weight=event.stroke_weight,
            length_m=haversine_distance(start, end),
            bearing_deg=initial_bearing(start, end),
        )
        self._lines[event.uid] = line

        entity = Entity(
            uid=event.uid,
            kind=EntityKind.RANGE_BEARING_LINE,
            position=start_pos,
            style=Style(color_hex=event.color_hex),
        )
        self._store(entity, live)
        self._publish("picture:line_updated", line.to_dict())
        return True

    def _apply_casevac(self, event: CasevacEvent, live: bool) -> bool:
        current = self._entities.get(event.uid)
        position = _position(event.point)
        if not position.known and current is not None:
            position = current.position

        entity = Entity(
            uid=event.uid,
            kind=EntityKind.CASEVAC_REQUEST,
            callsign=event.title,
            position=position,
            style=Style(icon=_icon(event.icon)),
        )
        self._store(entity, live)
        return True

    # -----------------------------------------------------------------------
    # Removal
    # -----------------------------------------------------------------------

    def remove(self, uid: str) -> bool:
        """Drop an entity with its cone and line.  False if it was not present."""
        entity = self._entities.pop(uid, None)
        self._lines.pop(uid, None)
        self._drop_cone(uid)
        if entity is None:
            return False
        logger.debug(f"Removed {entity.kind.value} {uid}")
        self._publish("picture:entity_removed", {"uid": uid})
        return True

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _store(self, entity: Entity, live: bool) -> None:
        self._entities[entity.uid] = entity
        if live:
            self._touched.add(entity.uid)
        self._publish("picture:entity_upserted", self.entity_to_dict(entity))
        self._refresh_cone(entity)

    def _refresh_cone(self, entity: Entity) -> None:
        """Rebuild the owner's cone from its current state on every write.

        A cone needs a connected unit with a known position, a facing
        (azimuth, else course) and a FOV; without any of these it is removed.
        """
        facing = entity.heading.facing
        if (
            entity.kind is not EntityKind.UNIT_TRACK
            or not entity.connected
            or facing is None
            or entity.fov_deg is None
            or not entity.position.known
        ):
            self._drop_cone(entity.uid)
            return

        origin, left, right = fov_cone(
            entity.position.to_latlon(), facing, entity.fov_deg, self._fov_range_m,
        )
        cone = FieldOfViewCone(
            owner_uid=entity.uid,
            origin=origin,
            left=left,
            right=right,
            azimuth_deg=facing,
            fov_deg=entity.fov_deg,
            range_m=self._fov_range_m,
        )
        self._cones[entity.uid] = cone
        self._publish("picture:cone_updated", cone.to_dict())

    def _drop_cone(self, uid: str) -> None:
        if self._cones.pop(uid, None) is not None:
            self._publish("picture:cone_removed", {"owner_uid": uid})

    def _publish(self, topic: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(topic, data)
