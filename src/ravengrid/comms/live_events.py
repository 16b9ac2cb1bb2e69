# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Live event channel — typed events from the map server's socket feed.

Raw socket payloads are dicts keyed by event name ("point", "marker", "eud",
"rb_line", "casevac").  parse_live_event() turns one into a typed event or
raises MalformedEventError; LiveEventStream is the single inbound channel
the picture's reconciliation loop consumes, in arrival order.

Overflow policy matches the CoT TX queue: when full, the oldest event is
dropped to make room.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Union

logger = logging.getLogger("ravengrid.live")

_LIVE_QUEUE_MAX = 1000


class MalformedEventError(ValueError):
    """A live payload that cannot be turned into an event."""


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PointData:
    """A ``point`` object as embedded in markers, EUDs, lines and casevacs."""

    latitude: float
    longitude: float
    altitude: float | None = None
    azimuth: float | None = None
    course: float | None = None
    fov: float | None = None
    type: str | None = None
    device_uid: str | None = None


@dataclass(frozen=True)
class PointEvent:
    uid: str
    point: PointData
    name = "point"


@dataclass(frozen=True)
class MarkerEvent:
    uid: str
    point: PointData
    callsign: str = ""
    color_hex: str | None = None
    classification_code: str | None = None
    icon: dict | None = None
    iconset_path: str | None = None
    battle_dimension: str | None = None
    name = "marker"


@dataclass(frozen=True)
class EudEvent:
    uid: str
    callsign: str = ""
    team_color: str | None = None
    last_status: str | None = None
    last_point: PointData | None = None
    type: str | None = None
    name = "eud"


@dataclass(frozen=True)
class RangeBearingLineEvent:
    uid: str
    point: PointData
    end_latitude: float
    end_longitude: float
    color_hex: str | None = None
    stroke_weight: float = 1.0
    name = "rb_line"


@dataclass(frozen=True)
class CasevacEvent:
    uid: str
    point: PointData
    title: str = ""
    icon: dict | None = None
    name = "casevac"


LiveEvent = Union[PointEvent, MarkerEvent, EudEvent, RangeBearingLineEvent, CasevacEvent]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _require_uid(payload: dict) -> str:
    uid = payload.get("uid")
    if not uid or not isinstance(uid, str):
        raise MalformedEventError("payload has no uid")
    return uid


def _num(value: Any, name: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedEventError(f"{name} is not a number: {value!r}") from None


def _point(data: Any, field_name: str = "point") -> PointData:
    if not isinstance(data, dict):
        raise MalformedEventError(f"{field_name} missing or not an object")
    lat = _num(data.get("latitude"), "latitude")
    lon = _num(data.get("longitude"), "longitude")
    if lat is None or lon is None:
        raise MalformedEventError(f"{field_name} has no latitude/longitude")
    return PointData(
        latitude=lat,
        longitude=lon,
        altitude=_num(data.get("altitude"), "altitude"),
        azimuth=_num(data.get("azimuth"), "azimuth"),
        course=_num(data.get("course"), "course"),
        fov=_num(data.get("fov"), "fov"),
        type=data.get("type"),
        device_uid=data.get("device_uid"),
    )


def _icon(data: Any) -> dict | None:
    if data is None:
        return None
    if not isinstance(data, dict) or not data.get("bitmap"):
        raise MalformedEventError("icon must be an object with a bitmap")
    return {"bitmap": data["bitmap"], "shadow": data.get("shadow")}


def _parse_point(payload: dict) -> PointEvent:
    return PointEvent(uid=_require_uid(payload), point=_point(payload, "point event"))


def _parse_marker(payload: dict) -> MarkerEvent:
    code = payload.get("mil_std_2525c") or payload.get("classification_code")
    return MarkerEvent(
        uid=_require_uid(payload),
        point=_point(payload.get("point")),
        callsign=payload.get("callsign") or "",
        color_hex=payload.get("color_hex"),
        classification_code=code or None,
        icon=_icon(payload.get("icon")),
        iconset_path=payload.get("iconset_path"),
        battle_dimension=payload.get("battle_dimension"),
    )


def _parse_eud(payload: dict) -> EudEvent:
    last_point = payload.get("last_point")
    return EudEvent(
        uid=_require_uid(payload),
        callsign=payload.get("callsign") or "",
        team_color=payload.get("team_color"),
        last_status=payload.get("last_status"),
        last_point=_point(last_point, "last_point") if last_point is not None else None,
        type=payload.get("type"),
    )


def _parse_rb_line(payload: dict) -> RangeBearingLineEvent:
    end_lat = _num(payload.get("end_latitude"), "end_latitude")
    end_lon = _num(payload.get("end_longitude"), "end_longitude")
    if end_lat is None or end_lon is None:
        raise MalformedEventError("rb_line has no end point")
    weight = _num(payload.get("stroke_weight"), "stroke_weight")
    return RangeBearingLineEvent(
        uid=_require_uid(payload),
        point=_point(payload.get("point")),
        end_latitude=end_lat,
        end_longitude=end_lon,
        color_hex=payload.get("color_hex"),
        stroke_weight=weight if weight is not None else 1.0,
    )


def _parse_casevac(payload: dict) -> CasevacEvent:
    return CasevacEvent(
        uid=_require_uid(payload),
        point=_point(payload.get("point")),
        title=payload.get("title") or "",
        icon=_icon(payload.get("icon")),
    )


_PARSERS = {
    "point": _parse_point,
    "marker": _parse_marker,
    "eud": _parse_eud,
    "rb_line": _parse_rb_line,
    "casevac": _parse_casevac,
}

EVENT_NAMES = tuple(_PARSERS)


def parse_live_event(name: str, payload: Any) -> LiveEvent:
    """Raw (event name, payload) -> typed event.

    Raises:
        MalformedEventError: unknown event name, non-dict payload, missing
            uid or point, or non-numeric coordinates.
    """
    parser = _PARSERS.get(name)
    if parser is None:
        raise MalformedEventError(f"unknown event kind: {name!r}")
    if not isinstance(payload, dict):
        raise MalformedEventError(f"{name} payload is not an object")
    return parser(payload)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class LiveEventStream:
    """Bounded, single-consumer channel of typed live events.

    Producers call publish() (raw payloads) or put() (typed events); the
    consumer iterates with ``async for``.  close() ends the iteration once
    the queued events are drained.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = _LIVE_QUEUE_MAX) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._received = 0
        self._dropped_malformed = 0
        self._dropped_overflow = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict:
        return {
            "received": self._received,
            "dropped_malformed": self._dropped_malformed,
            "dropped_overflow": self._dropped_overflow,
            "queued": self._queue.qsize(),
            "closed": self._closed,
        }

    def publish(self, name: str, payload: Any) -> bool:
        """Parse and enqueue a raw payload.  Malformed payloads are dropped."""
        try:
            event = parse_live_event(name, payload)
        except MalformedEventError as e:
            self._dropped_malformed += 1
            logger.warning(f"Dropped malformed {name} event: {e}")
            return False
        return self.put(event)

    def put(self, event: LiveEvent) -> bool:
        if self._closed:
            return False
        self._received += 1
        self._put(event)
        return True

    def _put(self, item: Any) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # Drop oldest to make room
            try:
                self._queue.get_nowait()
                self._dropped_overflow += 1
            except asyncio.QueueEmpty:
                pass
            try:
                self._queue.put_nowait(item)
            except asyncio.QueueFull:
                pass

    def close(self) -> None:
        """Stop accepting events; the consumer finishes what is queued."""
        if self._closed:
            return
        self._closed = True
        # Never evicts a queued event; on a full queue the flag ends iteration
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> AsyncIterator[LiveEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LiveEvent]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
