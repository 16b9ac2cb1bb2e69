# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""CoT (Cursor on Target) encoding of RF sensor detections.

Pure functions for turning RF detections and sensor descriptors into CoT
events, and CoT events to/from XML.  Only xml.etree.ElementTree underneath.

The signal-type table, the how code and the ce/le constants are an
interoperability contract with the receiving TAK server; do not tune them.
The transport (HTTP POST to the server's CoT endpoint) lives in dispatch.py.

Reference: https://git.tak.gov/standards/cot
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ravengrid.tactical.entities import Position

# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------

SIGNAL_TYPE_MAP: dict[str, str] = {
    # Friendly communications
    "FM Broadcast":   "a-f-G-E-V-R",
    "WiFi 2.4GHz":    "a-f-G-E-W-C",
    "WiFi 5GHz":      "a-f-G-E-W-C",
    "Bluetooth":      "a-f-G-E-W-C",
    # Cellular / commercial
    "Cellular":       "a-n-G-E-C",
    "TV Broadcast":   "a-n-G-E-V-T",
    # Tactical / military
    "Tactical Radio": "a-f-G-E-V-M",
    "SATCOM":         "a-f-G-E-S",
    # Unknown / suspicious
    "Unknown":        "a-u-G-E-S",
    "Jamming":        "a-h-G-E-S-J",
    # Radar
    "Radar":          "a-u-G-E-S-R",
    "Search Radar":   "a-u-G-E-S-R-S",
    "Track Radar":    "a-u-G-E-S-R-T",
}

DEFAULT_COT_TYPE = "a-u-G-E-S"
SENSOR_COT_TYPE = "a-f-G-E-S"

HOW_MACHINE_GENERATED = "m-g"
LINK_RELATION_PARENT = "p-p"

# Positional uncertainty of an RF fix (meters)
DETECTION_CE = 25.0
DETECTION_LE = 100.0
SENSOR_CE = 10.0
SENSOR_LE = 10.0

# Bearing-line sensor block attached to a detection
DETECTION_FOV_DEG = 15.0
DETECTION_RANGE_M = 5000.0
# Omnidirectional sensor coverage
SENSOR_FOV_DEG = 360.0
SENSOR_RANGE_M = 10000.0

DETECTION_TTL_MINUTES = 5
SENSOR_TTL_MINUTES = 30

TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

def parse_timestamp(value: str | datetime) -> datetime:
    """ISO-8601 string or datetime -> aware UTC datetime.

    Naive datetimes are taken to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_time(dt: datetime) -> str:
    return parse_timestamp(dt).strftime(TIME_FORMAT)


@dataclass
class RFDetection:
    """A single RF emission observed by a sensor."""

    sensor_id: str
    sensor_name: str
    timestamp: datetime
    frequency_hz: float
    power_dbm: float
    bandwidth_hz: float
    signal_type: str
    classification: str
    confidence: float
    location: Position
    bearing: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        self.timestamp = parse_timestamp(self.timestamp)

    @property
    def frequency_mhz(self) -> float:
        return self.frequency_hz / 1e6

    @property
    def bandwidth_khz(self) -> float:
        return self.bandwidth_hz / 1e3

    @classmethod
    def from_dict(cls, data: dict) -> "RFDetection":
        """Build from the JSON shape the sensor API uses."""
        loc = data["location"]
        return cls(
            sensor_id=data.get("sensor_id", ""),
            sensor_name=data.get("sensor_name", ""),
            timestamp=data["timestamp"],
            frequency_hz=float(data["frequency_hz"]),
            power_dbm=float(data["power_dbm"]),
            bandwidth_hz=float(data.get("bandwidth_hz", 0.0)),
            signal_type=data.get("signal_type", "Unknown"),
            classification=data.get("classification", ""),
            confidence=float(data.get("confidence", 0.0)),
            location=Position(float(loc["lat"]), float(loc["lon"]), loc.get("alt")),
            bearing=data.get("bearing"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SensorDescriptor:
    """An RF sensor itself, published so it shows on TAK clients."""

    id: str
    name: str
    location: Position
    status: str = "online"
    frequency_range: tuple[float, float] | None = None   # (min_hz, max_hz)


# ---------------------------------------------------------------------------
# CoT event records
# ---------------------------------------------------------------------------

@dataclass
class CoTPoint:
    lat: float
    lon: float
    hae: float = 0.0
    ce: float = 9999999.0
    le: float = 9999999.0


@dataclass
class RFSignal:
    frequency_mhz: float
    power_dbm: float
    bandwidth_khz: float
    signal_type: str
    classification: str
    confidence: float
    modulation: str | None = None
    snr_db: float | None = None


@dataclass
class SensorDetail:
    fov: float | None = None
    range: float | None = None
    azimuth: float | None = None
    elevation: float | None = None


@dataclass
class CoTLink:
    uid: str
    relation: str
    type: str


@dataclass
class CoTDetail:
    callsign: str | None = None
    remarks: str | None = None
    rf_signal: RFSignal | None = None
    sensor: SensorDetail | None = None
    links: list[CoTLink] = field(default_factory=list)


@dataclass
class CoTEvent:
    uid: str
    type: str
    how: str
    time: datetime
    start: datetime
    stale: datetime
    point: CoTPoint
    detail: CoTDetail = field(default_factory=CoTDetail)
    version: str = "2.0"


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def signal_type_to_cot_type(signal_type: str) -> str:
    """Closed-table lookup; anything unlisted is unknown ground equipment."""
    return SIGNAL_TYPE_MAP.get(signal_type, DEFAULT_COT_TYPE)


def detection_uid(detection: RFDetection) -> str:
    """Deterministic uid: sensor prefix + frequency (Hz resolution) + epoch microseconds."""
    epoch_us = (detection.timestamp - _EPOCH) // timedelta(microseconds=1)
    return f"RF-{detection.sensor_id[:8]}-{detection.frequency_mhz:.6f}-{epoch_us}"


def detection_remarks(detection: RFDetection) -> str:
    lines = [
        f"RF Detection: {detection.signal_type}",
        f"Frequency: {detection.frequency_mhz:.3f} MHz",
        f"Power: {detection.power_dbm:.1f} dBm",
        f"Bandwidth: {detection.bandwidth_khz:.1f} kHz",
        f"Classification: {detection.classification}",
        f"Confidence: {detection.confidence * 100:.0f}%",
        f"Sensor: {detection.sensor_name}",
    ]
    if detection.bearing is not None:
        lines.append(f"Bearing: {detection.bearing:.0f}°")
    return "\n".join(lines)


def encode_detection(
    detection: RFDetection,
    ttl_minutes: int = DETECTION_TTL_MINUTES,
) -> CoTEvent:
    """Build the CoT event for one RF detection.

    Args:
        detection: The detection to encode
        ttl_minutes: Minutes after the detection time until the marker goes stale

    Returns:
        CoTEvent with time == start == detection.timestamp
    """
    time = detection.timestamp
    meta = detection.metadata or {}
    snr = meta.get("snr_db")

    detail = CoTDetail(
        callsign=f"{detection.signal_type} {detection.frequency_mhz:.1f}MHz",
        remarks=detection_remarks(detection),
        rf_signal=RFSignal(
            frequency_mhz=detection.frequency_mhz,
            power_dbm=float(detection.power_dbm),
            bandwidth_khz=detection.bandwidth_khz,
            signal_type=detection.signal_type,
            classification=detection.classification,
            confidence=float(detection.confidence),
            modulation=meta.get("modulation") or None,
            snr_db=float(snr) if snr is not None else None,
        ),
    )
    if detection.bearing is not None:
        detail.sensor = SensorDetail(
            fov=DETECTION_FOV_DEG,
            range=DETECTION_RANGE_M,
            azimuth=float(detection.bearing),
        )
    if detection.sensor_id:
        detail.links.append(
            CoTLink(uid=detection.sensor_id, relation=LINK_RELATION_PARENT, type=SENSOR_COT_TYPE)
        )

    loc = detection.location
    return CoTEvent(
        uid=detection_uid(detection),
        type=signal_type_to_cot_type(detection.signal_type),
        how=HOW_MACHINE_GENERATED,
        time=time,
        start=time,
        stale=time + timedelta(minutes=ttl_minutes),
        point=CoTPoint(
            lat=float(loc.lat),
            lon=float(loc.lon),
            hae=float(loc.alt or 0.0),
            ce=DETECTION_CE,
            le=DETECTION_LE,
        ),
        detail=detail,
    )


def encode_sensor(
    sensor: SensorDescriptor,
    now: datetime | None = None,
    ttl_minutes: int = SENSOR_TTL_MINUTES,
) -> CoTEvent:
    """Build the CoT event announcing a sensor's own position."""
    time = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)

    remarks = [
        "RavenGrid RF Sensor",
        f"Status: {sensor.status}",
        "Capability: RF Detection & Classification",
    ]
    if sensor.frequency_range is not None:
        lo, hi = sensor.frequency_range
        remarks.append(f"Coverage: {lo / 1e6:.1f}-{hi / 1e6:.1f} MHz")

    loc = sensor.location
    return CoTEvent(
        uid=sensor.id,
        type=SENSOR_COT_TYPE,
        how=HOW_MACHINE_GENERATED,
        time=time,
        start=time,
        stale=time + timedelta(minutes=ttl_minutes),
        point=CoTPoint(
            lat=float(loc.lat),
            lon=float(loc.lon),
            hae=float(loc.alt or 0.0),
            ce=SENSOR_CE,
            le=SENSOR_LE,
        ),
        detail=CoTDetail(
            callsign=sensor.name,
            remarks="\n".join(remarks),
            sensor=SensorDetail(fov=SENSOR_FOV_DEG, range=SENSOR_RANGE_M),
        ),
    )


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def _set(elem: ET.Element, name: str, value: Any) -> None:
    """Set an attribute, skipping None so optional fields vanish."""
    if value is None:
        return
    elem.set(name, value if isinstance(value, str) else str(value))


def to_element(event: CoTEvent) -> ET.Element:
    """CoTEvent -> ElementTree with attributes in wire order."""
    root = ET.Element("event")
    root.set("version", event.version)
    root.set("uid", event.uid)
    root.set("type", event.type)
    root.set("how", event.how)
    root.set("time", format_time(event.time))
    root.set("start", format_time(event.start))
    root.set("stale", format_time(event.stale))

    pt = event.point
    point = ET.SubElement(root, "point")
    _set(point, "lat", float(pt.lat))
    _set(point, "lon", float(pt.lon))
    _set(point, "hae", float(pt.hae))
    _set(point, "ce", float(pt.ce))
    _set(point, "le", float(pt.le))

    d = event.detail
    detail = ET.SubElement(root, "detail")

    if d.callsign is not None:
        contact = ET.SubElement(detail, "contact")
        contact.set("callsign", d.callsign)

    if d.remarks is not None:
        remarks = ET.SubElement(detail, "remarks")
        remarks.text = d.remarks

    if d.rf_signal is not None:
        rf = d.rf_signal
        sig = ET.SubElement(detail, "rf_signal")
        _set(sig, "frequency_mhz", float(rf.frequency_mhz))
        _set(sig, "power_dbm", float(rf.power_dbm))
        _set(sig, "bandwidth_khz", float(rf.bandwidth_khz))
        _set(sig, "signal_type", rf.signal_type)
        _set(sig, "classification", rf.classification)
        _set(sig, "confidence", float(rf.confidence))
        _set(sig, "modulation", rf.modulation)
        _set(sig, "snr_db", None if rf.snr_db is None else float(rf.snr_db))

    if d.sensor is not None:
        s = d.sensor
        sensor = ET.SubElement(detail, "sensor")
        for name in ("fov", "range", "azimuth", "elevation"):
            value = getattr(s, name)
            _set(sensor, name, None if value is None else float(value))

    for ln in d.links:
        link = ET.SubElement(detail, "link")
        link.set("uid", ln.uid)
        link.set("relation", ln.relation)
        link.set("type", ln.type)

    return root


_TEXT_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
    "\r": "&#13;",
}
# Parsers normalise raw whitespace inside attribute values
_ATTR_ESCAPES = {**_TEXT_ESCAPES, "\n": "&#10;", "\t": "&#9;"}


# Code points XML 1.0 does not allow anywhere in a document
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def _escape(value: str, table: dict[str, str]) -> str:
    value = _INVALID_XML_CHARS.sub("", value)
    return "".join(table.get(ch, ch) for ch in value)


def _write(elem: ET.Element, depth: int, out: list[str]) -> None:
    pad = "  " * depth
    attrs = "".join(f' {k}="{_escape(v, _ATTR_ESCAPES)}"' for k, v in elem.attrib.items())
    children = list(elem)
    if not children and elem.text is None:
        out.append(f"{pad}<{elem.tag}{attrs} />")
        return
    if not children:
        out.append(f"{pad}<{elem.tag}{attrs}>{_escape(elem.text, _TEXT_ESCAPES)}</{elem.tag}>")
        return
    out.append(f"{pad}<{elem.tag}{attrs}>")
    for child in children:
        _write(child, depth + 1, out)
    out.append(f"{pad}</{elem.tag}>")


def to_xml(event: CoTEvent) -> str:
    """Serialize a CoTEvent to a CoT XML document (with declaration).

    All five XML special characters are escaped in every attribute and
    text node; optional attributes and elements are left out entirely.
    """
    out = [XML_DECLARATION]
    _write(to_element(event), 0, out)
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _parse_time(value: str | None) -> datetime:
    if not value:
        raise ValueError("missing time attribute")
    try:
        return datetime.strptime(value, TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return parse_timestamp(value)


def _opt_float(elem: ET.Element, name: str) -> float | None:
    raw = elem.get(name)
    return float(raw) if raw is not None else None


def from_xml(xml_string: str | bytes) -> CoTEvent | None:
    """Parse CoT XML back into a CoTEvent.

    Returns:
        CoTEvent, or None if the XML is malformed, is not an <event>, or is
        missing its <point>.
    """
    if isinstance(xml_string, str):
        # The declaration names an encoding, which str input may not carry
        xml_string = xml_string.encode("utf-8")
    try:
        root = ET.fromstring(xml_string)
    except ET.ParseError:
        return None

    if root.tag != "event":
        return None

    point = root.find("point")
    if point is None:
        return None

    try:
        cot_point = CoTPoint(
            lat=float(point.get("lat", 0.0)),
            lon=float(point.get("lon", 0.0)),
            hae=float(point.get("hae", 0.0)),
            ce=float(point.get("ce", 9999999.0)),
            le=float(point.get("le", 9999999.0)),
        )
        detail = CoTDetail()
        detail_elem = root.find("detail")
        if detail_elem is not None:
            contact = detail_elem.find("contact")
            if contact is not None:
                detail.callsign = contact.get("callsign")

            remarks = detail_elem.find("remarks")
            if remarks is not None:
                detail.remarks = remarks.text or ""

            sig = detail_elem.find("rf_signal")
            if sig is not None:
                detail.rf_signal = RFSignal(
                    frequency_mhz=float(sig.get("frequency_mhz", 0.0)),
                    power_dbm=float(sig.get("power_dbm", 0.0)),
                    bandwidth_khz=float(sig.get("bandwidth_khz", 0.0)),
                    signal_type=sig.get("signal_type", ""),
                    classification=sig.get("classification", ""),
                    confidence=float(sig.get("confidence", 0.0)),
                    modulation=sig.get("modulation"),
                    snr_db=_opt_float(sig, "snr_db"),
                )

            sensor = detail_elem.find("sensor")
            if sensor is not None:
                detail.sensor = SensorDetail(
                    fov=_opt_float(sensor, "fov"),
                    range=_opt_float(sensor, "range"),
                    azimuth=_opt_float(sensor, "azimuth"),
                    elevation=_opt_float(sensor, "elevation"),
                )

            for link in detail_elem.findall("link"):
                detail.links.append(CoTLink(
                    uid=link.get("uid", ""),
                    relation=link.get("relation", ""),
                    type=link.get("type", ""),
                ))

        return CoTEvent(
            uid=root.get("uid", ""),
            type=root.get("type", DEFAULT_COT_TYPE),
            how=root.get("how", ""),
            time=_parse_time(root.get("time")),
            start=_parse_time(root.get("start") or root.get("time")),
            stale=_parse_time(root.get("stale")),
            point=cot_point,
            detail=detail,
            version=root.get("version", "2.0"),
        )
    except ValueError:
        return None
