# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""CoT API — encode RF detections and push them to the TAK server."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import BaseModel, Field

from dashboard.config import Settings, settings
from ravengrid.comms.cot import (
    RFDetection,
    SensorDescriptor,
    encode_detection,
    encode_sensor,
    to_xml,
)
from ravengrid.tactical.entities import Position

router = APIRouter(prefix="/api/cot", tags=["cot"])

_XML_MEDIA_TYPE = "application/xml"


class Location(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    alt: float | None = None

    def to_position(self) -> Position:
        return Position(self.lat, self.lon, self.alt)


class DetectionRequest(BaseModel):
    sensor_id: str = ""
    sensor_name: str = ""
    timestamp: datetime
    frequency_hz: float = Field(gt=0)
    power_dbm: float
    bandwidth_hz: float = Field(default=0.0, ge=0)
    signal_type: str = "Unknown"
    classification: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    location: Location
    bearing: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_detection(self) -> RFDetection:
        return RFDetection(
            sensor_id=self.sensor_id,
            sensor_name=self.sensor_name,
            timestamp=self.timestamp,
            frequency_hz=self.frequency_hz,
            power_dbm=self.power_dbm,
            bandwidth_hz=self.bandwidth_hz,
            signal_type=self.signal_type,
            classification=self.classification,
            confidence=self.confidence,
            location=self.location.to_position(),
            bearing=self.bearing,
            metadata=dict(self.metadata),
        )


class FrequencyRange(BaseModel):
    min_hz: float = Field(ge=0)
    max_hz: float = Field(ge=0)


class SensorRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str
    location: Location
    status: str = "online"
    frequency_range: FrequencyRange | None = None

    def to_descriptor(self) -> SensorDescriptor:
        fr = self.frequency_range
        return SensorDescriptor(
            id=self.id,
            name=self.name,
            location=self.location.to_position(),
            status=self.status,
            frequency_range=(fr.min_hz, fr.max_hz) if fr is not None else None,
        )


def _no_gateway() -> JSONResponse:
    return JSONResponse({"error": "CoT dispatch not configured"}, status_code=503)


def _settings(request: Request) -> Settings:
    """The app's own Settings (create_app may be given non-default ones)."""
    return getattr(request.app.state, "settings", None) or settings


def _encode(body: DetectionRequest, request: Request):
    cfg = _settings(request)
    return encode_detection(body.to_detection(), ttl_minutes=cfg.detection_stale_minutes)


def _encode_sensor(body: SensorRequest, request: Request):
    cfg = _settings(request)
    return encode_sensor(body.to_descriptor(), ttl_minutes=cfg.sensor_stale_minutes)


@router.get("/status")
async def cot_status(request: Request) -> dict[str, Any]:
    gateway = getattr(request.app.state, "dispatch_gateway", None)
    if gateway is None:
        return {"enabled": False}
    return {"enabled": True, **gateway.stats}


@router.post("/encode")
async def encode(body: DetectionRequest, request: Request) -> Response:
    """Detection JSON -> CoT XML, nothing sent."""
    return Response(content=to_xml(_encode(body, request)), media_type=_XML_MEDIA_TYPE)


@router.post("/sensors/encode")
async def encode_sensor_xml(body: SensorRequest, request: Request) -> Response:
    return Response(content=to_xml(_encode_sensor(body, request)), media_type=_XML_MEDIA_TYPE)


@router.post("/send")
async def send(body: DetectionRequest, request: Request):
    """Encode one detection and POST it to the TAK server."""
    gateway = getattr(request.app.state, "dispatch_gateway", None)
    if gateway is None:
        return _no_gateway()
    event = _encode(body, request)
    ok = await gateway.send(event)
    if not ok:
        logger.warning(f"Detection {event.uid} was not accepted by the CoT endpoint")
    return {"success": ok, "uid": event.uid}


@router.post("/send/batch")
async def send_batch(body: list[DetectionRequest], request: Request):
    """Encode and send a list of detections in order."""
    gateway = getattr(request.app.state, "dispatch_gateway", None)
    if gateway is None:
        return _no_gateway()
    events = [_encode(d, request) for d in body]
    sent = await gateway.send_batch(events)
    logger.info(f"CoT batch: {sent}/{len(events)} accepted")
    return {"sent": sent, "total": len(events)}


@router.post("/sensors")
async def announce_sensor(body: SensorRequest, request: Request):
    """Publish a sensor's own position so it shows on TAK clients."""
    gateway = getattr(request.app.state, "dispatch_gateway", None)
    if gateway is None:
        return _no_gateway()
    event = _encode_sensor(body, request)
    ok = await gateway.send(event)
    return {"success": ok, "uid": event.uid}
