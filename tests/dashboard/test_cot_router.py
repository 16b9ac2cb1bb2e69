# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for /api/cot/* endpoints.

The dispatch gateway is real; its HTTP client talks to an httpx.MockTransport.
"""

import os
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dashboard.config import Settings
from dashboard.routers.cot import router
from ravengrid.comms.cot import from_xml
from ravengrid.comms.dispatch import DispatchGateway

pytestmark = pytest.mark.unit

COT_URL = "http://tak.example/api/cot"

DETECTION = {
    "sensor_id": "SENSOR-1",
    "sensor_name": "Rooftop",
    "timestamp": "2026-01-01T12:00:00Z",
    "frequency_hz": 2_450_000_000,
    "power_dbm": -62.3,
    "bandwidth_hz": 20_000,
    "signal_type": "WiFi 2.4GHz",
    "classification": "beacon",
    "confidence": 0.91,
    "location": {"lat": 38.9, "lon": -77.0},
}

SENSOR = {
    "id": "SENSOR-1",
    "name": "Rooftop",
    "location": {"lat": 38.9, "lon": -77.0, "alt": 12.0},
    "frequency_range": {"min_hz": 70e6, "max_hz": 6e9},
}


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(router)
    return app


@pytest.fixture
def posted():
    return []


@pytest.fixture
def client_with_gateway(app, posted):
    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(request)
        # Reject anything on 433 MHz to exercise failures
        if b"433.000 MHz" in request.content:
            return httpx.Response(500)
        return httpx.Response(200)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app.state.dispatch_gateway = DispatchGateway(COT_URL, client=http)
    return TestClient(app)


@pytest.fixture
def client_no_gateway(app):
    return TestClient(app)


class TestCotStatus:

    def test_status_with_gateway(self, client_with_gateway):
        data = client_with_gateway.get("/api/cot/status").json()
        assert data["enabled"] is True
        assert data["cot_url"] == COT_URL
        assert data["messages_sent"] == 0

    def test_status_without_gateway(self, client_no_gateway):
        assert client_no_gateway.get("/api/cot/status").json() == {"enabled": False}


class TestEncode:

    def test_detection_xml(self, client_no_gateway):
        resp = client_no_gateway.post("/api/cot/encode", json=DETECTION)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        event = from_xml(resp.text)
        assert event is not None
        assert event.type == "a-f-G-E-W-C"
        assert event.point.lat == 38.9
        assert "2450.000 MHz" in event.detail.remarks

    def test_sensor_xml(self, client_no_gateway):
        resp = client_no_gateway.post("/api/cot/sensors/encode", json=SENSOR)
        assert resp.status_code == 200
        event = from_xml(resp.text)
        assert event.uid == "SENSOR-1"
        assert event.type == "a-f-G-E-S"
        assert "Coverage: 70.0-6000.0 MHz" in event.detail.remarks

    @pytest.mark.parametrize("field, value", [
        ("confidence", 1.5),
        ("confidence", -0.1),
        ("frequency_hz", 0),
        ("location", {"lat": 91.0, "lon": 0.0}),
    ])
    def test_invalid_detection_422(self, client_no_gateway, field, value):
        resp = client_no_gateway.post("/api/cot/encode", json={**DETECTION, field: value})
        assert resp.status_code == 422

    def test_sensor_needs_id(self, client_no_gateway):
        resp = client_no_gateway.post("/api/cot/sensors/encode", json={**SENSOR, "id": ""})
        assert resp.status_code == 422


class TestSend:

    def test_send(self, client_with_gateway, posted):
        resp = client_with_gateway.post("/api/cot/send", json=DETECTION)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["uid"].startswith("RF-SENSOR-1-2450.000000-")
        assert len(posted) == 1
        assert posted[0].headers["content-type"] == "application/xml"

    def test_send_rejected(self, client_with_gateway):
        resp = client_with_gateway.post(
            "/api/cot/send", json={**DETECTION, "frequency_hz": 433_000_000},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is False

    def test_batch(self, client_with_gateway, posted):
        batch = [
            DETECTION,
            {**DETECTION, "frequency_hz": 433_000_000},
            {**DETECTION, "frequency_hz": 915_000_000},
        ]
        resp = client_with_gateway.post("/api/cot/send/batch", json=batch)
        assert resp.json() == {"sent": 2, "total": 3}
        assert len(posted) == 3
        stats = client_with_gateway.get("/api/cot/status").json()
        assert stats["messages_sent"] == 2
        assert stats["messages_failed"] == 1

    def test_sensor_announce(self, client_with_gateway):
        resp = client_with_gateway.post("/api/cot/sensors", json=SENSOR)
        assert resp.json() == {"success": True, "uid": "SENSOR-1"}

    @pytest.mark.parametrize("path, body", [
        ("/api/cot/send", DETECTION),
        ("/api/cot/send/batch", [DETECTION]),
        ("/api/cot/sensors", SENSOR),
    ])
    def test_no_gateway_503(self, client_no_gateway, path, body):
        resp = client_no_gateway.post(path, json=body)
        assert resp.status_code == 503
        assert resp.json() == {"error": "CoT dispatch not configured"}


class TestAppSettings:

    @pytest.fixture
    def client_custom_ttl(self, app):
        with patch.dict(os.environ, {}, clear=True):
            app.state.settings = Settings(
                _env_file=None, detection_stale_minutes=10, sensor_stale_minutes=45,
            )
        return TestClient(app)

    def test_detection_stale_from_app_settings(self, client_custom_ttl):
        event = from_xml(client_custom_ttl.post("/api/cot/encode", json=DETECTION).text)
        assert event.stale - event.time == timedelta(minutes=10)

    def test_sensor_stale_from_app_settings(self, client_custom_ttl):
        event = from_xml(client_custom_ttl.post("/api/cot/sensors/encode", json=SENSOR).text)
        assert event.stale - event.time == timedelta(minutes=45)

    def test_default_settings_without_app_state(self, client_no_gateway):
        event = from_xml(client_no_gateway.post("/api/cot/encode", json=DETECTION).text)
        assert event.stale - event.time == timedelta(minutes=5)
