# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for the application factory and lifespan wiring.

The snapshot fetch is disabled so startup never touches the network.
"""

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from dashboard.config import Settings
from dashboard.main import create_app
from ravengrid.comms.dispatch import DispatchGateway
from ravengrid.comms.live_events import LiveEventStream
from ravengrid.tactical.picture import TacticalPicture

pytestmark = pytest.mark.unit


@pytest.fixture
def settings():
    with patch.dict(os.environ, {"SNAPSHOT_ON_STARTUP": "false", "FOV_RANGE_M": "250"}, clear=True):
        return Settings(_env_file=None)


class TestCreateApp:

    def test_routes_registered(self, settings):
        app = create_app(settings)
        paths = {route.path for route in app.routes}
        assert {"/health", "/api/picture", "/api/picture/{uid}", "/ws/live",
                "/api/cot/status", "/api/cot/send"} <= paths

    def test_health_before_startup(self, settings):
        client = TestClient(create_app(settings))
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["app"] == "RAVENGRID"
        assert data["snapshot"] is None


class TestLifespan:

    def test_state_wired(self, settings):
        app = create_app(settings)
        with TestClient(app) as client:
            assert isinstance(app.state.picture, TacticalPicture)
            assert isinstance(app.state.live_stream, LiveEventStream)
            assert isinstance(app.state.dispatch_gateway, DispatchGateway)
            assert app.state.picture.fov_range_m == 250.0
            assert client.get("/health").json()["snapshot"] == "idle"
            assert client.get("/api/cot/status").json()["enabled"] is True
        assert app.state.live_stream.closed

    def test_socket_feeds_picture(self, settings):
        app = create_app(settings)
        with TestClient(app) as client:
            with client.websocket_connect("/ws/live") as ws:
                ws.send_json({"event": "eud", "data": {
                    "uid": "ANDROID-1", "callsign": "ALPHA", "team_color": "Cyan",
                    "last_status": "Connected",
                    "last_point": {"latitude": 38.9, "longitude": -77.0, "azimuth": 0, "fov": 30},
                }})
        # Leaving the client drains the stream before the loop exits
        picture = app.state.picture
        assert "ANDROID-1" in picture
        assert picture.cone("ANDROID-1").range_m == 250.0
