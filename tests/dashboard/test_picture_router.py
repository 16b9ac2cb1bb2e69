# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for /api/picture/* endpoints and the /ws/live and /ws/picture feeds.

Tests run against the FastAPI router with a real TacticalPicture on app.state.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from dashboard.routers.picture import router
from ravengrid.comms.event_bus import EventBus
from ravengrid.comms.live_events import LiveEventStream
from ravengrid.tactical.picture import TacticalPicture

pytestmark = pytest.mark.unit


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(router)
    return app


@pytest.fixture
def picture():
    picture = TacticalPicture()
    picture.handle_raw("eud", {
        "uid": "ANDROID-1", "callsign": "ALPHA", "team_color": "Cyan",
        "last_status": "Connected",
        "last_point": {"latitude": 38.9, "longitude": -77.0, "azimuth": 45.0, "fov": 60.0},
    })
    picture.handle_raw("rb_line", {
        "uid": "RB-1", "point": {"latitude": 38.9, "longitude": -77.0},
        "end_latitude": 38.91, "end_longitude": -77.0, "color_hex": "ffff0000",
    })
    return picture


@pytest.fixture
def client(app, picture):
    app.state.picture = picture
    return TestClient(app)


@pytest.fixture
def client_no_picture(app):
    return TestClient(app)


class TestGetPicture:

    def test_full_picture(self, client):
        resp = client.get("/api/picture")
        assert resp.status_code == 200
        data = resp.json()
        uids = {e["uid"] for e in data["entities"]}
        assert uids == {"ANDROID-1", "RB-1"}
        assert len(data["cones"]) == 1
        assert data["cones"][0]["owner_uid"] == "ANDROID-1"
        assert len(data["cones"][0]["vertices"]) == 3
        assert data["lines"][0]["color"] == "#ff0000"
        assert data["stats"]["entities"] == 2

    def test_entities_carry_representation(self, client):
        data = client.get("/api/picture").json()
        unit = next(e for e in data["entities"] if e["uid"] == "ANDROID-1")
        assert unit["representation"]["kind"] == "default_pin"

    def test_no_picture_503(self, client_no_picture):
        assert client_no_picture.get("/api/picture").status_code == 503


class TestGetEntity:

    def test_unit_with_cone(self, client):
        resp = client.get("/api/picture/ANDROID-1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["callsign"] == "ALPHA"
        assert data["cone"]["fov"] == 60.0
        assert data["line"] is None

    def test_line_entity(self, client):
        data = client.get("/api/picture/RB-1").json()
        assert data["kind"] == "range_bearing_line"
        assert data["line"]["bearing"] == pytest.approx(0.0, abs=1e-6)
        assert data["cone"] is None

    def test_unknown_404(self, client):
        assert client.get("/api/picture/NOPE").status_code == 404


class TestRemove:

    def test_remove(self, client, picture):
        resp = client.delete("/api/picture/ANDROID-1")
        assert resp.status_code == 200
        assert resp.json() == {"removed": "ANDROID-1"}
        assert "ANDROID-1" not in picture
        assert picture.cone("ANDROID-1") is None

    def test_remove_unknown_404(self, client):
        assert client.delete("/api/picture/NOPE").status_code == 404


class TestLiveSocket:

    def test_frames_relayed_to_stream(self, app):
        stream = MagicMock()
        app.state.live_stream = stream
        client = TestClient(app)
        with client.websocket_connect("/ws/live") as ws:
            ws.send_json({"event": "point", "data": {"uid": "a", "latitude": 1, "longitude": 2}})
            ws.send_json({"no_event": True})
            ws.send_json(["not", "a", "frame"])
            ws.send_json({"event": "casevac", "data": {"uid": "cv"}})
        assert stream.publish.call_count == 2
        first, second = stream.publish.call_args_list
        assert first.args == ("point", {"uid": "a", "latitude": 1, "longitude": 2})
        assert second.args == ("casevac", {"uid": "cv"})

    def test_real_stream_counts(self, app):
        stream = LiveEventStream()
        app.state.live_stream = stream
        client = TestClient(app)
        with client.websocket_connect("/ws/live") as ws:
            ws.send_json({"event": "point", "data": {"uid": "a", "latitude": 1, "longitude": 2}})
            ws.send_json({"event": "marker", "data": {"uid": "m"}})
        assert stream.stats["received"] == 1
        assert stream.stats["dropped_malformed"] == 1

    def test_non_json_frame_does_not_end_feed(self, app):
        stream = MagicMock()
        app.state.live_stream = stream
        client = TestClient(app)
        with client.websocket_connect("/ws/live") as ws:
            ws.send_text("not json{")
            ws.send_json({"event": "eud", "data": {"uid": "ANDROID-2"}})
        stream.publish.assert_called_once_with("eud", {"uid": "ANDROID-2"})

    def test_non_json_frame_then_eud_reaches_picture(self, app):
        picture = TacticalPicture()
        stream = LiveEventStream()
        app.state.live_stream = stream
        client = TestClient(app)
        with client.websocket_connect("/ws/live") as ws:
            ws.send_text("not json{")
            ws.send_json({"event": "eud", "data": {
                "uid": "ANDROID-2", "callsign": "BRAVO", "last_status": "Connected",
                "last_point": {"latitude": 38.9, "longitude": -77.0},
            }})
        stream.close()
        asyncio.run(picture.run(stream))
        assert picture.get("ANDROID-2").callsign == "BRAVO"

    def test_no_stream_closes(self, app):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/live") as ws:
                ws.receive_json()
        assert exc.value.code == 1011


class TestPictureFeed:

    def test_changes_pushed_to_client(self, app):
        bus = EventBus()
        picture = TacticalPicture(event_bus=bus)
        app.state.event_bus = bus
        app.state.picture = picture
        client = TestClient(app)
        with client.websocket_connect("/ws/picture") as ws:
            picture.handle_raw("marker", {
                "uid": "M-1", "callsign": "OBJ", "point": {"latitude": 38.9, "longitude": -77.0},
            })
            msg = ws.receive_json()
        assert msg["type"] == "picture:entity_upserted"
        assert msg["data"]["uid"] == "M-1"
        assert msg["data"]["representation"]["kind"] == "default_pin"

    def test_unsubscribes_on_disconnect(self, app):
        bus = EventBus()
        app.state.event_bus = bus
        client = TestClient(app)
        with client.websocket_connect("/ws/picture"):
            pass
        bus.publish("picture:entity_removed", {"uid": "x"})
        assert bus._subscribers == []

    def test_no_bus_closes(self, app):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/picture") as ws:
                ws.receive_json()
        assert exc.value.code == 1011
