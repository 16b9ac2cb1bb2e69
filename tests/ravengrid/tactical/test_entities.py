# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tests for the entity model records."""

import dataclasses

import pytest

from ravengrid.tactical.entities import (
    UNKNOWN_POSITION,
    Entity,
    EntityKind,
    EntityStatus,
    Heading,
    Position,
)

pytestmark = pytest.mark.unit


class TestPosition:

    def test_valid_position_is_known(self):
        assert Position(38.9, -77.0).known

    @pytest.mark.parametrize("lat, lon", [
        (999999, 999999),
        (38.9, 180.5),
        (91.0, 0.0),
        (0.0, -181.0),
    ])
    def test_out_of_range_is_unknown(self, lat, lon):
        assert not Position(lat, lon).known

    def test_default_is_unknown_sentinel(self):
        assert not UNKNOWN_POSITION.known
        assert UNKNOWN_POSITION.lat == 999999.0


class TestHeading:

    def test_azimuth_wins(self):
        assert Heading(azimuth=10.0, course=200.0).facing == 10.0

    def test_course_fallback(self):
        assert Heading(course=200.0).facing == 200.0

    def test_zero_azimuth_is_a_real_value(self):
        assert Heading(azimuth=0.0, course=200.0).facing == 0.0

    def test_none(self):
        assert Heading().facing is None


class TestEntity:

    def test_frozen(self):
        e = Entity(uid="a", kind=EntityKind.UNIT_TRACK)
        with pytest.raises(dataclasses.FrozenInstanceError):
            e.callsign = "x"

    def test_evolve_returns_new_record(self):
        e = Entity(uid="a", kind=EntityKind.UNIT_TRACK, status=EntityStatus.DISCONNECTED)
        e2 = e.evolve(status=EntityStatus.CONNECTED)
        assert e.status is EntityStatus.DISCONNECTED
        assert e2.connected
        assert e2.uid == "a"

    def test_status_parse(self):
        assert EntityStatus.parse("Connected") is EntityStatus.CONNECTED
        assert EntityStatus.parse("Disconnected") is EntityStatus.DISCONNECTED
        assert EntityStatus.parse(None) is EntityStatus.DISCONNECTED

    def test_to_dict(self):
        e = Entity(
            uid="a", kind=EntityKind.UNIT_TRACK, callsign="ALPHA",
            position=Position(1.0, 2.0), status=EntityStatus.CONNECTED,
        )
        d = e.to_dict()
        assert d["kind"] == "unit_track"
        assert d["status"] == "Connected"
        assert d["position"] == {"lat": 1.0, "lon": 2.0, "alt": None, "known": True}
