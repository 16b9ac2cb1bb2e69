"""Unit tests for dashboard/config.py — Settings defaults and env overrides."""
from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from dashboard.config import Settings


@pytest.mark.unit
class TestSettingsDefaults:
    """Default values without any environment variables."""

    def test_app_name(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)
            assert s.app_name == "RAVENGRID"
            assert s.debug is False

    def test_host_and_port(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)
            assert s.host == "0.0.0.0"
            assert s.port == 8000

    def test_map_server_urls(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)
            assert s.snapshot_url.endswith("/api/map_state")
            assert s.cot_endpoint_url.endswith("/api/cot")
            assert s.snapshot_on_startup is True
            assert s.http_timeout == 10.0

    def test_picture_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)
            assert s.fov_range_m == 100.0
            assert s.live_queue_max == 1000

    def test_stale_times(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=None)
            assert s.detection_stale_minutes == 5
            assert s.sensor_stale_minutes == 30


@pytest.mark.unit
class TestSettingsEnvOverrides:
    """Environment variables override defaults (case-insensitive names)."""

    def test_urls(self):
        env = {
            "SNAPSHOT_URL": "https://ots.local/api/map_state",
            "COT_ENDPOINT_URL": "https://ots.local/api/cot",
        }
        with patch.dict(os.environ, env, clear=True):
            s = Settings(_env_file=None)
            assert s.snapshot_url == "https://ots.local/api/map_state"
            assert s.cot_endpoint_url == "https://ots.local/api/cot"

    def test_type_coercion(self):
        env = {
            "PORT": "9001",
            "DEBUG": "true",
            "SNAPSHOT_ON_STARTUP": "0",
            "FOV_RANGE_M": "250.5",
        }
        with patch.dict(os.environ, env, clear=True):
            s = Settings(_env_file=None)
            assert s.port == 9001
            assert s.debug is True
            assert s.snapshot_on_startup is False
            assert s.fov_range_m == 250.5

    def test_invalid_int_rejected(self):
        with patch.dict(os.environ, {"LIVE_QUEUE_MAX": "lots"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_unknown_vars_ignored(self):
        with patch.dict(os.environ, {"NOT_A_SETTING": "x"}, clear=True):
            s = Settings(_env_file=None)
            assert not hasattr(s, "not_a_setting")


@pytest.mark.unit
class TestSettingsEnvFile:

    def test_env_file_loaded(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("APP_NAME=FIELDTEST\nSENSOR_STALE_MINUTES=60\n")
        with patch.dict(os.environ, {}, clear=True):
            s = Settings(_env_file=str(env_file))
            assert s.app_name == "FIELDTEST"
            assert s.sensor_stale_minutes == 60
