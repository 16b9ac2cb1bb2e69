# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Dashboard settings, read from the environment and an optional .env file."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "RAVENGRID"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Map server (snapshot + CoT injection)
    snapshot_url: str = "http://localhost:8081/api/map_state"
    snapshot_on_startup: bool = True
    cot_endpoint_url: str = "http://localhost:8081/api/cot"
    http_timeout: float = 10.0

    # Tactical picture
    fov_range_m: float = 100.0
    live_queue_max: int = 1000

    # CoT stale times (minutes)
    detection_stale_minutes: int = 5
    sensor_stale_minutes: int = 30


settings = Settings()
