# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Root conftest — skip integration tests when no map server is reachable."""

import os

import httpx
import pytest

MAP_SERVER_URL = os.environ.get("RAVENGRID_TEST_MAP_SERVER", "http://localhost:8081")


def _map_server_reachable() -> bool:
    """Check if the map server's snapshot endpoint answers."""
    try:
        httpx.get(f"{MAP_SERVER_URL}/api/map_state", timeout=3)
        return True
    except httpx.HTTPError:
        return False


def pytest_collection_modifyitems(config, items):
    if not any("integration" in item.keywords for item in items):
        return
    reachable = _map_server_reachable()
    for item in items:
        if "integration" in item.keywords and not reachable:
            item.add_marker(pytest.mark.skip(reason=f"Map server not reachable at {MAP_SERVER_URL}"))


@pytest.fixture
def map_server_url() -> str:
    return MAP_SERVER_URL
