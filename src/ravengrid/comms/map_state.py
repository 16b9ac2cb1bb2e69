# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""MapStateClient — one-shot fetch of the map server's current picture.

GET <snapshot url> returns ``{euds, markers, rb_lines, casevacs}`` lists in
the same per-item shapes as the live feed.  Any failure (transport error,
non-2xx, bad JSON, wrong shape) is logged and reported as None so the
caller can carry on with an empty picture.
"""

from __future__ import annotations

import json
import logging

import httpx

logger = logging.getLogger("ravengrid.map_state")

_USER_AGENT = "RavenGrid/0.1.0"

SNAPSHOT_SECTIONS = ("euds", "markers", "rb_lines", "casevacs")


class MapStateClient:
    """Fetches the snapshot endpoint over an httpx AsyncClient."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._fetch_count = 0
        self._last_error = ""

    @property
    def url(self) -> str:
        return self._url

    @property
    def last_error(self) -> str:
        return self._last_error

    @property
    def stats(self) -> dict:
        return {
            "url": self._url,
            "fetch_count": self._fetch_count,
            "last_error": self._last_error,
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def fetch(self) -> dict | None:
        """Return the snapshot dict (every section defaulted to a list), or None."""
        self._fetch_count += 1
        try:
            resp = await self._get_client().get(
                self._url,
                headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._last_error = str(e) or type(e).__name__
            logger.warning(f"Snapshot fetch failed for {self._url}: {self._last_error}")
            return None
        except json.JSONDecodeError as e:
            self._last_error = f"invalid JSON: {e}"
            logger.warning(f"Snapshot decode failed for {self._url}: {e}")
            return None

        if not isinstance(data, dict):
            self._last_error = "snapshot is not an object"
            logger.warning(f"Snapshot from {self._url} is not an object")
            return None

        snapshot = {}
        for section in SNAPSHOT_SECTIONS:
            items = data.get(section)
            snapshot[section] = items if isinstance(items, list) else []
        self._last_error = ""
        logger.info(
            "Snapshot fetched: "
            + ", ".join(f"{len(snapshot[s])} {s}" for s in SNAPSHOT_SECTIONS)
        )
        return snapshot

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
