# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""DispatchGateway — posts encoded CoT to the TAK server's CoT endpoint.

Delivery is at-most-once and best effort:
    - one POST per event, body = CoT XML, Content-Type application/xml
    - 2xx -> True; anything else (status, timeout, refused) -> False, logged
    - no retries, no queueing; batches run sequentially and a failure
      never aborts the rest of the batch
"""

from __future__ import annotations

import logging
from typing import Iterable

import httpx

from .cot import CoTEvent, RFDetection, encode_detection, to_xml

logger = logging.getLogger("ravengrid.dispatch")

_USER_AGENT = "RavenGrid/0.1.0"


class DispatchGateway:
    """Sends CoT events to ``cot_url`` over an httpx AsyncClient."""

    def __init__(
        self,
        cot_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        detection_ttl_minutes: int = 5,
    ) -> None:
        self._cot_url = cot_url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._detection_ttl = detection_ttl_minutes

        # Stats
        self._messages_sent: int = 0
        self._messages_failed: int = 0
        self._last_error: str = ""

    # -----------------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------------

    @property
    def cot_url(self) -> str:
        return self._cot_url

    @property
    def stats(self) -> dict:
        return {
            "cot_url": self._cot_url,
            "messages_sent": self._messages_sent,
            "messages_failed": self._messages_failed,
            "last_error": self._last_error,
        }

    # -----------------------------------------------------------------------
    # Sending
    # -----------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(self, event: CoTEvent) -> bool:
        """POST one event.  True only on a 2xx response."""
        body = to_xml(event)
        try:
            resp = await self._get_client().post(
                self._cot_url,
                content=body.encode("utf-8"),
                headers={
                    "Content-Type": "application/xml",
                    "User-Agent": _USER_AGENT,
                },
                timeout=self._timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._messages_failed += 1
            self._last_error = str(e) or type(e).__name__
            logger.warning(f"CoT send failed for {event.uid}: {self._last_error}")
            return False

        if not resp.is_success:
            self._messages_failed += 1
            self._last_error = f"HTTP {resp.status_code}"
            logger.warning(f"CoT {event.uid} rejected by server: HTTP {resp.status_code}")
            return False

        self._messages_sent += 1
        logger.debug(f"CoT {event.uid} accepted ({resp.status_code})")
        return True

    async def send_batch(self, events: Iterable[CoTEvent]) -> int:
        """Send sequentially; returns how many were accepted."""
        sent = 0
        for event in events:
            if await self.send(event):
                sent += 1
        return sent

    async def send_detection(self, detection: RFDetection) -> bool:
        return await self.send(encode_detection(detection, ttl_minutes=self._detection_ttl))

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "DispatchGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
