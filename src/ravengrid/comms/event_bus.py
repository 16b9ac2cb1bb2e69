# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""EventBus — change notifications for whoever is watching the picture.

Two ways to listen:
    - subscribe() hands out a bounded queue.Queue (the /ws/picture feed,
      tests); a full queue silently drops the newest message
    - on(topic, handler) registers a synchronous callback

Messages are ``{"type": topic, "data": {...}}`` dicts.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger("ravengrid.event_bus")

Handler = Callable[[dict[str, Any]], None]


class EventBus:
    """Simple thread-safe pub/sub for pushing events to subscribers."""

    def __init__(self, queue_size: int = 100) -> None:
        self._lock = threading.Lock()
        self._queue_size = queue_size
        self._subscribers: list[queue.Queue] = []
        self._handlers: dict[str, list[Handler]] = {}
        self._published = 0

    @property
    def published(self) -> int:
        return self._published

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass

    def on(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

    def off(self, topic: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, topic: str, data: dict | None = None) -> None:
        msg: dict[str, Any] = {"type": topic}
        if data is not None:
            msg["data"] = data
        with self._lock:
            self._published += 1
            subscribers = list(self._subscribers)
            handlers = list(self._handlers.get(topic, ()))
        for q in subscribers:
            try:
                q.put_nowait(msg)
            except queue.Full:
                pass
        # Handlers run outside the lock so they may publish in turn
        for handler in handlers:
            try:
                handler(msg)
            except Exception as e:
                logger.warning(f"Handler for {topic} failed: {e}")
