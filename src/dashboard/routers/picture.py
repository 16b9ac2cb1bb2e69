# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""Tactical picture API — read the live picture, feed it live events.

GET    /api/picture          entities (with representation), cones, lines, stats
GET    /api/picture/{uid}    one entity, its representation and cone
DELETE /api/picture/{uid}    explicit removal
WS     /ws/live              inbound {"event": name, "data": {...}} frames
WS     /ws/picture           outbound picture change notifications
"""

from __future__ import annotations

import asyncio
import json
import queue
from typing import Any

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from loguru import logger

router = APIRouter(tags=["picture"])

# Seconds a feed waits on its bus queue before checking again
_FEED_POLL_S = 0.5


def _get_picture(request: Request):
    picture = getattr(request.app.state, "picture", None)
    if picture is None:
        raise HTTPException(503, "Tactical picture not available")
    return picture


@router.get("/api/picture")
async def get_picture(request: Request) -> dict[str, Any]:
    """Full current picture."""
    return _get_picture(request).to_dict()


@router.get("/api/picture/{uid}")
async def get_entity(uid: str, request: Request) -> dict[str, Any]:
    picture = _get_picture(request)
    entity = picture.get(uid)
    if entity is None:
        raise HTTPException(404, f"Entity {uid} not found")
    cone = picture.cone(uid)
    line = picture.lines().get(uid)
    return {
        **picture.entity_to_dict(entity),
        "cone": cone.to_dict() if cone is not None else None,
        "line": line.to_dict() if line is not None else None,
    }


@router.delete("/api/picture/{uid}")
async def remove_entity(uid: str, request: Request) -> dict[str, Any]:
    picture = _get_picture(request)
    if not picture.remove(uid):
        raise HTTPException(404, f"Entity {uid} not found")
    logger.info(f"Entity {uid} removed by operator")
    return {"removed": uid}


@router.websocket("/ws/live")
async def live_feed(websocket: WebSocket) -> None:
    """Relay socket frames into the live event stream.

    Frames that are not JSON ``{"event": str, "data": object}`` are logged
    and skipped; payload validation happens in the stream.
    """
    stream = getattr(websocket.app.state, "live_stream", None)
    await websocket.accept()
    if stream is None:
        await websocket.close(code=1011)
        return

    received = 0
    skipped = 0
    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except json.JSONDecodeError as e:
                skipped += 1
                logger.warning(f"Dropped live frame that is not JSON: {e}")
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                skipped += 1
                logger.debug(f"Ignoring live frame without an event name: {frame!r}")
                continue
            stream.publish(frame["event"], frame.get("data"))
            received += 1
    except WebSocketDisconnect:
        logger.info(f"Live feed disconnected after {received} frames ({skipped} skipped)")


@router.websocket("/ws/picture")
async def picture_feed(websocket: WebSocket) -> None:
    """Push picture change notifications from the EventBus to the client.

    Each message is the bus dict ``{"type": "picture:...", "data": {...}}``.
    Anything the client sends is ignored; its disconnect ends the feed.
    """
    bus = getattr(websocket.app.state, "event_bus", None)
    if bus is None:
        await websocket.accept()
        await websocket.close(code=1011)
        return

    sub = bus.subscribe()
    await websocket.accept()
    loop = asyncio.get_running_loop()

    async def forward() -> None:
        while True:
            try:
                msg = await loop.run_in_executor(None, lambda: sub.get(timeout=_FEED_POLL_S))
            except queue.Empty:
                continue
            await websocket.send_json(msg)

    sender = asyncio.create_task(forward())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Picture feed disconnected")
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        bus.unsubscribe(sub)
