# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""RAVENGRID dashboard — FastAPI application factory.

Startup wires one of each:
    EventBus -> TacticalPicture <- LiveEventStream (reconciliation task)
    MapStateClient snapshot load (task, concurrent with live processing)
    DispatchGateway for outbound CoT

Shutdown closes the stream (the loop drains and exits), cancels a snapshot
fetch that is still in flight, and closes the HTTP clients.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from dashboard.config import Settings, settings as default_settings
from dashboard.routers import cot_router, picture_router
from ravengrid import __version__
from ravengrid.comms.dispatch import DispatchGateway
from ravengrid.comms.event_bus import EventBus
from ravengrid.comms.live_events import LiveEventStream
from ravengrid.comms.map_state import MapStateClient
from ravengrid.tactical.picture import TacticalPicture


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings

    event_bus = EventBus()
    picture = TacticalPicture(event_bus=event_bus, fov_range_m=cfg.fov_range_m)
    stream = LiveEventStream(maxsize=cfg.live_queue_max)
    gateway = DispatchGateway(
        cfg.cot_endpoint_url,
        timeout=cfg.http_timeout,
        detection_ttl_minutes=cfg.detection_stale_minutes,
    )
    map_client = MapStateClient(cfg.snapshot_url, timeout=cfg.http_timeout)

    app.state.event_bus = event_bus
    app.state.picture = picture
    app.state.live_stream = stream
    app.state.dispatch_gateway = gateway
    app.state.map_state_client = map_client

    live_task = asyncio.create_task(picture.run(stream), name="live-reconcile")
    snapshot_task: asyncio.Task | None = None
    if cfg.snapshot_on_startup:
        snapshot_task = asyncio.create_task(
            picture.load_snapshot(map_client.fetch), name="snapshot-load",
        )
    logger.info(
        f"{cfg.app_name} {__version__} up: snapshot={cfg.snapshot_url} "
        f"cot={cfg.cot_endpoint_url}"
    )

    try:
        yield
    finally:
        stream.close()
        if snapshot_task is not None and not snapshot_task.done():
            snapshot_task.cancel()
        tasks = [t for t in (live_task, snapshot_task) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        await gateway.aclose()
        await map_client.aclose()
        logger.info(f"{cfg.app_name} shut down, picture stats: {picture.stats}")


def create_app(settings: Settings | None = None) -> FastAPI:
    cfg = settings or default_settings
    app = FastAPI(title=cfg.app_name, version=__version__, debug=cfg.debug, lifespan=lifespan)
    app.state.settings = cfg
    app.include_router(picture_router)
    app.include_router(cot_router)

    @app.get("/health")
    async def health() -> dict:
        picture = getattr(app.state, "picture", None)
        return {
            "status": "ok",
            "app": cfg.app_name,
            "version": __version__,
            "snapshot": picture.snapshot_state.value if picture is not None else None,
        }

    return app


def main() -> None:
    import uvicorn

    cfg = default_settings
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port, log_level="debug" if cfg.debug else "info")


if __name__ == "__main__":
    main()
