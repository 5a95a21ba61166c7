from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config import MonitorSettings
from ..monitor import BackupMonitor

logger = logging.getLogger("backupmon.lifecycle")

MONITOR_STATE_KEY = "backupmon_monitor"


def setup_backupmon(
    app: FastAPI,
    *,
    settings: MonitorSettings | None = None,
    monitor: BackupMonitor | None = None,
    include_router: bool = True,
    prefix: str = "/api/v1",
) -> BackupMonitor:
    """Attach a backup monitor to a FastAPI application."""
    if monitor is None:
        monitor = BackupMonitor(settings)
    setattr(app.state, MONITOR_STATE_KEY, monitor)

    @asynccontextmanager
    async def _lifespan(app_: FastAPI):
        # Startup
        try:
            connected = await monitor.start()
            logger.info(f"Backup monitor started (push channel connected: {connected})")
        except Exception:
            logger.exception("Failed to start backup monitor")

        try:
            yield
        finally:
            # Shutdown
            logger.info("Shutting down backup monitor...")
            try:
                await monitor.close()
            except Exception:
                logger.exception("Failed to close backup monitor")

    # Compose with existing lifespan
    if app.router.lifespan_context is None:
        app.router.lifespan_context = _lifespan
    else:
        existing = app.router.lifespan_context

        @asynccontextmanager
        async def _composed(app_: FastAPI):
            async with existing(app_):
                async with _lifespan(app_):
                    yield

        app.router.lifespan_context = _composed

    # Include router
    if include_router:
        from .router import get_router

        app.include_router(get_router(), prefix=prefix)

    return monitor
