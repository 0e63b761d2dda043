# src/campus_sync/main.py
"""
FastAPI application factory.

Run with:
    uvicorn campus_sync.main:create_app --factory --port 8010
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .api import router as api_router
from .config import CampusSyncConfig, configure_logging, get_config
from .sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[CampusSyncConfig] = None,
    coordinator: Optional[SyncCoordinator] = None,
) -> FastAPI:
    """
    Build the app around one sync coordinator.

    The Local Store is initialized on startup and closed on shutdown; the
    coordinator listens for connectivity and session events in between.
    """
    config = config or get_config()
    configure_logging(config.log_level)
    coordinator = coordinator or SyncCoordinator.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await coordinator.store.init()
        await coordinator.start()
        sync_config = config.sync
        if sync_config.remote_configured and coordinator.reconciler is not None:
            coordinator.connectivity.start_probing(
                f"{sync_config.supabase_url.rstrip('/')}/rest/v1/",
                interval=sync_config.probe_interval,
                timeout=sync_config.probe_timeout,
                headers={"apikey": sync_config.supabase_key},
            )
        logger.info(f"✅ campus-sync {__version__} ready on device {config.device_name}")
        try:
            yield
        finally:
            await coordinator.connectivity.stop_probing()
            await coordinator.stop()
            await coordinator.store.close()

    app = FastAPI(title="campus-sync", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.coordinator = coordinator
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "online": coordinator.connectivity.is_online}

    return app
