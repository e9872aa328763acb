"""
FastAPI admin application for the star sync service.

Usage:
    uvicorn starsync.api.main:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

import starsync
from starsync.api.error_handlers import register_exception_handlers
from starsync.api.routers import health, sync
from starsync.config import load_config
from starsync.core.logging_utils import setup_json_logging
from starsync.di.container import Container

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


def create_app(container: Container | None = None) -> FastAPI:
    """Build the admin app.

    With ``container`` given (tests), the app uses it as is and leaves its
    lifecycle to the caller. Otherwise the lifespan builds one from the
    environment and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            app.state.container = container
            yield
            return

        cfg = load_config()
        setup_json_logging(cfg.runtime.log_level, cfg.runtime.log_file)
        owned = await Container.create(cfg)
        app.state.container = owned
        logger.info("api_started", extra={"queue_role": cfg.queue.role})
        try:
            yield
        finally:
            await owned.close()

    app = FastAPI(
        title="starsync admin API",
        description="Trigger and inspect GitHub star synchronization",
        version=starsync.__version__,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    register_exception_handlers(app)
    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router, prefix="/v1/sync", tags=["Sync"])
    return app


app = create_app()
