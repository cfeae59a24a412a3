"""
FastAPI application entrypoint.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.api.config import Settings, get_settings
from apps.api.middleware import RequestContextMiddleware
from apps.api.routers import health, images
from packages.shared.exceptions import AppException, app_exception_handler
from packages.shared.storage import BlobStorageBackend, create_storage_backend

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    storage: BlobStorageBackend | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (read from the environment if not given)
        storage: Storage backend (built from ``settings`` if not given)

    The backend is initialized on startup, so an unreachable backend
    fails startup, and closed on shutdown.
    """
    settings = settings or get_settings()
    storage = storage or create_storage_backend(settings.storage_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await storage.init()
        logger.info(f"{settings.app_name} {settings.app_version} ready, serving from {storage.backend_name}")
        try:
            yield
        finally:
            await storage.close()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage

    app.add_middleware(
        RequestContextMiddleware,
        server_header=f"{settings.app_name}/{settings.app_version}",
    )
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, app_exception_handler)

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(images.router, prefix="/images", tags=["images"])

    return app
