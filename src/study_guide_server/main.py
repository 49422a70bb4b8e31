"""
Study Guide Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures logging and global exception handling, and provides a
test-friendly application factory.

Design Goals
------------
- Deterministic startup
- Explicit dependency initialization order
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI

from .config import settings
from .core.errors import (
    PipelineError,
    pipeline_error_handler,
    unhandled_exception_handler,
)
from .db.quota_store import QuotaStoreUnavailable

from .api import (
    admin_routes,
    health_routes,
    study_routes,
)
from .api.dependencies import get_llm_provider, get_quota_tracker
from .db.session import create_tables


logger = logging.getLogger("guide.app")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once from `settings.log_level`."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _quota_gc_loop(interval_seconds: int) -> None:
    """Periodically delete quota counters for windows that have ended."""
    tracker = get_quota_tracker()
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await tracker.purge_stale()
        except QuotaStoreUnavailable as exc:
            logger.warning("Quota GC skipped, store unavailable: %s", exc)


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory pattern allows:
    - Clean test instantiation
    - Isolated app instances for integration tests
    - Controlled dependency overrides in pytest

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="study-guide-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(study_routes.router)
    app.include_router(admin_routes.router)

    gc_task: Optional[asyncio.Task] = None

    # --------------------------------------------------------------
    # Startup Validation Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup_validation() -> None:
        """
        Fail-fast validation at application startup.

        The LLM provider is constructed here so a missing API key stops the
        process before the first request is ever served.
        """
        nonlocal gc_task
        logger.info("Starting study-guide-server (provider=%s)", settings.llm_provider)

        get_llm_provider()

        if settings.auto_create_tables:
            await create_tables()

        if settings.jwt_secret is None:
            logger.warning("JWT_SECRET is not set; bearer tokens will be rejected")

        if settings.quota_gc_interval_seconds > 0:
            gc_task = asyncio.create_task(_quota_gc_loop(settings.quota_gc_interval_seconds))

        logger.info("Configuration validated successfully")

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown_cleanup() -> None:
        """
        Graceful shutdown hook: stop the quota GC task.
        """
        logger.info("Shutting down study-guide-server")
        if gc_task is not None:
            gc_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await gc_task

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

configure_logging()
app = create_app()
