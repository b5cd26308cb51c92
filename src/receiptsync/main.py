"""receiptsync FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receiptsync.api import health_router, main_router
from receiptsync.core.config import Settings, get_settings
from receiptsync.core.dependencies import Components, build_components
from receiptsync.core.logging_config import LoggingConfig, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Set up package logging from settings."""
    setup_logging(
        LoggingConfig(
            log_level="DEBUG" if settings.debug else settings.log_level,
            log_format=settings.log_format,
            log_path=Path(settings.log_dir),
        )
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle."""
    settings: Settings = app.state.settings
    configure_logging(settings)
    logger.info("Starting receiptsync application...")

    components: Components | None = getattr(app.state, "components", None)
    if components is None:
        components = build_components(settings)
        app.state.components = components
    logger.info(
        "Local store ready at %s with %d receipts",
        settings.database_path,
        components.repository.count(),
    )

    yield

    logger.info("Shutting down receiptsync application...")
    await components.orchestrator.close()


def create_app(
    settings: Settings | None = None,
    components: Components | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        components: Prebuilt components; built during startup when omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Receipt ingestion and reconciliation API",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    if components is not None:
        app.state.components = components

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(main_router, prefix=settings.api_prefix)

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "receiptsync.main:create_app",
        factory=True,
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
