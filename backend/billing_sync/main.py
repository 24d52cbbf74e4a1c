"""Billing Sync — FastAPI application entry point.

Run with the app factory so that nothing is configured at import time::

    uvicorn billing_sync.main:create_app --factory
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing_sync.api.v1.webhooks import router as webhooks_router
from billing_sync.billing.reconciler import build_reconciler
from billing_sync.config import Settings, get_settings
from billing_sync.database import create_tables, make_engine, make_session_factory


def configure_logging(settings: Settings) -> None:
    """Configure the root logger so all billing_sync.* loggers output to stderr."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; collaborators are wired in the lifespan."""
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup: one engine and one reconciler per process
        engine = make_engine(settings)
        if settings.auto_create_tables:
            await create_tables(engine)
        app.state.reconciler = build_reconciler(settings, make_session_factory(engine))
        yield
        # Shutdown: dispose engine connections
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Reconciles Stripe billing webhooks into canonical subscription records.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(webhooks_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app
