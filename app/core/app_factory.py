"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.

The factory is the composition root: it owns the rate limit guard and the
database, stores them on ``app.state`` and ties their lifecycle to the app
lifespan.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.adapters.db.session import Database
from app.adapters.storage.local import LocalFileStorage
from app.api.routes import auth_router, health_router, upload_router, users_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import UnhandledExceptionMiddleware, setup_exception_handlers
from app.core.logging import configure_logging, shutdown_logging
from app.core.middleware import auth_context_middleware, request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimitMiddleware, build_rate_limit_guard

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start background maintenance on startup and release resources on shutdown."""

    cfg: Settings = app.state.settings
    guard = app.state.rate_limit_guard
    if cfg.rate_limit.enabled:
        guard.start_cleanup(cfg.rate_limit.cleanup_interval_seconds)
    logger.info("app.startup", extra={"app_env": cfg.app_env})
    try:
        yield
    finally:
        await guard.stop_cleanup()
        app.state.database.dispose()
        logger.info("app.shutdown")
        shutdown_logging()


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build the app from; defaults to the
            environment-loaded global settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    database = Database(cfg.database.url, echo=cfg.database.echo)
    database.create_all()

    upload_storage = LocalFileStorage(cfg.upload.dir)
    upload_storage.ensure_root()

    app = FastAPI(
        title=cfg.app.name,
        description=(
            "User registration, login and profile management. Requests are "
            "rate limited per client (address, or address and user once "
            "authenticated); authentication endpoints have a stricter quota. "
            'Every failure returns {"success": false, "error": ...}.'
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.database = database
    app.state.upload_storage = upload_storage
    app.state.rate_limit_guard = build_rate_limit_guard(cfg.rate_limit)

    # Middleware: the last one added runs first, so the order below yields
    # request id -> unhandled errors -> auth context -> rate limit -> routes.
    if cfg.rate_limit.enabled:
        app.add_middleware(
            RateLimitMiddleware,
            guard=app.state.rate_limit_guard,
            include_headers=cfg.rate_limit.include_headers,
            trust_forwarded_for=cfg.rate_limit.trust_forwarded_for,
        )
    app.middleware("http")(auth_context_middleware)
    app.add_middleware(UnhandledExceptionMiddleware, production=cfg.is_production)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app, production=cfg.is_production)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(upload_router)
    app.mount("/uploads", StaticFiles(directory=upload_storage.root), name="uploads")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, error schema)
    apply_openapi_customizations(app)

    return app
