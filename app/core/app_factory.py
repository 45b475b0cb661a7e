"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the counter store lifecycle) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import health_router, limited_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.rate_limit import close_rate_limiter, get_rate_limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the limiter on startup and release store connections on shutdown."""
    get_rate_limiter()
    logger.info(
        "app.started",
        extra={
            "storage_backend": settings.app.storage_backend,
            "rate_limit_enabled": settings.app.rate_limit_enabled,
            "ip_rps": settings.app.rate_limit_ip_rps,
            "token_rps": settings.app.rate_limit_token_rps,
            "failure_policy": settings.app.rate_limit_failure_policy,
        },
    )
    try:
        yield
    finally:
        await close_rate_limiter()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Edge Rate Limiter API",
        description=(
            "Per-identity request quotas enforced against a shared Redis store. "
            "Requests carrying an API token are limited per token; all others "
            "per client address. Identities that exceed their rate are blocked "
            "for a configurable period and receive HTTP 429."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)
    app.include_router(limited_router)

    return app
