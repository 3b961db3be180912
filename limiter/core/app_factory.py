"""Application factory for the limiter HTTP service.

Centralizes app construction (registry, handlers, routers) so tests can build
an app around an in-memory store.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from limiter.adapters.store.redis_store import RedisBucketStore
from limiter.api.routes import health_router, limiters_router
from limiter.core.config import settings
from limiter.core.exception_handlers import setup_exception_handlers
from limiter.core.logging import configure_logging
from limiter.registry import LimiterRegistry


def build_default_registry() -> LimiterRegistry:
    """Registry on a Redis store built from settings, with settings defaults."""
    return LimiterRegistry(
        RedisBucketStore.from_settings(settings.redis),
        limit=settings.limiter.default_limit,
        duration=settings.limiter.default_duration_ms,
        use_local_fallback=settings.limiter.use_local_fallback,
        key_prefix=settings.limiter.key_prefix,
    )


def create_app(registry: LimiterRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        registry: Limiter registry to serve; defaults to one backed by Redis.

    Returns:
        Configured FastAPI app with handlers and routers.
    """
    configure_logging(settings.log)

    if registry is None:
        registry = build_default_registry()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.registry.close()

    app = FastAPI(
        title="Shared Limiter",
        description=(
            "Distributed fixed-window rate limiter. Instances coordinate through "
            "Redis to enforce one quota per limiter id."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.state.registry = registry

    setup_exception_handlers(app)

    app.include_router(limiters_router, prefix="/v1")
    app.include_router(health_router)

    return app
