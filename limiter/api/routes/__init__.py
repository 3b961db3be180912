from __future__ import annotations

from limiter.api.routes.health import router as health_router
from limiter.api.routes.limiters import router as limiters_router

__all__ = ["health_router", "limiters_router"]
