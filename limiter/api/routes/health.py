from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from limiter.api.dependencies import get_registry
from limiter.registry import LimiterRegistry

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(registry: Annotated[LimiterRegistry, Depends(get_registry)]) -> dict:
    """Health check endpoint.

    Pings the shared store. The service still answers 200 when the store is
    down, reporting ``degraded``, because limiters with local fallback keep
    serving.
    """

    connected = await registry.store.ping()
    return {
        "status": "ok" if connected else "degraded",
        "store": "connected" if connected else "disconnected",
    }
