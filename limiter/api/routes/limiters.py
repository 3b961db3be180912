from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from limiter.api.dependencies import get_registry
from limiter.registry import LimiterRegistry
from limiter.schemas.bucket import Bucket

router = APIRouter(prefix="/limiters", tags=["Limiters"])

LimiterId = Annotated[str, Path(min_length=1, max_length=200)]


@router.post("/{limiter_id}/throttle", response_model=Bucket)
async def throttle(
    limiter_id: LimiterId,
    registry: Annotated[LimiterRegistry, Depends(get_registry)],
) -> Bucket:
    """Consume one call from the quota identified by ``limiter_id``.

    Exhaustion answers 429 with Retry-After; store problems answer 503
    (see limiter.core.exception_handlers).
    """

    return await registry.get(limiter_id).throttle()


@router.get("/{limiter_id}", response_model=Bucket)
async def peek(
    limiter_id: LimiterId,
    registry: Annotated[LimiterRegistry, Depends(get_registry)],
) -> Bucket:
    """Return the live bucket without consuming a call."""

    bucket = await registry.get(limiter_id).peek()
    if bucket is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No live bucket for limiter '{limiter_id}'",
        )
    return bucket
