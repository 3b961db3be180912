"""FastAPI dependencies for guarding routes with a shared quota.

Usage:
    github_quota = RequireQuota(Limiter("github-api", limit=5000, duration=3_600_000))

    @router.get("/repos", dependencies=[Depends(github_quota)])
    async def list_repos(): ...
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import HTTPException, Request, Response, status

from limiter.core.config import settings
from limiter.core.errors import BucketEmptyError
from limiter.core.exception_handlers import rate_limit_headers
from limiter.limiter import Limiter
from limiter.registry import LimiterRegistry
from limiter.schemas.bucket import Bucket

logger = logging.getLogger(__name__)

LimiterResolver = Callable[[Request], Limiter]


def get_registry(request: Request) -> LimiterRegistry:
    """Return the registry stored on the application state."""
    return request.app.state.registry


class RequireQuota:
    """Route dependency consuming one call from a limiter.

    On success the bucket is stored on ``request.state.bucket`` and the
    X-RateLimit-* headers are added to the response. When the window is
    exhausted the request is rejected with HTTP 429.
    """

    def __init__(self, limiter: Limiter | LimiterResolver) -> None:
        self._limiter = limiter

    def _resolve(self, request: Request) -> Limiter:
        if isinstance(self._limiter, Limiter):
            return self._limiter
        return self._limiter(request)

    async def __call__(self, request: Request, response: Response) -> Bucket:
        limiter = self._resolve(request)
        include_headers = settings.app.rate_limit_include_headers

        try:
            bucket = await limiter.throttle()
        except BucketEmptyError as exc:
            now_ms = int(time.time() * 1000)
            retry_after = exc.bucket.retry_after_seconds(now_ms)
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "limiter_id": limiter.id,
                    "limit": exc.limit,
                    "reset": exc.reset,
                    "retry_after_s": retry_after,
                },
            )
            headers: dict[str, str] = {}
            if include_headers:
                headers["Retry-After"] = str(retry_after)
                headers.update(rate_limit_headers(exc.limit, -1, exc.reset))
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Try again later.",
                headers=headers or None,
            ) from exc

        request.state.bucket = bucket
        if include_headers:
            response.headers.update(rate_limit_headers(bucket.limit, bucket.remaining, bucket.reset))
        return bucket
