"""Global exception handlers mapping limiter errors to HTTP responses.

Design:
- BucketEmptyError → 429 with Retry-After / X-RateLimit-* headers
- StoreUnavailableError, StoreFailureError → 503 (shared store problem)
- CreateBucketError, InvalidBucketError → 500 (store returned bad data)
- Unexpected Exception → generic 500 (safety net, no details leaked)
"""

import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse

from limiter.core.config import settings
from limiter.core.errors import (
    BucketEmptyError,
    LimiterError,
    StoreFailureError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


def rate_limit_headers(limit: int, remaining: int, reset: int) -> dict[str, str]:
    """Build the X-RateLimit-* headers for a bucket view."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(max(0, remaining)),
        "X-RateLimit-Reset": str(reset),
    }


def _status_for(exc: LimiterError) -> int:
    if isinstance(exc, BucketEmptyError):
        return 429
    if isinstance(exc, (StoreUnavailableError, StoreFailureError)):
        return 503
    return 500


async def limiter_error_handler(request: Request, exc: LimiterError) -> JSONResponse:
    """Handle limiter errors with a consistent JSON body.

    Args:
        request: FastAPI request object.
        exc: LimiterError instance (or subclass).

    Returns:
        JSONResponse with the mapped status code and error details.
    """
    status_code = _status_for(exc)

    logger.log(
        logging.WARNING if status_code < 500 else logging.ERROR,
        "limiter_error_handled",
        extra={
            "limiter_id": exc.limiter_id,
            "error_code": exc.code,
            "status_code": status_code,
            "request_path": request.url.path,
        },
    )

    error_content: dict = {
        "code": exc.code,
        "message": exc.message,
        "limiter_id": exc.limiter_id,
    }
    if exc.details:
        error_content["details"] = dict(exc.details)

    headers: dict[str, str] = {}
    if isinstance(exc, BucketEmptyError) and settings.app.rate_limit_include_headers:
        now_ms = int(time.time() * 1000)
        headers["Retry-After"] = str(exc.bucket.retry_after_seconds(now_ms))
        headers.update(rate_limit_headers(exc.limit, -1, exc.reset))

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors; never leaks internals."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with a FastAPI app."""
    app.exception_handler(LimiterError)(limiter_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
