"""Limiter error taxonomy.

Every failure a caller can observe is a ``LimiterError`` subclass carrying the
limiter id, a human-readable message and the underlying cause. The class-level
``code`` is a stable discriminant, so callers can either ``except`` a concrete
class or dispatch on ``exc.code``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypedDict

if TYPE_CHECKING:
    from limiter.schemas.bucket import Bucket


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and HTTP responses."""

    limit: int
    remaining: int
    reset: int
    key: str
    replies: str
    context: dict[str, Any]


@dataclass
class LimiterError(Exception):
    """Base error for limiter failures.

    Attributes:
        limiter_id: Id of the limiter that failed.
        message: Human-readable error message.
        cause: Underlying exception, if any.
        details: Optional structured details for debugging/observability.
    """

    code: ClassVar[str] = "limiter_error"

    limiter_id: str
    message: str
    cause: BaseException | None = None
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(f"{self.limiter_id or 'anonymous limiter'} - {self.message}")
        if self.cause is not None:
            self.__cause__ = self.cause


class StoreFailureError(LimiterError):
    """A call against the shared store failed."""

    code = "store_failure"


class StoreUnavailableError(LimiterError):
    """The store is disconnected and local fallback is disabled."""

    code = "store_unavailable"


class BucketExistsError(LimiterError):
    """A bucket for this id already lives in the store."""

    code = "bucket_exists"


class CreateBucketError(LimiterError):
    """The create transaction answered with an unexpected result."""

    code = "create_bucket_failed"


class InvalidBucketError(LimiterError):
    """The consume transaction answered with an unexpected result."""

    code = "invalid_bucket"


@dataclass
class BucketEmptyError(LimiterError):
    """All tokens of the current window have been used.

    ``limit`` and ``reset`` are carried so callers can compute retry-after.
    """

    code: ClassVar[str] = "bucket_empty"

    limit: int = 0
    reset: int = 0

    @property
    def bucket(self) -> "Bucket":
        from limiter.schemas.bucket import Bucket

        return Bucket(limit=self.limit, remaining=-1, reset=self.reset)

    def retry_after_ms(self, now_ms: int) -> int:
        return max(0, self.reset - now_ms)
