"""Bucket lifecycle: create, consume and inspect a shared quota bucket.

All reads and writes of bucket state go through single atomic store
operations. The one store failure absorbed here is losing the create race to
another instance; that caller simply consumes the winner's bucket.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from pydantic import ValidationError

from limiter.adapters.fallback import LocalFallbackBucket
from limiter.adapters.store.base import AbstractBucketStore, StoreConnectionError, StoreError
from limiter.core.errors import (
    BucketEmptyError,
    BucketExistsError,
    CreateBucketError,
    InvalidBucketError,
    StoreFailureError,
    StoreUnavailableError,
)
from limiter.core.logging import get_limiter_logger
from limiter.schemas.bucket import Bucket

T = TypeVar("T")

BUCKET_FIELDS = ("limit", "remaining", "reset")
COUNTER_FIELD = "remaining"

# A bucket can expire between the existence check and the decrement; retry
# the create/consume cycle this many times before giving up.
MAX_CONSUME_ATTEMPTS = 3


def _describe(value: Any) -> str:
    size = len(value) if isinstance(value, (list, tuple, dict)) else "n/a"
    return f"type={type(value).__name__} length={size}"


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _record_to_mapping(record: Any) -> Mapping[str, Any] | None:
    """Normalize a hash reply (mapping or flat field/value list)."""

    if isinstance(record, Mapping):
        return record
    if isinstance(record, (list, tuple)) and len(record) % 2 == 0:
        return dict(zip(record[::2], record[1::2]))
    return None


class BucketService:
    """Owns the create/consume protocol for one limiter's bucket."""

    def __init__(
        self,
        *,
        limiter_id: str,
        key: str,
        limit: int,
        duration_ms: int,
        store: AbstractBucketStore,
        fallback: LocalFallbackBucket | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._limiter_id = limiter_id
        self._key = key
        self._limit = limit
        self._duration_ms = duration_ms
        self._store = store
        self._fallback = fallback
        self._clock = clock
        self._logger = get_limiter_logger(limiter_id)

    @property
    def key(self) -> str:
        return self._key

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        """Await a store call, wrapping store failures with limiter context."""
        try:
            return await call
        except StoreError as exc:
            self._logger.warning(
                "store.call_failed",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise StoreFailureError(
                limiter_id=self._limiter_id,
                message=f"Store call '{operation}' failed: {exc}",
                cause=exc,
                details={"key": self._key},
            ) from exc

    # -- create ---------------------------------------------------------------

    async def create_bucket(self) -> Bucket:
        """Create a fresh bucket for the current window.

        Returns:
            The newly stored bucket (``remaining == limit``).

        Raises:
            BucketExistsError: A live bucket already exists, or a concurrent
                creator won the conditional create.
            CreateBucketError: The store answered with an unexpected result.
            StoreFailureError: A store call failed.
        """
        if await self._call("exists", self._store.exists(self._key)):
            raise BucketExistsError(
                limiter_id=self._limiter_id,
                message="A bucket exists already",
                details={"key": self._key},
            )

        reset = self._now_ms() + self._duration_ms
        fields = {"limit": self._limit, "remaining": self._limit, "reset": reset}

        replies = await self._call(
            "create_if_absent",
            self._store.create_if_absent(self._key, fields, reset),
        )
        if replies is None:
            raise BucketExistsError(
                limiter_id=self._limiter_id,
                message="A bucket was created concurrently",
                details={"key": self._key},
            )

        self._verify_create_replies(replies, expected_fields=len(fields))

        self._logger.debug(
            "bucket.created",
            extra={"limit": self._limit, "remaining": self._limit, "reset": reset},
        )
        return Bucket(**fields)

    def _verify_create_replies(self, replies: Any, *, expected_fields: int) -> None:
        if not isinstance(replies, (list, tuple)) or len(replies) != 2:
            raise self._create_error(
                "Unexpected response when creating bucket: expected a 2-item sequence, "
                f"got {_describe(replies)}",
                replies,
            )

        written, expiry = replies
        if isinstance(written, bool) or written != expected_fields:
            raise self._create_error(
                f"Storing bucket hash failed with result {written!r}",
                replies,
            )
        if expiry is not True and (isinstance(expiry, bool) or expiry != 1):
            raise self._create_error(
                f"Setting expiry for bucket failed with result {expiry!r}",
                replies,
            )

    def _create_error(self, message: str, replies: Any) -> CreateBucketError:
        self._logger.debug("bucket.create_failed", extra={"reason": message})
        return CreateBucketError(
            limiter_id=self._limiter_id,
            message=message,
            cause=TypeError(message),
            details={"key": self._key, "replies": repr(replies)[:200]},
        )

    # -- consume --------------------------------------------------------------

    async def throttle(self) -> Bucket:
        """Consume one token.

        Returns:
            Bucket view after the decrement.

        Raises:
            BucketEmptyError: The window is exhausted.
            StoreUnavailableError: The store is unreachable and local
                fallback is disabled.
            StoreFailureError, CreateBucketError, InvalidBucketError: See
                the error taxonomy.
        """
        if not self._store.is_connected():
            return self._consume_locally()

        try:
            return await self._consume_shared()
        except StoreFailureError as exc:
            if not isinstance(exc.cause, StoreConnectionError):
                raise
            return self._consume_locally(cause=exc)

    async def _consume_shared(self) -> Bucket:
        for attempt in range(1, MAX_CONSUME_ATTEMPTS + 1):
            if not await self._call("exists", self._store.exists(self._key)):
                try:
                    await self.create_bucket()
                except BucketExistsError:
                    # Another instance created it first; consume theirs.
                    self._logger.debug("bucket.create_race_lost", extra={"attempt": attempt})

            replies = await self._call(
                "decrement_and_read",
                self._store.decrement_and_read(self._key, COUNTER_FIELD),
            )
            if replies is None:
                self._logger.debug("bucket.expired_before_consume", extra={"attempt": attempt})
                continue

            return self._settle(replies)

        raise InvalidBucketError(
            limiter_id=self._limiter_id,
            message=f"Bucket disappeared {MAX_CONSUME_ATTEMPTS} times while consuming",
            details={"key": self._key},
        )

    def _settle(self, replies: Any) -> Bucket:
        decremented, bucket = self._parse_consume_replies(replies)

        if decremented < 0:
            self._logger.debug(
                "bucket.empty",
                extra={"limit": bucket.limit, "remaining": 0, "reset": bucket.reset},
            )
            raise BucketEmptyError(
                limiter_id=self._limiter_id,
                message=(
                    f"All {bucket.limit} tokens from this bucket have been used. "
                    f"Retry after {bucket.reset}"
                ),
                details={"limit": bucket.limit, "remaining": -1, "reset": bucket.reset},
                limit=bucket.limit,
                reset=bucket.reset,
            )
        return bucket

    def _parse_consume_replies(self, replies: Any) -> tuple[int, Bucket]:
        if not isinstance(replies, (list, tuple)) or len(replies) != 2:
            raise self._invalid(
                "Unexpected response when consuming from bucket: expected a 2-item "
                f"sequence, got {_describe(replies)}",
                replies,
            )

        value, record = replies
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._invalid(f"Decrement returned a non-integer {value!r}", replies)
        decremented = value

        bucket = self._parse_record(record, replies)
        if bucket.remaining != max(decremented, -1):
            raise self._invalid(
                f"Bucket remaining {bucket.remaining} disagrees with decrement {decremented}",
                replies,
            )
        return decremented, bucket

    def _parse_record(self, record: Any, replies: Any) -> Bucket:
        fields = _record_to_mapping(record)
        if fields is None:
            raise self._invalid(f"Bucket has wrong format: {_describe(record)}", replies)

        values: dict[str, int] = {}
        for name in BUCKET_FIELDS:
            parsed = _parse_int(fields.get(name))
            if parsed is None:
                raise self._invalid(f"Bucket field '{name}' is missing or not an integer", replies)
            values[name] = parsed

        values["remaining"] = max(values["remaining"], -1)
        try:
            return Bucket(**values)
        except ValidationError as exc:
            raise self._invalid(f"Bucket values are out of range: {values}", replies) from exc

    def _invalid(self, message: str, replies: Any) -> InvalidBucketError:
        self._logger.debug("bucket.invalid", extra={"reason": message})
        return InvalidBucketError(
            limiter_id=self._limiter_id,
            message=message,
            cause=TypeError(message),
            details={"key": self._key, "replies": repr(replies)[:200]},
        )

    # -- fallback -------------------------------------------------------------

    def _consume_locally(self, cause: BaseException | None = None) -> Bucket:
        if self._fallback is None:
            raise StoreUnavailableError(
                limiter_id=self._limiter_id,
                message="The store is not connected and local fallback is disabled",
                cause=cause,
            )

        self._logger.debug("bucket.fallback", extra={"reason": "store_disconnected"})
        try:
            return self._fallback.consume()
        except BucketEmptyError:
            self._logger.debug("bucket.empty", extra={"limit": self._limit, "fallback": True})
            raise

    # -- inspect --------------------------------------------------------------

    async def peek(self) -> Bucket | None:
        """Return the live bucket without consuming, or None when absent."""
        if not self._store.is_connected():
            return self._peek_locally()

        try:
            record = await self._call("read", self._store.read(self._key))
        except StoreFailureError as exc:
            if not isinstance(exc.cause, StoreConnectionError):
                raise
            return self._peek_locally(cause=exc)

        if not record:
            return None
        return self._parse_record(record, record)

    def _peek_locally(self, cause: BaseException | None = None) -> Bucket | None:
        if self._fallback is None:
            raise StoreUnavailableError(
                limiter_id=self._limiter_id,
                message="The store is not connected and local fallback is disabled",
                cause=cause,
            )
        return self._fallback.view()
