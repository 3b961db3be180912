"""Limiter facade.

A ``Limiter`` binds an id, a limit and a window duration to a shared store.
Every instance configured with the same id (in this process or any other)
draws from the same bucket.

Usage:
    async with Limiter("github-api", limit=5000, duration=3_600_000) as limiter:
        bucket = await limiter.throttle()
"""

from __future__ import annotations

import time
from typing import Callable

from redis.asyncio import Redis

from limiter.adapters.fallback import LocalFallbackBucket
from limiter.adapters.store.base import AbstractBucketStore
from limiter.adapters.store.redis_store import RedisBucketStore
from limiter.core.config import settings
from limiter.core.logging import get_limiter_logger
from limiter.schemas.bucket import Bucket
from limiter.services.bucket_service import BucketService


def build_bucket_key(limiter_id: str, prefix: str | None = None) -> str:
    """Return the store key holding the bucket of ``limiter_id``."""
    return f"{prefix or settings.limiter.key_prefix}:{limiter_id}:"


class Limiter:
    """Distributed fixed-window rate limiter for one quota id.

    Attributes:
        id: Quota identifier shared by all cooperating instances.
        limit: Maximum number of calls per window.
        duration: Window length in milliseconds.
        use_local_fallback: Serve calls from an in-process bucket while the
            store is unreachable.
    """

    def __init__(
        self,
        id: str,
        *,
        store: AbstractBucketStore | None = None,
        redis_client: Redis | None = None,
        limit: int | None = None,
        duration: int | None = None,
        use_local_fallback: bool | None = None,
        key_prefix: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Values left as None are taken from ``settings.limiter``. When neither
        ``store`` nor ``redis_client`` is given, a Redis store is built from
        ``settings.redis`` and closed by :meth:`close`. A ``redis_client`` is
        wrapped in a store that :meth:`close` stops without closing the client.

        Raises:
            ValueError: If id is empty or limit/duration are not positive.
        """
        if not id or not isinstance(id, str):
            raise ValueError("id must be a non-empty string")
        if store is not None and redis_client is not None:
            raise ValueError("pass either store or redis_client, not both")

        self.id = id
        self.limit = settings.limiter.default_limit if limit is None else limit
        self.duration = settings.limiter.default_duration_ms if duration is None else duration
        self.use_local_fallback = (
            settings.limiter.use_local_fallback if use_local_fallback is None else use_local_fallback
        )
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ValueError("limit must be a positive integer")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int) or self.duration < 1:
            raise ValueError("duration must be a positive integer (milliseconds)")

        # A store built here is closed by close(); it closes the Redis client
        # only when it created that client too.
        self._owns_store = store is None
        if store is None:
            if redis_client is not None:
                store = RedisBucketStore(redis_client)
            else:
                store = RedisBucketStore.from_settings(settings.redis)
        self._store = store

        self._fallback = (
            LocalFallbackBucket(limiter_id=id, limit=self.limit, duration_ms=self.duration, clock=clock)
            if self.use_local_fallback
            else None
        )
        self._service = BucketService(
            limiter_id=id,
            key=build_bucket_key(id, key_prefix),
            limit=self.limit,
            duration_ms=self.duration,
            store=store,
            fallback=self._fallback,
            clock=clock,
        )

        get_limiter_logger(id).debug(
            "limiter.created",
            extra={
                "limit": self.limit,
                "duration_ms": self.duration,
                "use_local_fallback": self.use_local_fallback,
            },
        )

    def __repr__(self) -> str:
        return f"Limiter(id={self.id!r}, limit={self.limit}, duration={self.duration})"

    @property
    def key(self) -> str:
        return self._service.key

    @property
    def store(self) -> AbstractBucketStore:
        return self._store

    async def create_bucket(self) -> Bucket:
        """Create the bucket for the current window.

        Raises:
            BucketExistsError: A live bucket already exists.
            CreateBucketError: The store answered with an unexpected result.
            StoreFailureError: A store call failed.
        """
        return await self._service.create_bucket()

    async def throttle(self) -> Bucket:
        """Consume one call from the shared quota.

        Returns:
            Bucket view with the remaining calls of the window.

        Raises:
            BucketEmptyError: No calls left until ``reset``.
            StoreUnavailableError: Store unreachable and fallback disabled.
            StoreFailureError: A store call failed.
            CreateBucketError, InvalidBucketError: The store returned a
                malformed result.
        """
        return await self._service.throttle()

    async def peek(self) -> Bucket | None:
        """Return the live bucket without consuming, or None when absent."""
        return await self._service.peek()

    def release_local_state(self) -> None:
        """Drop the local fallback window and cancel its timer."""
        if self._fallback is not None:
            self._fallback.reset()

    async def close(self) -> None:
        """Drop the local window and stop the store this limiter built.

        A store passed in by the caller is left open; its owner closes it.
        """
        self.release_local_state()
        if self._owns_store:
            await self._store.close()

    async def __aenter__(self) -> "Limiter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
