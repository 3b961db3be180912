"""Process-local fallback bucket.

Notes:
- Used only while the shared store is unreachable; the quota it enforces is
  visible to this process alone, so N instances may admit up to N * limit
  calls during an outage.
- Thread-safe: the decrement runs under a lock.
- Never persisted: the bucket is dropped by a timer ``duration`` after it
  was created, and the next call opens a fresh window.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from limiter.core.errors import BucketEmptyError
from limiter.schemas.bucket import Bucket

logger = logging.getLogger(__name__)


class LocalFallbackBucket:
    """Fixed-window counter for a single limiter, local to this process."""

    def __init__(
        self,
        *,
        limiter_id: str,
        limit: int,
        duration_ms: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the fallback bucket.

        Args:
            limiter_id: Id of the owning limiter (used in errors and logs).
            limit: Maximum number of tokens per window.
            duration_ms: Window length in milliseconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit or duration_ms are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if duration_ms < 1:
            raise ValueError("duration_ms must be >= 1")

        self._limiter_id = limiter_id
        self._limit = limit
        self._duration_ms = duration_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._remaining: int | None = None
        self._reset: int = 0
        self._timer: asyncio.TimerHandle | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._remaining is not None and self._now_ms() < self._reset

    def _open_window_locked(self, now_ms: int) -> None:
        self._cancel_timer_locked()
        self._remaining = self._limit
        self._reset = now_ms + self._duration_ms

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on; the clock check in consume() expires it.
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self._duration_ms / 1000, self.reset)

        logger.debug(
            "bucket.fallback_created",
            extra={
                "limiter_id": self._limiter_id,
                "limit": self._limit,
                "reset": self._reset,
            },
        )

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def consume(self) -> Bucket:
        """Take one token from the local window, opening one if needed.

        Returns:
            Bucket view after the decrement.

        Raises:
            BucketEmptyError: When the local window is exhausted.
        """
        now_ms = self._now_ms()
        with self._lock:
            if self._remaining is None or now_ms >= self._reset:
                self._open_window_locked(now_ms)

            self._remaining -= 1
            remaining = self._remaining
            reset = self._reset

        if remaining < 0:
            raise BucketEmptyError(
                limiter_id=self._limiter_id,
                message=f"All {self._limit} tokens of the local fallback bucket have been used",
                details={"limit": self._limit, "remaining": -1, "reset": reset},
                limit=self._limit,
                reset=reset,
            )
        return Bucket(limit=self._limit, remaining=remaining, reset=reset)

    def view(self) -> Bucket | None:
        """Return the current window without consuming, or None."""
        with self._lock:
            if self._remaining is None or self._now_ms() >= self._reset:
                return None
            return Bucket(limit=self._limit, remaining=max(-1, self._remaining), reset=self._reset)

    def reset(self) -> None:
        """Drop the current window."""
        with self._lock:
            self._cancel_timer_locked()
            self._remaining = None
            self._reset = 0
