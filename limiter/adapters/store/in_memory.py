"""In-memory bucket store.

Notes:
- Per-process only: every instance sees its own records. Use it for tests and
  single-worker deployments; run RedisBucketStore when several processes share
  a quota.
- Atomic within the event loop: every operation runs under an asyncio.Lock,
  mirroring the per-key serialization Redis gives scripts.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from limiter.adapters.store.base import AbstractBucketStore, StoreConnectionError


@dataclass
class _Record:
    fields: dict[str, int]
    expire_at_ms: int


class InMemoryBucketStore(AbstractBucketStore):
    """Store with the same reply shapes as the Redis adapter.

    Attributes:
        connected: Toggle to simulate a store outage. While False every
            operation raises StoreConnectionError.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: dict[str, _Record] = {}
        self.connected = True

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise StoreConnectionError("in-memory store is disconnected")

    def _live_record(self, key: str) -> _Record | None:
        record = self._records.get(key)
        if record is None:
            return None
        if self._now_ms() >= record.expire_at_ms:
            del self._records[key]
            return None
        return record

    def is_connected(self) -> bool:
        return self.connected

    async def exists(self, key: str) -> bool:
        self._ensure_connected()
        async with self._lock:
            return self._live_record(key) is not None

    async def create_if_absent(
        self,
        key: str,
        fields: Mapping[str, int],
        expire_at_ms: int,
    ) -> Sequence[Any] | None:
        self._ensure_connected()
        async with self._lock:
            if self._live_record(key) is not None:
                return None
            self._records[key] = _Record(fields=dict(fields), expire_at_ms=expire_at_ms)
            return [len(fields), 1]

    async def decrement_and_read(self, key: str, field: str) -> Sequence[Any] | None:
        self._ensure_connected()
        async with self._lock:
            record = self._live_record(key)
            if record is None:
                return None
            record.fields[field] = record.fields.get(field, 0) - 1
            return [record.fields[field], dict(record.fields)]

    async def read(self, key: str) -> Mapping[Any, Any]:
        self._ensure_connected()
        async with self._lock:
            record = self._live_record(key)
            return dict(record.fields) if record else {}

    async def ping(self) -> bool:
        return self.connected

    def clear(self) -> None:
        """Drop every record."""
        self._records.clear()
