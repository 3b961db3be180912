"""Process-wide cache of limiters sharing one store."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any

from limiter.adapters.store.base import AbstractBucketStore
from limiter.core.config import settings
from limiter.limiter import Limiter

logger = logging.getLogger(__name__)


class LimiterRegistry:
    """Hands out one ``Limiter`` per id, all bound to the same store.

    Keyword arguments given to the registry (limit, duration,
    use_local_fallback, key_prefix, clock) become defaults for every limiter it
    builds; ``get`` can override them for a single id on first use.

    At most ``max_limiters`` limiters are kept; the least recently used one is
    evicted first. Quota state lives in the store, so an evicted id picks up
    its bucket again on the next ``get``.
    """

    def __init__(
        self,
        store: AbstractBucketStore,
        *,
        max_limiters: int | None = None,
        **defaults: Any,
    ) -> None:
        self._store = store
        self._max_limiters = max_limiters or settings.limiter.registry_max_limiters
        self._defaults = defaults
        self._lock = threading.Lock()
        self._limiters: OrderedDict[str, Limiter] = OrderedDict()
        self._evictions = 0

    def __repr__(self) -> str:
        return (
            f"LimiterRegistry(size={len(self._limiters)}, "
            f"max_limiters={self._max_limiters}, evictions={self._evictions})"
        )

    @property
    def store(self) -> AbstractBucketStore:
        return self._store

    def get(self, limiter_id: str, **overrides: Any) -> Limiter:
        with self._lock:
            limiter = self._limiters.get(limiter_id)
            if limiter is not None:
                self._limiters.move_to_end(limiter_id)
                return limiter

            options = {**self._defaults, **overrides}
            limiter = Limiter(limiter_id, store=self._store, **options)
            self._limiters[limiter_id] = limiter
            self._evict_if_over_capacity_locked()
            return limiter

    def _evict_if_over_capacity_locked(self) -> None:
        while len(self._limiters) > self._max_limiters:
            evicted_id, evicted = self._limiters.popitem(last=False)
            evicted.release_local_state()
            self._evictions += 1
            logger.debug(
                "registry.evicted",
                extra={"limiter_id": evicted_id, "size": len(self._limiters)},
            )

    def __contains__(self, limiter_id: str) -> bool:
        return limiter_id in self._limiters

    def __len__(self) -> int:
        return len(self._limiters)

    async def close(self) -> None:
        """Close every limiter, then the shared store."""
        with self._lock:
            limiters = list(self._limiters.values())
            self._limiters.clear()
        for limiter in limiters:
            await limiter.close()
        await self._store.close()
