"""Shared bucket stores.

This package provides a small abstraction layer so the lifecycle engine can
run against Redis in production and an in-process store in tests.
"""

from limiter.adapters.store.base import AbstractBucketStore, StoreConnectionError, StoreError
from limiter.adapters.store.in_memory import InMemoryBucketStore
from limiter.adapters.store.redis_store import RedisBucketStore

__all__ = [
    "AbstractBucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "StoreConnectionError",
    "StoreError",
]
