"""Distributed fixed-window rate limiter backed by a shared Redis store."""

from limiter.adapters.store import AbstractBucketStore, InMemoryBucketStore, RedisBucketStore
from limiter.core.errors import (
    BucketEmptyError,
    BucketExistsError,
    CreateBucketError,
    InvalidBucketError,
    LimiterError,
    StoreFailureError,
    StoreUnavailableError,
)
from limiter.limiter import Limiter
from limiter.registry import LimiterRegistry
from limiter.schemas.bucket import Bucket

__all__ = [
    "AbstractBucketStore",
    "Bucket",
    "BucketEmptyError",
    "BucketExistsError",
    "CreateBucketError",
    "InMemoryBucketStore",
    "InvalidBucketError",
    "Limiter",
    "LimiterError",
    "LimiterRegistry",
    "RedisBucketStore",
    "StoreFailureError",
    "StoreUnavailableError",
]
