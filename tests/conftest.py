"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded and pins
the limiter settings the tests rely on.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("LIMITER_DEFAULT_LIMIT", "2500")
os.environ.setdefault("LIMITER_DEFAULT_DURATION_MS", "60000")
os.environ.setdefault("LIMITER_USE_LOCAL_FALLBACK", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from limiter.adapters.store.in_memory import InMemoryBucketStore


class FakeClock:
    """Deterministic clock returning UNIX seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def now_ms(self) -> int:
        return int(self.current * 1000)

    def advance_ms(self, milliseconds: int) -> None:
        self.current += milliseconds / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryBucketStore:
    return InMemoryBucketStore(clock=clock)
