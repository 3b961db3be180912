"""Unit tests for BucketService result validation and race handling."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

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
from limiter.services.bucket_service import MAX_CONSUME_ATTEMPTS, BucketService

KEY = "limiter:svc:"
RESET = 1_700_000_010_000


def _mock_store(**overrides: Any) -> MagicMock:
    store = MagicMock(spec=AbstractBucketStore)
    store.is_connected.return_value = True
    store.exists = AsyncMock(return_value=True)
    store.create_if_absent = AsyncMock(return_value=[3, 1])
    store.decrement_and_read = AsyncMock(
        return_value=[2, {"limit": "3", "remaining": "2", "reset": str(RESET)}]
    )
    store.read = AsyncMock(return_value={})
    for name, value in overrides.items():
        setattr(store, name, value)
    return store


def _service(store: MagicMock, clock, *, fallback: LocalFallbackBucket | None = None) -> BucketService:
    return BucketService(
        limiter_id="svc",
        key=KEY,
        limit=3,
        duration_ms=10000,
        store=store,
        fallback=fallback,
        clock=clock,
    )


class TestCreateBucket:
    @pytest.mark.asyncio
    async def test_writes_all_fields_with_expiry(self, clock) -> None:
        store = _mock_store(exists=AsyncMock(return_value=False))
        service = _service(store, clock)

        bucket = await service.create_bucket()

        expected_reset = clock.now_ms() + 10000
        store.create_if_absent.assert_awaited_once_with(
            KEY,
            {"limit": 3, "remaining": 3, "reset": expected_reset},
            expected_reset,
        )
        assert bucket.model_dump() == {"limit": 3, "remaining": 3, "reset": expected_reset}

    @pytest.mark.asyncio
    async def test_lost_conditional_create_is_bucket_exists(self, clock) -> None:
        store = _mock_store(
            exists=AsyncMock(return_value=False),
            create_if_absent=AsyncMock(return_value=None),
        )

        with pytest.raises(BucketExistsError):
            await _service(store, clock).create_bucket()

    @pytest.mark.asyncio
    async def test_existing_bucket_skips_write(self, clock) -> None:
        store = _mock_store()

        with pytest.raises(BucketExistsError):
            await _service(store, clock).create_bucket()

        store.create_if_absent.assert_not_awaited()

    @pytest.mark.parametrize(
        "replies",
        [
            "OK",
            [],
            [3],
            [3, 1, 1],
            [0, 1],
            ["3", 1],
            [True, 1],
            [3, 0],
            [3, False],
            [3, "1"],
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_create_result(self, clock, replies: Any) -> None:
        store = _mock_store(
            exists=AsyncMock(return_value=False),
            create_if_absent=AsyncMock(return_value=replies),
        )

        with pytest.raises(CreateBucketError) as exc_info:
            await _service(store, clock).create_bucket()

        assert exc_info.value.code == "create_bucket_failed"
        assert isinstance(exc_info.value.cause, TypeError)

    @pytest.mark.asyncio
    async def test_accepts_boolean_expiry_marker(self, clock) -> None:
        store = _mock_store(
            exists=AsyncMock(return_value=False),
            create_if_absent=AsyncMock(return_value=(3, True)),
        )

        bucket = await _service(store, clock).create_bucket()

        assert bucket.remaining == 3

    @pytest.mark.asyncio
    async def test_store_error_is_wrapped(self, clock) -> None:
        cause = StoreError("boom")
        store = _mock_store(exists=AsyncMock(side_effect=cause))

        with pytest.raises(StoreFailureError) as exc_info:
            await _service(store, clock).create_bucket()

        assert exc_info.value.cause is cause
        assert exc_info.value.limiter_id == "svc"


class TestThrottle:
    @pytest.mark.asyncio
    async def test_consumes_existing_bucket(self, clock) -> None:
        store = _mock_store()

        bucket = await _service(store, clock).throttle()

        assert bucket.model_dump() == {"limit": 3, "remaining": 2, "reset": RESET}
        store.decrement_and_read.assert_awaited_once_with(KEY, "remaining")
        store.create_if_absent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accepts_flat_hash_reply(self, clock) -> None:
        store = _mock_store(
            decrement_and_read=AsyncMock(
                return_value=[1, ["limit", "3", "remaining", "1", "reset", str(RESET)]]
            )
        )

        bucket = await _service(store, clock).throttle()

        assert bucket.remaining == 1

    @pytest.mark.asyncio
    async def test_creates_missing_bucket_then_consumes(self, clock) -> None:
        store = _mock_store(exists=AsyncMock(return_value=False))

        bucket = await _service(store, clock).throttle()

        store.create_if_absent.assert_awaited_once()
        store.decrement_and_read.assert_awaited_once()
        assert bucket.remaining == 2

    @pytest.mark.asyncio
    async def test_lost_create_race_consumes_winner_bucket(self, clock) -> None:
        store = _mock_store(
            exists=AsyncMock(return_value=False),
            create_if_absent=AsyncMock(return_value=None),
        )

        bucket = await _service(store, clock).throttle()

        assert bucket.remaining == 2
        store.decrement_and_read.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_create_failures_propagate(self, clock) -> None:
        store = _mock_store(
            exists=AsyncMock(return_value=False),
            create_if_absent=AsyncMock(return_value=["OK", 1]),
        )

        with pytest.raises(CreateBucketError):
            await _service(store, clock).throttle()

        store.decrement_and_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bucket_expiring_before_decrement_is_recreated(self, clock) -> None:
        store = _mock_store(
            exists=AsyncMock(side_effect=[True, False, False]),
            decrement_and_read=AsyncMock(
                side_effect=[None, [2, {"limit": "3", "remaining": "2", "reset": str(RESET)}]]
            ),
        )

        bucket = await _service(store, clock).throttle()

        assert bucket.remaining == 2
        store.create_if_absent.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_when_bucket_keeps_vanishing(self, clock) -> None:
        store = _mock_store(decrement_and_read=AsyncMock(return_value=None))

        with pytest.raises(InvalidBucketError):
            await _service(store, clock).throttle()

        assert store.decrement_and_read.await_count == MAX_CONSUME_ATTEMPTS

    @pytest.mark.asyncio
    async def test_negative_remaining_is_exhaustion(self, clock) -> None:
        store = _mock_store(
            decrement_and_read=AsyncMock(
                return_value=[-4, {"limit": "3", "remaining": "-4", "reset": str(RESET)}]
            )
        )

        with pytest.raises(BucketEmptyError) as exc_info:
            await _service(store, clock).throttle()

        error = exc_info.value
        assert (error.limit, error.reset) == (3, RESET)
        assert error.bucket.remaining == -1
        assert error.details == {"limit": 3, "remaining": -1, "reset": RESET}

    @pytest.mark.parametrize(
        "replies",
        [
            {"remaining": 2},
            "garbage",
            [],
            [2],
            [2, {}, "extra"],
            ["2", {"limit": "3", "remaining": "2", "reset": "1"}],
            [True, {"limit": "3", "remaining": "2", "reset": "1"}],
            [2, "not-a-hash"],
            [2, ["limit", "3", "remaining"]],
            [2, {"remaining": "2", "reset": "1"}],
            [2, {"limit": "three", "remaining": "2", "reset": "1"}],
            [2, {"limit": "0", "remaining": "2", "reset": "1"}],
            [2, {"limit": "3", "remaining": "1", "reset": "1"}],
            [2, {"limit": "3", "remaining": "2", "reset": None}],
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_consume_result(self, clock, replies: Any) -> None:
        store = _mock_store(decrement_and_read=AsyncMock(return_value=replies))

        with pytest.raises(InvalidBucketError) as exc_info:
            await _service(store, clock).throttle()

        assert exc_info.value.code == "invalid_bucket"

    @pytest.mark.asyncio
    async def test_store_error_is_not_retried(self, clock) -> None:
        store = _mock_store(decrement_and_read=AsyncMock(side_effect=StoreError("READONLY")))

        with pytest.raises(StoreFailureError):
            await _service(store, clock).throttle()

        assert store.decrement_and_read.await_count == 1


class TestDisconnectedStore:
    @pytest.mark.asyncio
    async def test_disconnected_without_fallback(self, clock) -> None:
        store = _mock_store()
        store.is_connected.return_value = False

        with pytest.raises(StoreUnavailableError):
            await _service(store, clock).throttle()

        store.exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disconnected_with_fallback_never_touches_store(self, clock) -> None:
        store = _mock_store()
        store.is_connected.return_value = False
        fallback = LocalFallbackBucket(limiter_id="svc", limit=3, duration_ms=10000, clock=clock)

        bucket = await _service(store, clock, fallback=fallback).throttle()

        assert bucket.remaining == 2
        store.exists.assert_not_awaited()
        fallback.reset()

    @pytest.mark.asyncio
    async def test_connection_error_mid_call_uses_fallback(self, clock) -> None:
        store = _mock_store(exists=AsyncMock(side_effect=StoreConnectionError("reset by peer")))
        fallback = LocalFallbackBucket(limiter_id="svc", limit=3, duration_ms=10000, clock=clock)

        bucket = await _service(store, clock, fallback=fallback).throttle()

        assert bucket.remaining == 2
        fallback.reset()

    @pytest.mark.asyncio
    async def test_connection_error_mid_call_without_fallback(self, clock) -> None:
        store = _mock_store(exists=AsyncMock(side_effect=StoreConnectionError("reset by peer")))

        with pytest.raises(StoreUnavailableError) as exc_info:
            await _service(store, clock).throttle()

        assert isinstance(exc_info.value.cause, StoreFailureError)


class TestPeek:
    @pytest.mark.asyncio
    async def test_absent_bucket(self, clock) -> None:
        assert await _service(_mock_store(), clock).peek() is None

    @pytest.mark.asyncio
    async def test_malformed_record(self, clock) -> None:
        store = _mock_store(read=AsyncMock(return_value={"limit": "3"}))

        with pytest.raises(InvalidBucketError):
            await _service(store, clock).peek()
