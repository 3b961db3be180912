"""Bucket store interfaces.

The lifecycle engine depends on this abstraction (not on a concrete client)
so the shared store can be Redis in production and an in-process store in
tests or single-instance deployments.

Implementations return the raw replies of their atomic operations. Shape
validation is the engine's job, so a misbehaving store can never be turned
into a valid-looking bucket here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence


class StoreError(Exception):
    """Raised when a store operation fails."""


class StoreConnectionError(StoreError):
    """Raised when the store cannot be reached."""


class AbstractBucketStore(ABC):
    """Interface over the atomic primitives of the shared store."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Return whether the store is currently believed reachable."""
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return True if a live record is stored under ``key``.

        Raises:
            StoreError: If the store call fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def create_if_absent(
        self,
        key: str,
        fields: Mapping[str, int],
        expire_at_ms: int,
    ) -> Sequence[Any] | None:
        """Atomically write ``fields`` under ``key`` if no record exists.

        The record expires at the absolute epoch milliseconds ``expire_at_ms``.

        Args:
            key: Record key.
            fields: Field/value pairs to write.
            expire_at_ms: Absolute expiry in epoch milliseconds.

        Returns:
            Raw replies ``[fields_written, expiry_set]``, or None when the
            key already existed and nothing was written.

        Raises:
            StoreError: If the store call fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def decrement_and_read(self, key: str, field: str) -> Sequence[Any] | None:
        """Atomically decrement ``field`` by one and read back the record.

        Returns:
            Raw replies ``[decremented_value, record]``, or None when the key
            does not exist (nothing is written in that case).

        Raises:
            StoreError: If the store call fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def read(self, key: str) -> Mapping[Any, Any]:
        """Return the record stored under ``key`` (empty when absent)."""
        raise NotImplementedError

    async def ping(self) -> bool:
        """Ping the store; return True when it answers."""
        return self.is_connected()

    async def close(self) -> None:
        """Release store resources."""
        return None
