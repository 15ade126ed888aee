# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Store for the async API queue

This module provides the BaseStore abstract class that defines the contract
every shared key-value store adapter must satisfy: plain get / set-with-expiry
/ delete, plus the atomic counter primitives the counter manager relies on.

Keys passed to a store are logical keys (``QUEUE_COUNT``, a message id, ...).
The store prepends its key prefix before transmission, so higher layers never
see or build prefixed keys.
"""

import abc
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from typing_extensions import Self

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Structured health check result for store monitoring.

    Attributes:
        healthy: Whether the store is operational
        store_type: Type of store (e.g., 'redis', 'memory')
        key_prefix: Key prefix the store is namespaced under
        error: Error message if unhealthy
        metadata: Additional store-specific information
    """

    healthy: bool
    store_type: str
    key_prefix: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


class BaseStore(abc.ABC):
    """
    Abstract contract over an external key-value store.

    All operations are remote calls from the caller's point of view. Any
    failure to reach the store must surface as StoreUnavailableError and must
    not be retried at this layer.
    """

    def __init__(self, key_prefix: str = ""):
        """
        Initialize the store with a key prefix for isolation.

        Args:
            key_prefix: Prefix prepended to every key before transmission
        """
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        """Return the prefixed key actually stored."""
        return f"{self.key_prefix}{key}"

    # ==========================================================================
    # Plain Key-Value Operations
    # ==========================================================================

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Get the value stored under a key.

        Args:
            key: Logical key to read

        Returns:
            The stored string, or None when the key is absent or expired
        """
        pass

    @abc.abstractmethod
    async def get_many(self, *keys: str) -> list[str | None]:
        """
        Get several values in a single round trip.

        Args:
            keys: Logical keys to read

        Returns:
            Values in the same order as ``keys``, None for absent keys
        """
        pass

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Store a value that expires after ``ttl_seconds``.

        Args:
            key: Logical key to write
            value: String value to store
            ttl_seconds: Time-to-live in seconds

        Returns:
            True once the store acknowledged the write
        """
        pass

    @abc.abstractmethod
    async def delete(self, key: str) -> int:
        """
        Delete a key.

        Args:
            key: Logical key to delete

        Returns:
            1 if a live key was deleted, 0 if nothing was there
        """
        pass

    # ==========================================================================
    # Atomic Counter Primitives
    # ==========================================================================

    @abc.abstractmethod
    async def incr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        """
        Atomically increment an integer key and refresh its expiry.

        A missing key counts as 0.

        Args:
            key: Logical counter key
            ttl_seconds: Expiry set on ``key`` and on every ``refresh`` key
            refresh: Companion keys whose expiry is reset in the same atomic
                step. Keys that do not exist stay absent.

        Returns:
            The value after incrementing
        """
        pass

    @abc.abstractmethod
    async def decr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        """
        Atomically decrement an integer key, never going below zero.

        The read, the floor check and the write happen as one operation on
        the store so concurrent callers cannot lose updates. ``refresh`` works
        as in ``incr``.

        Returns:
            The value after decrementing (0 if it was already 0 or absent)
        """
        pass

    @abc.abstractmethod
    async def incr_below(
        self,
        key: str,
        limit: int,
        ttl_seconds: int,
        *,
        refresh: Sequence[str] = (),
    ) -> tuple[bool, int]:
        """
        Atomically increment an integer key only if it is below ``limit``.

        Returns:
            ``(True, value_after_increment)`` when admitted, or
            ``(False, observed_value)`` when the key was already at or above
            ``limit``. Nothing is written (and nothing refreshed) on rejection.
        """
        pass

    # ==========================================================================
    # Health and Lifecycle
    # ==========================================================================

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """
        Perform a health check on the store.

        Returns:
            HealthCheckResult describing store availability
        """
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the store connection. Persisted state is left untouched."""
        pass

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()
