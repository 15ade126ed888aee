# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryStore for the async API queue

This module provides an in-memory store that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import heapq
import logging
import time
from collections.abc import Sequence

from .base import BaseStore, HealthCheckResult

logger = logging.getLogger(__name__)


class MemoryStore(BaseStore):
    """
    An in-memory key-value store with per-key expiry.

    Key Features:
    - Pure in-memory dict-based storage
    - TTL support: expired keys read as absent, exactly like Redis
    - Async-safe counter primitives using asyncio.Lock
    - Expiration heap for O(log n) cleanup of expired entries

    Note:
        This store is NOT suitable for multi-process or distributed
        deployments: every instance sees only its own dict. Use RedisStore
        when several workers share one queue.
    """

    def __init__(self, key_prefix: str = "") -> None:
        """
        Initialize the in-memory store.

        Args:
            key_prefix: Prefix prepended to every key (kept for parity with
                RedisStore so that several queues can share one store)
        """
        super().__init__(key_prefix)

        # Format: Dict[prefixed_key, Tuple[value, expiry_timestamp]]
        self._data: dict[str, tuple[str, float]] = {}

        # Format: List[Tuple[expiry_time, prefixed_key]]
        self._expiration_heap: list[tuple[float, str]] = []

        # Expiry of the live heap entry per key; at most one per key
        self._scheduled: dict[str, float] = {}

        self._lock = asyncio.Lock()
        self._closed = False

        logger.debug(f"Initialized MemoryStore with key prefix '{key_prefix}'")

    def _is_expired(self, expiry: float) -> bool:
        """Check if an entry has expired."""
        return time.time() >= expiry

    def _read_locked(self, full_key: str) -> str | None:
        entry = self._data.get(full_key)
        if entry is None:
            return None
        value, expiry = entry
        if self._is_expired(expiry):
            del self._data[full_key]
            return None
        return value

    def _write_locked(self, full_key: str, value: str, ttl_seconds: int) -> None:
        expiry = time.time() + ttl_seconds
        self._data[full_key] = (value, expiry)
        self._schedule_locked(full_key, expiry)

    def _schedule_locked(self, full_key: str, expiry: float) -> None:
        # A later expiry is picked up when the earlier entry pops, so hot
        # counters never grow the heap.
        scheduled = self._scheduled.get(full_key)
        if scheduled is not None and scheduled <= expiry:
            return
        self._scheduled[full_key] = expiry
        heapq.heappush(self._expiration_heap, (expiry, full_key))

    def _refresh_locked(self, full_keys: Sequence[str], ttl_seconds: int) -> None:
        for full_key in full_keys:
            value = self._read_locked(full_key)
            if value is not None:
                self._write_locked(full_key, value, ttl_seconds)

    def _cleanup_expired_locked(self) -> int:
        """
        Remove expired entries using the expiration heap.

        Each key has at most one live heap entry. When it pops, a deleted key
        is skipped and a key rewritten with a later expiry is rescheduled.

        Returns:
            Number of entries actually removed.
        """
        now = time.time()
        removed = 0

        while self._expiration_heap:
            expiry, full_key = self._expiration_heap[0]
            if expiry > now:
                break
            heapq.heappop(self._expiration_heap)

            if self._scheduled.get(full_key) != expiry:
                continue  # superseded by an earlier entry
            del self._scheduled[full_key]

            entry = self._data.get(full_key)
            if entry is None:
                continue
            if entry[1] <= now:
                del self._data[full_key]
                removed += 1
                logger.debug(f"Cleaned up expired key: {full_key}")
            else:
                self._schedule_locked(full_key, entry[1])

        return removed

    def _parse_int(self, full_key: str, raw: str | None) -> int:
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            raise ValueError(
                f"value at {full_key!r} is not an integer: {raw!r}"
            ) from None

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._read_locked(self._key(key))

    async def get_many(self, *keys: str) -> list[str | None]:
        async with self._lock:
            return [self._read_locked(self._key(key)) for key in keys]

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            self._cleanup_expired_locked()
            self._write_locked(self._key(key), str(value), ttl_seconds)
            return True

    async def delete(self, key: str) -> int:
        async with self._lock:
            full_key = self._key(key)
            if self._read_locked(full_key) is None:
                return 0
            del self._data[full_key]
            return 1

    async def incr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        async with self._lock:
            full_key = self._key(key)
            value = self._parse_int(full_key, self._read_locked(full_key)) + 1
            self._write_locked(full_key, str(value), ttl_seconds)
            self._refresh_locked([self._key(k) for k in refresh], ttl_seconds)
            return value

    async def decr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        async with self._lock:
            full_key = self._key(key)
            current = self._parse_int(full_key, self._read_locked(full_key))
            value = current - 1 if current > 0 else 0
            self._write_locked(full_key, str(value), ttl_seconds)
            self._refresh_locked([self._key(k) for k in refresh], ttl_seconds)
            return value

    async def incr_below(
        self,
        key: str,
        limit: int,
        ttl_seconds: int,
        *,
        refresh: Sequence[str] = (),
    ) -> tuple[bool, int]:
        async with self._lock:
            full_key = self._key(key)
            current = self._parse_int(full_key, self._read_locked(full_key))
            if current >= limit:
                return False, current
            value = current + 1
            self._write_locked(full_key, str(value), ttl_seconds)
            self._refresh_locked([self._key(k) for k in refresh], ttl_seconds)
            return True, value

    async def health_check(self) -> HealthCheckResult:
        async with self._lock:
            removed = self._cleanup_expired_locked()
            return HealthCheckResult(
                healthy=not self._closed,
                store_type="memory",
                key_prefix=self.key_prefix,
                metadata={
                    "keys": len(self._data),
                    "expired_removed": removed,
                },
            )

    async def clear(self) -> None:
        """Drop every key, expired or not."""
        async with self._lock:
            self._data.clear()
            self._expiration_heap.clear()
            self._scheduled.clear()

    async def close(self) -> None:
        # Data stays readable after close, mirroring a remote store that
        # outlives its clients.
        self._closed = True

