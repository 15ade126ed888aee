# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""CounterManager for the persisted capacity and in-flight count."""

import asyncio
import logging

from .config import COUNT_KEY, SIZE_KEY, QueueConfig
from .stores.base import BaseStore

logger = logging.getLogger(__name__)


class CounterManager:
    """
    Maintains the two persisted integers that bound admission.

    ``QUEUE_SIZE`` holds the configured capacity and ``QUEUE_COUNT`` the
    number of in-flight requests. Both live in the shared store so every
    worker instance observes and mutates the same values.

    Self-healing: whenever the persisted capacity is missing (first start,
    TTL expiry) or differs from the configured capacity (redeploy with a new
    limit), both counters are rewritten with ``capacity = configured`` and
    ``in_flight = 0``. Requests that were in flight at that moment are
    forgotten by the counter; their slots still expire through their TTL.

    All mutations of ``QUEUE_COUNT`` go through the store's atomic primitives,
    and each one refreshes the expiry of ``QUEUE_SIZE`` in the same step. The
    two keys therefore only expire together, once the queue has been idle for
    ``ttl_seconds``; a busy queue never loses its capacity record while
    requests are in flight.
    """

    def __init__(self, store: BaseStore, config: QueueConfig):
        self._store = store
        self._config = config

    @property
    def config(self) -> QueueConfig:
        return self._config

    async def _initialize_counters(self) -> None:
        await asyncio.gather(
            self._store.set(COUNT_KEY, "0", self._config.ttl_seconds),
            self._store.set(
                SIZE_KEY, str(self._config.capacity), self._config.ttl_seconds
            ),
        )
        logger.info(
            f"Initialized queue counters (capacity={self._config.capacity}, "
            f"prefix='{self._config.key_prefix}')"
        )

    async def reconcile(self) -> bool:
        """
        Reset the counters if the persisted capacity is missing or stale.

        Returns:
            True if the counters were (re)initialized, False if the persisted
            capacity already matched the configuration
        """
        raw_size = await self._store.get(SIZE_KEY)
        if raw_size is not None and _to_int(raw_size) == self._config.capacity:
            return False
        if raw_size is not None:
            logger.info(
                f"Persisted capacity {raw_size} differs from configured "
                f"{self._config.capacity}, resetting counters"
            )
        await self._initialize_counters()
        return True

    async def get_capacity(self) -> int:
        """
        Read the persisted capacity.

        Initializes the counters when the capacity is absent or no longer
        matches the configuration, and returns the configured value then.
        """
        raw_size = await self._store.get(SIZE_KEY)
        if raw_size is None or _to_int(raw_size) != self._config.capacity:
            await self._initialize_counters()
            return self._config.capacity
        return _to_int(raw_size)

    async def get_in_flight(self) -> int:
        """Read the in-flight count, initializing the counters when absent."""
        raw_count = await self._store.get(COUNT_KEY)
        if raw_count is None:
            await self._initialize_counters()
            return 0
        return _to_int(raw_count)

    async def increment(self) -> int:
        """Atomically add one in-flight request."""
        return await self._store.incr(
            COUNT_KEY, self._config.ttl_seconds, refresh=(SIZE_KEY,)
        )

    async def decrement(self) -> int:
        """Atomically remove one in-flight request, never going below zero."""
        return await self._store.decr(
            COUNT_KEY, self._config.ttl_seconds, refresh=(SIZE_KEY,)
        )

    async def try_increment(self) -> tuple[bool, int]:
        """
        Atomically add one in-flight request if the queue is not full.

        The capacity check and the increment are one store operation, so two
        workers racing for the last free slot cannot both be admitted.

        Returns:
            ``(True, in_flight_after_admission)``, or ``(False, in_flight)``
            when the queue is full
        """
        capacity = await self.get_capacity()
        return await self._store.incr_below(
            COUNT_KEY, capacity, self._config.ttl_seconds, refresh=(SIZE_KEY,)
        )

    async def is_full(self) -> bool:
        """Check ``in_flight >= capacity`` with a single round trip."""
        raw_count, raw_size = await self._store.get_many(COUNT_KEY, SIZE_KEY)
        if (
            raw_count is None
            or raw_size is None
            or _to_int(raw_size) != self._config.capacity
        ):
            await self._initialize_counters()
            # Fresh counters: nothing in flight
            return self._config.capacity <= 0
        return _to_int(raw_count) >= self._config.capacity


def _to_int(raw: str) -> int:
    return int(float(raw))
