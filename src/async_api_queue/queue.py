# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
AsyncApiQueue: the public handle for admission control and result hand-off.

Typical flow across stateless workers sharing one Redis:

    queue = await AsyncApiQueue.initialize(redis_url, key_prefix="sms:", capacity=5)

    # Worker A, before calling the asynchronous API
    await queue.add_request()                 # raises QueueFullError at capacity
    message_id = await provider.send(...)
    await queue.set_request(message_id)

    # Worker B, in the provider's webhook
    await queue.set_done(message_id)          # or set_failed(message_id, body)

    # Worker C, collecting the result
    status = await queue.check_done(message_id)
    if status.is_done:
        await queue.remove_request(message_id)

    await queue.close()

The queue is an explicit object rather than process-wide state, so several
independent queues (different prefixes, capacities or stores) can coexist in
one process.
"""

import logging
from typing import Any

from typing_extensions import Self

from .config import DEFAULT_CAPACITY, DEFAULT_TTL_SECONDS, QueueConfig
from .counter import CounterManager
from .notifications import CompletionCallback, CompletionNotifier, log_completion
from .observability.metrics import QueueMetrics
from .slots import DONE_MARKER, Reservation, SlotManager, SlotStatus
from .stores.base import BaseStore, HealthCheckResult

logger = logging.getLogger(__name__)


class AsyncApiQueue:
    """
    Bounded in-flight tracking for asynchronous API calls.

    Composes a store adapter, a CounterManager, a SlotManager and a local
    CompletionNotifier. All operations are coroutines that suspend until the
    store answers and raise StoreUnavailableError when it cannot.
    """

    def __init__(
        self,
        store: BaseStore,
        config: QueueConfig | None = None,
        notifier: CompletionNotifier | None = None,
        metrics_enabled: bool = True,
    ) -> None:
        """
        Args:
            store: Store adapter; its key_prefix should match config.key_prefix
            config: Queue configuration (defaults: capacity 5, TTL 24h)
            notifier: Local completion notifier; a new one logging each
                completion is created when omitted. It may be shared by
                several queues; completion metrics are recorded per queue
                and do not depend on it.
            metrics_enabled: Record Prometheus metrics for this queue
        """
        self.config = config or QueueConfig(key_prefix=store.key_prefix)
        if store.key_prefix != self.config.key_prefix:
            raise ValueError(
                f"store key_prefix '{store.key_prefix}' does not match "
                f"config key_prefix '{self.config.key_prefix}'"
            )
        self.store = store
        self.metrics = QueueMetrics(self.config.key_prefix, enabled=metrics_enabled)

        if notifier is None:
            notifier = CompletionNotifier()
            notifier.subscribe(log_completion)
        self.notifier = notifier

        self.counter = CounterManager(store, self.config)
        self.slots = SlotManager(store, self.counter, self.notifier, self.metrics)
        self._started = False

    @classmethod
    async def initialize(
        cls,
        redis_url: str | None = None,
        key_prefix: str = "",
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        *,
        redis_client: Any | None = None,
        **kwargs: Any,
    ) -> "AsyncApiQueue":
        """
        Connect to Redis, build the queue and reconcile the persisted capacity.

        Args:
            redis_url: Redis URL (falls back to REDIS_URL, then localhost)
            key_prefix: Prefix for every key this queue writes
            capacity: Maximum number of in-flight requests
            ttl_seconds: Expiration of every persisted key
            redis_client: Optional pre-configured redis.asyncio client
            **kwargs: Passed to AsyncApiQueue (notifier, metrics_enabled)

        Raises:
            ValueError: If the configuration is invalid
            StoreUnavailableError: If Redis cannot be reached
        """
        from .stores.redis import RedisStore

        config = QueueConfig(
            capacity=capacity, ttl_seconds=ttl_seconds, key_prefix=key_prefix
        )
        store = RedisStore(
            redis_url=redis_url, redis_client=redis_client, key_prefix=key_prefix
        )
        await store.connect()
        queue = cls(store, config, **kwargs)
        try:
            await queue.start()
        except BaseException:
            await store.close()
            raise
        return queue

    async def start(self) -> None:
        """Reconcile persisted counters with the configured capacity. Idempotent."""
        if self._started:
            return
        reset = await self.counter.reconcile()
        self._started = True
        logger.info(
            f"AsyncApiQueue '{self.config.key_prefix}' ready "
            f"(capacity={self.config.capacity}, ttl={self.config.ttl_seconds}s, "
            f"counters_reset={reset})"
        )

    async def close(self) -> None:
        """Release the store connection. Persisted state is not cleared."""
        await self.store.close()
        self._started = False

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    # === Admission ===

    async def add_request(self) -> Reservation:
        """
        Admit a request before calling the external API.

        Must be followed by set_request() once the request id is known.

        Raises:
            QueueFullError: If the queue is at capacity
        """
        return await self.slots.reserve()

    async def is_full(self) -> bool:
        return await self.counter.is_full()

    async def get_size(self) -> int:
        """Persisted capacity of the queue."""
        return await self.counter.get_capacity()

    async def get_count(self) -> int:
        """Current in-flight count."""
        count = await self.counter.get_in_flight()
        self.metrics.observe_in_flight(count)
        return count

    # === Slot lifecycle ===

    async def set_request(self, request_id: str) -> bool:
        """Store the id returned by the external API as pending."""
        return await self.slots.mark_pending(request_id)

    async def set_done(self, request_id: str, response: str = DONE_MARKER) -> bool:
        """Record the response for ``request_id`` and free its capacity."""
        return await self.slots.mark_done(request_id, response)

    async def set_failed(self, request_id: str, body: Any) -> bool:
        """Record an error body (JSON-encoded unless already a string)."""
        return await self.slots.mark_failed(request_id, body)

    async def check_done(self, request_id: str) -> SlotStatus:
        """Return the slot status: ABSENT, PENDING or DONE with its payload."""
        return await self.slots.check_status(request_id)

    async def remove_request(self, request_id: str) -> int:
        """Remove the slot. Returns 1 if something was removed, else 0."""
        return await self.slots.remove(request_id)

    # === Observers and health ===

    def on_done(self, callback: CompletionCallback) -> CompletionCallback:
        """
        Register a local completion listener.

        Only completions recorded by this process are delivered. Never use
        this to decide whether a request finished; poll check_done instead.
        """
        return self.notifier.subscribe(callback)

    async def health_check(self) -> HealthCheckResult:
        return await self.store.health_check()
