# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Async API Queue - Admission control and result hand-off for async API calls.

Stateless, horizontally-scaled workers (functions-as-a-service and the like)
share no memory, so the number of in-flight calls and the result of each call
live in an external store that every instance can reach.

Key Features:
    - Bounded concurrency across instances with an atomic admission check
    - Per-request status: pending, done (success marker or error body), absent
    - TTL on every persisted key so abandoned slots cannot live forever
    - Memory store for tests, Redis store for production
    - Local completion hooks for logging and Prometheus metrics

Quick Start:
    >>> from async_api_queue import AsyncApiQueue, QueueFullError
    >>>
    >>> queue = await AsyncApiQueue.initialize("redis://localhost:6379", capacity=5)
    >>> try:
    ...     await queue.add_request()
    ... except QueueFullError:
    ...     return "busy, retry later"
    >>> message_id = await call_provider()
    >>> await queue.set_request(message_id)

Note: RedisStore is lazily imported; tests and single-process tools that
only use MemoryStore never load the redis client.

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .config import QueueConfig
from .counter import CounterManager
from .exceptions import (
    AsyncQueueError,
    QueueFullError,
    StoreUnavailableError,
)
from .notifications import CompletionNotifier
from .queue import AsyncApiQueue
from .slots import (
    DONE_MARKER,
    PENDING_MARKER,
    Reservation,
    SlotManager,
    SlotState,
    SlotStatus,
)
from .stores import BaseStore, HealthCheckResult, MemoryStore

# Lazy import for the redis store
if TYPE_CHECKING:
    from .stores import RedisStore

__all__ = [
    "DONE_MARKER",
    "PENDING_MARKER",
    # Queue
    "AsyncApiQueue",
    # Exceptions
    "AsyncQueueError",
    # Stores
    "BaseStore",
    "CompletionNotifier",
    "CounterManager",
    "HealthCheckResult",
    "MemoryStore",
    "QueueConfig",
    "QueueFullError",
    "RedisStore",  # Lazy loaded
    "Reservation",
    "SlotManager",
    "SlotState",
    "SlotStatus",
    "StoreUnavailableError",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis store."""
    if name == "RedisStore":
        from .stores import RedisStore

        return RedisStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
