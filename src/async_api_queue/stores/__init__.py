# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Shared store adapters for queue state.

Available stores:
- BaseStore: Abstract base class defining the store contract
- MemoryStore: In-memory store for tests and single-process use
- RedisStore: Redis-based store shared by many worker instances

Note: RedisStore is lazily imported so that importing the package does not
open any connection or require Redis to be reachable.
"""

from typing import TYPE_CHECKING, cast

from async_api_queue.stores.base import BaseStore, HealthCheckResult
from async_api_queue.stores.memory import MemoryStore

if TYPE_CHECKING:
    from async_api_queue.stores.redis import RedisStore

__all__ = [
    "BaseStore",
    "HealthCheckResult",
    "MemoryStore",
    "RedisStore",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis store."""
    if name == "RedisStore":
        from async_api_queue.stores import redis as redis_module

        return cast(type, redis_module.RedisStore)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
