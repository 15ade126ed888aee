# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queue Configuration for the async API queue.

The configuration is supplied once at process start and shared read-only by
the counter manager, the slot manager and the store adapter.
"""

from dataclasses import dataclass

DEFAULT_CAPACITY = 5
DEFAULT_TTL_SECONDS = 60 * 60 * 24

SIZE_KEY = "QUEUE_SIZE"
"""Persisted key holding the configured capacity."""

COUNT_KEY = "QUEUE_COUNT"
"""Persisted key holding the in-flight counter."""


@dataclass(frozen=True)
class QueueConfig:
    """
    Configuration for an async API queue.

    Immutable after construction so that every component observes the same
    capacity, TTL and key prefix for the lifetime of the process.
    """

    capacity: int = DEFAULT_CAPACITY
    """Maximum number of simultaneously in-flight requests."""

    ttl_seconds: int = DEFAULT_TTL_SECONDS
    """Expiration applied to every persisted key, slots and counters alike."""

    key_prefix: str = ""
    """Prefix prepended by the store to every key before transmission."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if isinstance(self.capacity, bool) or not isinstance(self.capacity, int):
            raise ValueError(
                f"capacity must be an integer, got {type(self.capacity).__name__}"
            )
        if self.capacity < 0:
            raise ValueError("capacity must be at least 0")
        if isinstance(self.ttl_seconds, bool) or not isinstance(
            self.ttl_seconds, int
        ):
            raise ValueError(
                f"ttl_seconds must be an integer, got {type(self.ttl_seconds).__name__}"
            )
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if not isinstance(self.key_prefix, str):
            raise ValueError("key_prefix must be a string")


__all__ = [
    "COUNT_KEY",
    "DEFAULT_CAPACITY",
    "DEFAULT_TTL_SECONDS",
    "SIZE_KEY",
    "QueueConfig",
]
