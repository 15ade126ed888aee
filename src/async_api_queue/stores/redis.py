# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisStore for the async API queue

This module provides the RedisStore that shares queue state across any number
of stateless worker instances (e.g. Lambda / Cloud Run / Knative replicas).

Key Features:
- Transparent key prefixing for running several queues on one Redis
- Atomic Lua scripts for counter updates, so concurrent workers never lose
  an increment or push the in-flight count below zero
- Automatic script reload when Redis forgets cached scripts (restart/failover)
- Every client failure surfaces as StoreUnavailableError, never retried here
"""

import contextlib
import logging
import os
import time
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any, ClassVar

from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError

from ..exceptions import StoreUnavailableError
from .base import BaseStore, HealthCheckResult

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379"


class RedisStore(BaseStore):
    """
    A shared key-value store backed by Redis.

    Plain reads and writes map one-to-one onto GET / MGET / SET EX / DEL.
    Counter mutations run as Lua scripts so that the read, the bound check
    and the write are a single atomic step on the server.

    Deployment Requirements:
    - Redis 2.6+ (for EVALSHA)
    """

    # Class-level Lua scripts loaded from files
    _lua_scripts: ClassVar[dict[str, str]] = {}

    SCRIPT_NAMES: ClassVar[tuple[str, ...]] = (
        "counter_incr",
        "counter_decr",
        "counter_incr_below",
    )

    @classmethod
    def _load_lua_scripts(cls) -> None:
        """Load Lua scripts from files at class level."""
        if cls._lua_scripts:
            return  # Already loaded

        lua_dir = Path(__file__).parent / "lua"

        for script_name in cls.SCRIPT_NAMES:
            script_path = lua_dir / f"{script_name}.lua"
            cls._lua_scripts[script_name] = script_path.read_text(encoding="utf-8")

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        key_prefix: str = "",
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the Redis store.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to the
                REDIS_URL environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured client. It must be created with
                ``decode_responses=True``. An injected client is not closed by
                ``close()``; its owner manages its lifecycle.
            key_prefix: Prefix prepended to every key
            socket_timeout: Per-command socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds

        Environment Variables:
            REDIS_URL: Default Redis connection URL when redis_url is not provided.
        """
        super().__init__(key_prefix)

        self.redis_url = redis_url or os.environ.get("REDIS_URL") or DEFAULT_REDIS_URL
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout

        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None
        self._connected = False

        # Lua script SHAs
        self._script_shas: dict[str, str] = {}

    @contextlib.contextmanager
    def _translate_errors(self, operation: str, key: str | None = None) -> Iterator[None]:
        """Re-raise client failures as StoreUnavailableError."""
        try:
            yield
        except (RedisError, OSError) as e:
            logger.error(f"Redis error during {operation} for {key}: {e}")
            raise StoreUnavailableError(
                f"Redis {operation} failed: {e}", operation=operation, key=key
            ) from e

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_connect_timeout,
            )
            self._owned_redis = True
        return self._redis

    async def connect(self) -> None:
        """
        Verify the connection and load the Lua scripts.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        redis_client = self._client()
        with self._translate_errors("connect"):
            await redis_client.ping()
            await self._load_scripts()
        self._connected = True
        logger.info(f"Connected to Redis at {self.redis_url}")

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        self.__class__._load_lua_scripts()

        redis_client = self._client()
        for script_name, script_source in self._lua_scripts.items():
            self._script_shas[script_name] = await redis_client.script_load(
                script_source
            )

    async def _evalsha_with_reload(
        self,
        script_name: str,
        num_keys: int,
        *args: Any,
    ) -> Any:
        """
        Execute EVALSHA with automatic script reload on NoScriptError.

        When a Redis node restarts, all cached Lua scripts are lost. This
        detects the NoScriptError, reloads the scripts and issues the call
        once more. Any other client error propagates unchanged.
        """
        redis_client = self._client()
        script_sha = self._script_shas.get(script_name)
        if not script_sha:
            await self._load_scripts()
            script_sha = self._script_shas[script_name]

        try:
            return await redis_client.evalsha(script_sha, num_keys, *args)
        except NoScriptError:
            logger.warning(
                f"Script '{script_name}' not found in Redis (SHA: {script_sha}). "
                f"Reloading all Lua scripts..."
            )
            self._script_shas.clear()
            await self._load_scripts()

            new_sha = self._script_shas[script_name]
            return await redis_client.evalsha(new_sha, num_keys, *args)

    # === BaseStore Interface Implementation ===

    async def get(self, key: str) -> str | None:
        full_key = self._key(key)
        with self._translate_errors("get", full_key):
            return await self._client().get(full_key)

    async def get_many(self, *keys: str) -> list[str | None]:
        full_keys = [self._key(key) for key in keys]
        with self._translate_errors("mget", ",".join(full_keys)):
            return list(await self._client().mget(full_keys))

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        full_key = self._key(key)
        with self._translate_errors("set", full_key):
            return bool(await self._client().set(full_key, value, ex=ttl_seconds))

    async def delete(self, key: str) -> int:
        full_key = self._key(key)
        with self._translate_errors("delete", full_key):
            return int(await self._client().delete(full_key))

    async def incr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        keys = [self._key(key), *(self._key(k) for k in refresh)]
        with self._translate_errors("incr", keys[0]):
            result = await self._evalsha_with_reload(
                "counter_incr", len(keys), *keys, str(ttl_seconds)
            )
        return int(result)

    async def decr(
        self, key: str, ttl_seconds: int, *, refresh: Sequence[str] = ()
    ) -> int:
        keys = [self._key(key), *(self._key(k) for k in refresh)]
        with self._translate_errors("decr", keys[0]):
            result = await self._evalsha_with_reload(
                "counter_decr", len(keys), *keys, str(ttl_seconds)
            )
        return int(result)

    async def incr_below(
        self,
        key: str,
        limit: int,
        ttl_seconds: int,
        *,
        refresh: Sequence[str] = (),
    ) -> tuple[bool, int]:
        keys = [self._key(key), *(self._key(k) for k in refresh)]
        with self._translate_errors("incr_below", keys[0]):
            admitted, count = await self._evalsha_with_reload(
                "counter_incr_below",
                len(keys),
                *keys,
                str(limit),
                str(ttl_seconds),
            )
        return bool(int(admitted)), int(count)

    async def health_check(self) -> HealthCheckResult:
        """Perform health check on the store."""
        try:
            redis_client = self._client()

            test_key = self._key(f"health_check_{int(time.time())}")
            await redis_client.set(test_key, "test", ex=60)
            result = await redis_client.get(test_key)
            await redis_client.delete(test_key)

            info = await redis_client.info()

            return HealthCheckResult(
                healthy=result == "test",
                store_type="redis",
                key_prefix=self.key_prefix,
                metadata={
                    "redis_url": self.redis_url,
                    "connected": self._connected,
                    "redis_version": info.get("redis_version"),
                    "used_memory": info.get("used_memory_human"),
                    "connected_clients": info.get("connected_clients"),
                },
            )
        except (RedisError, OSError) as e:
            return HealthCheckResult(
                healthy=False,
                store_type="redis",
                key_prefix=self.key_prefix,
                error=str(e),
            )

    async def close(self) -> None:
        """Close the client if this store created it."""
        if self._redis is not None and self._owned_redis:
            try:
                await self._redis.aclose()
            except (RedisError, OSError) as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self._redis = None
        self._connected = False
        self._script_shas.clear()
