from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError, NoScriptError, ResponseError, TimeoutError

from async_api_queue.exceptions import StoreUnavailableError
from async_api_queue.stores.redis import DEFAULT_REDIS_URL, RedisStore


class TestRedisStore:
    @pytest.fixture
    def mock_redis(self):
        mock = AsyncMock()
        mock.script_load.return_value = "mock_sha"
        mock.evalsha.return_value = 1
        mock.ping.return_value = True
        return mock

    @pytest.fixture
    def store(self, mock_redis):
        store = RedisStore(redis_client=mock_redis, key_prefix="test:")
        # Pre-load scripts
        store._script_shas = {
            "counter_incr": "sha_incr",
            "counter_decr": "sha_decr",
            "counter_incr_below": "sha_incr_below",
        }
        return store

    def test_init_defaults(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        store = RedisStore()
        assert store.redis_url == DEFAULT_REDIS_URL
        assert store.key_prefix == ""
        assert store._owned_redis is True

    def test_init_env_fallback(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        assert RedisStore().redis_url == "redis://cache:6380/2"

    def test_explicit_url_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        assert RedisStore(redis_url="redis://other").redis_url == "redis://other"

    def test_injected_client_not_owned(self, mock_redis):
        store = RedisStore(redis_client=mock_redis)
        assert store._owned_redis is False

    def test_client_created_from_url(self, mock_redis):
        with patch(
            "async_api_queue.stores.redis.Redis.from_url",
            return_value=mock_redis,
        ) as from_url:
            store = RedisStore(redis_url="redis://host:1234")
            assert store._client() is mock_redis
            assert store._client() is mock_redis
        from_url.assert_called_once_with(
            "redis://host:1234",
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )

    @pytest.mark.asyncio
    async def test_connect_loads_scripts(self, mock_redis):
        store = RedisStore(redis_client=mock_redis)
        await store.connect()
        mock_redis.ping.assert_awaited_once()
        assert set(store._script_shas) == {
            "counter_incr",
            "counter_decr",
            "counter_incr_below",
        }
        assert store._connected is True

    @pytest.mark.asyncio
    async def test_lua_sources_read_from_package(self):
        RedisStore._load_lua_scripts()
        assert "INCR" in RedisStore._lua_scripts["counter_incr"]
        assert "DECR" in RedisStore._lua_scripts["counter_decr"]
        assert "return {0, cur}" in RedisStore._lua_scripts["counter_incr_below"]

    @pytest.mark.asyncio
    async def test_connect_failure_raises_store_unavailable(self, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        store = RedisStore(redis_client=mock_redis)
        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.connect()
        assert exc_info.value.operation == "connect"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert store._connected is False

    @pytest.mark.asyncio
    async def test_get_prefixes_key(self, store, mock_redis):
        mock_redis.get.return_value = "pending"
        assert await store.get("msg-1") == "pending"
        mock_redis.get.assert_awaited_once_with("test:msg-1")

    @pytest.mark.asyncio
    async def test_get_many_single_round_trip(self, store, mock_redis):
        mock_redis.mget.return_value = ["2", "5"]
        assert await store.get_many("QUEUE_COUNT", "QUEUE_SIZE") == ["2", "5"]
        mock_redis.mget.assert_awaited_once_with(
            ["test:QUEUE_COUNT", "test:QUEUE_SIZE"]
        )

    @pytest.mark.asyncio
    async def test_set_with_expiry(self, store, mock_redis):
        mock_redis.set.return_value = True
        assert await store.set("msg-1", "pending", 86400) is True
        mock_redis.set.assert_awaited_once_with("test:msg-1", "pending", ex=86400)

    @pytest.mark.asyncio
    async def test_delete_returns_count(self, store, mock_redis):
        mock_redis.delete.return_value = 1
        assert await store.delete("msg-1") == 1
        mock_redis.delete.assert_awaited_once_with("test:msg-1")

    @pytest.mark.asyncio
    async def test_incr_uses_script(self, store, mock_redis):
        mock_redis.evalsha.return_value = 3
        assert await store.incr("QUEUE_COUNT", 60) == 3
        mock_redis.evalsha.assert_awaited_once_with(
            "sha_incr", 1, "test:QUEUE_COUNT", "60"
        )

    @pytest.mark.asyncio
    async def test_incr_passes_refresh_keys(self, store, mock_redis):
        mock_redis.evalsha.return_value = 3
        assert await store.incr("QUEUE_COUNT", 60, refresh=("QUEUE_SIZE",)) == 3
        mock_redis.evalsha.assert_awaited_once_with(
            "sha_incr", 2, "test:QUEUE_COUNT", "test:QUEUE_SIZE", "60"
        )

    @pytest.mark.asyncio
    async def test_decr_uses_script(self, store, mock_redis):
        mock_redis.evalsha.return_value = 0
        assert await store.decr("QUEUE_COUNT", 60, refresh=("QUEUE_SIZE",)) == 0
        mock_redis.evalsha.assert_awaited_once_with(
            "sha_decr", 2, "test:QUEUE_COUNT", "test:QUEUE_SIZE", "60"
        )

    @pytest.mark.asyncio
    async def test_incr_below_admitted(self, store, mock_redis):
        mock_redis.evalsha.return_value = [1, 2]
        assert await store.incr_below(
            "QUEUE_COUNT", 5, 60, refresh=("QUEUE_SIZE",)
        ) == (True, 2)
        mock_redis.evalsha.assert_awaited_once_with(
            "sha_incr_below",
            2,
            "test:QUEUE_COUNT",
            "test:QUEUE_SIZE",
            "5",
            "60",
        )

    @pytest.mark.asyncio
    async def test_incr_below_full_reports_count(self, store, mock_redis):
        mock_redis.evalsha.return_value = [0, 5]
        assert await store.incr_below("QUEUE_COUNT", 5, 60) == (False, 5)

    @pytest.mark.asyncio
    async def test_scripts_loaded_lazily(self, mock_redis):
        store = RedisStore(redis_client=mock_redis)
        mock_redis.evalsha.return_value = 1
        assert await store.incr("QUEUE_COUNT", 60) == 1
        assert mock_redis.script_load.await_count == 3

    @pytest.mark.asyncio
    async def test_noscript_error_reloads_once(self, store, mock_redis):
        mock_redis.evalsha.side_effect = [NoScriptError("NOSCRIPT"), 4]
        assert await store.incr("QUEUE_COUNT", 60) == 4
        assert mock_redis.evalsha.await_count == 2
        assert mock_redis.evalsha.call_args[0][0] == "mock_sha"

    @pytest.mark.asyncio
    async def test_noscript_error_twice_surfaces(self, store, mock_redis):
        mock_redis.evalsha.side_effect = NoScriptError("NOSCRIPT")
        with pytest.raises(StoreUnavailableError):
            await store.incr("QUEUE_COUNT", 60)
        assert mock_redis.evalsha.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [ConnectionError("lost"), TimeoutError("slow"), ResponseError("WRONGTYPE")],
    )
    async def test_errors_translated_without_retry(self, store, mock_redis, error):
        mock_redis.get.side_effect = error
        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.get("msg-1")
        assert exc_info.value.operation == "get"
        assert exc_info.value.key == "test:msg-1"
        assert exc_info.value.__cause__ is error
        mock_redis.get.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_script_error_translated(self, store, mock_redis):
        mock_redis.evalsha.side_effect = ConnectionError("lost")
        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.decr("QUEUE_COUNT", 60)
        assert exc_info.value.operation == "decr"

    @pytest.mark.asyncio
    async def test_set_error_translated(self, store, mock_redis):
        mock_redis.set.side_effect = TimeoutError("slow")
        with pytest.raises(StoreUnavailableError):
            await store.set("msg-1", "pending", 60)

    @pytest.mark.asyncio
    async def test_health_check_healthy(self, store, mock_redis):
        mock_redis.get.return_value = "test"
        mock_redis.info.return_value = {"redis_version": "7.2.0"}
        result = await store.health_check()
        assert result.healthy is True
        assert result.store_type == "redis"
        assert result.key_prefix == "test:"
        assert result.metadata["redis_version"] == "7.2.0"
        assert mock_redis.set.call_args[0][0].startswith("test:health_check_")

    @pytest.mark.asyncio
    async def test_health_check_unhealthy(self, store, mock_redis):
        mock_redis.set.side_effect = ConnectionError("down")
        result = await store.health_check()
        assert result.healthy is False
        assert "down" in result.error

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, store, mock_redis):
        await store.close()
        mock_redis.aclose.assert_not_awaited()
        assert store._script_shas == {}

    @pytest.mark.asyncio
    async def test_close_owned_client(self, mock_redis):
        with patch(
            "async_api_queue.stores.redis.Redis.from_url",
            return_value=mock_redis,
        ):
            store = RedisStore()
            await store.connect()
            await store.close()
        mock_redis.aclose.assert_awaited_once()
        assert store._redis is None
        assert store._connected is False

    @pytest.mark.asyncio
    async def test_close_error_logged(self, mock_redis):
        mock_redis.aclose.side_effect = ConnectionError("already gone")
        with patch(
            "async_api_queue.stores.redis.Redis.from_url",
            return_value=mock_redis,
        ):
            store = RedisStore()
            store._client()
            await store.close()
        assert store._redis is None
