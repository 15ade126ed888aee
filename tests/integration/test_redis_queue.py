"""
End-to-end tests for AsyncApiQueue on RedisStore backed by fakeredis.

Several queue handles sharing one fake Redis stand in for independent
worker instances.
"""

import asyncio

import pytest

from async_api_queue import AsyncApiQueue, QueueFullError, RedisStore
from async_api_queue.slots import SlotState

try:
    import fakeredis.aioredis as fakeredis
except ImportError:
    fakeredis = None

try:
    import lupa
except ImportError:
    lupa = None


pytestmark = [
    pytest.mark.skipif(fakeredis is None, reason="fakeredis not installed"),
    pytest.mark.skipif(lupa is None, reason="lupa not installed (required for Lua)"),
]


@pytest.fixture
async def redis():
    r = fakeredis.FakeRedis(decode_responses=True)
    yield r
    await r.aclose()


async def _worker(redis, capacity: int = 2) -> AsyncApiQueue:
    return await AsyncApiQueue.initialize(
        key_prefix="sms:", capacity=capacity, ttl_seconds=300, redis_client=redis
    )


class TestRedisQueue:
    @pytest.mark.asyncio
    async def test_initialize_writes_counters(self, redis):
        queue = await _worker(redis)
        assert await redis.get("sms:QUEUE_SIZE") == "2"
        assert await redis.get("sms:QUEUE_COUNT") == "0"
        assert await redis.ttl("sms:QUEUE_SIZE") > 0
        await queue.close()

    @pytest.mark.asyncio
    async def test_lifecycle_across_workers(self, redis):
        sender = await _worker(redis)
        webhook = await _worker(redis)
        reader = await _worker(redis)

        await sender.add_request()
        await sender.set_request("SM1")
        assert await redis.get("sms:SM1") == "pending"
        assert (await reader.check_done("SM1")).state is SlotState.PENDING

        await webhook.set_done("SM1", "ok")
        status = await reader.check_done("SM1")
        assert status.is_done
        assert status.payload == "ok"
        assert await reader.get_count() == 0

        assert await reader.remove_request("SM1") == 1
        assert await redis.get("sms:SM1") is None
        assert await sender.get_count() == 0

    @pytest.mark.asyncio
    async def test_capacity_shared_between_workers(self, redis):
        a = await _worker(redis)
        b = await _worker(redis)
        await a.add_request()
        await b.add_request()
        assert await a.is_full() is True
        with pytest.raises(QueueFullError):
            await b.add_request()

    @pytest.mark.asyncio
    async def test_concurrent_admission_never_overshoots(self, redis):
        workers = [await _worker(redis, capacity=3) for _ in range(4)]
        results = await asyncio.gather(
            *(w.add_request() for w in workers for _ in range(3)),
            return_exceptions=True,
        )
        admitted = [r for r in results if not isinstance(r, Exception)]
        assert len(admitted) == 3
        assert sum(isinstance(r, QueueFullError) for r in results) == 9
        assert await redis.get("sms:QUEUE_COUNT") == "3"

    @pytest.mark.asyncio
    async def test_remove_pending_frees_capacity(self, redis):
        queue = await _worker(redis, capacity=1)
        await queue.add_request()
        await queue.set_request("SM2")
        assert await queue.remove_request("SM2") == 1
        assert await queue.get_count() == 0
        await queue.add_request()

    @pytest.mark.asyncio
    async def test_redeploy_with_new_capacity(self, redis):
        old = await _worker(redis, capacity=2)
        await old.add_request()
        new = await _worker(redis, capacity=5)
        assert await new.get_size() == 5
        assert await new.get_count() == 0

    @pytest.mark.asyncio
    async def test_prefixes_isolate_queues(self, redis):
        sms = await AsyncApiQueue.initialize(
            key_prefix="sms:", capacity=1, redis_client=redis
        )
        mail = await AsyncApiQueue.initialize(
            key_prefix="mail:", capacity=1, redis_client=redis
        )
        await sms.add_request()
        await mail.add_request()
        assert await redis.get("sms:QUEUE_COUNT") == "1"
        assert await redis.get("mail:QUEUE_COUNT") == "1"

    @pytest.mark.asyncio
    async def test_health_check(self, redis):
        queue = await _worker(redis)
        result = await queue.health_check()
        assert isinstance(queue.store, RedisStore)
        assert result.store_type == "redis"
        assert result.key_prefix == "sms:"
        assert await redis.keys("sms:health_check_*") == []

    @pytest.mark.asyncio
    async def test_admission_refreshes_capacity_expiry(self, redis):
        queue = await _worker(redis)
        await redis.expire("sms:QUEUE_SIZE", 5)
        await queue.add_request()
        assert await redis.ttl("sms:QUEUE_SIZE") > 5

    @pytest.mark.asyncio
    async def test_full_queue_reports_in_flight(self, redis):
        queue = await _worker(redis, capacity=1)
        await queue.add_request()
        with pytest.raises(QueueFullError) as exc_info:
            await queue.add_request()
        assert exc_info.value.in_flight == 1
        assert exc_info.value.capacity == 1
