import pytest

import async_api_queue


def test_version():
    assert async_api_queue.__version__ == "1.0.0"


def test_redis_store_lazy_attribute():
    from async_api_queue.stores.redis import RedisStore

    assert async_api_queue.RedisStore is RedisStore


def test_stores_package_lazy_attribute():
    from async_api_queue import stores
    from async_api_queue.stores.redis import RedisStore

    assert stores.RedisStore is RedisStore


def test_unknown_attribute():
    with pytest.raises(AttributeError, match="has no attribute 'Missing'"):
        async_api_queue.Missing  # noqa: B018


@pytest.mark.parametrize("name", async_api_queue.__all__)
def test_all_exports_resolve(name):
    assert getattr(async_api_queue, name) is not None
