"""
Tests for the Redis chat state store against an in-process fake client.
"""
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from support_bot.state import ChatState, MenuKind
from support_bot.state.redis_state_store import RedisChatStateStore


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the store."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        existed = self.data.pop(key, None) is not None
        self.ttls.pop(key, None)
        return int(existed)

    async def scan_iter(self, match=None, count=None):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def info(self, section=None):
        return {"used_memory_human": "1.00M"}

    async def ping(self):
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis):
    store = RedisChatStateStore("redis://localhost:6379/0", default_ttl=600)
    store.client = fake_redis
    return store


@pytest.mark.unit
async def test_set_and_get(redis_store, fake_redis):
    state = ChatState(chat_id="oc_1")
    state.enter_menu(MenuKind.AWAITING_PAGE_SELECTION)

    assert await redis_store.set("oc_1", state)

    assert fake_redis.ttls["chat_state:oc_1"] == 600
    loaded = await redis_store.get("oc_1")
    assert loaded.chat_id == "oc_1"
    assert loaded.mode.menu_kind == MenuKind.AWAITING_PAGE_SELECTION
    assert loaded.created_at is not None
    assert state.created_at is None


@pytest.mark.unit
async def test_custom_ttl_and_missing_chat(redis_store, fake_redis):
    await redis_store.set("oc_1", ChatState(chat_id="oc_1"), ttl=30)

    assert fake_redis.ttls["chat_state:oc_1"] == 30
    assert await redis_store.get("oc_missing") is None


@pytest.mark.unit
async def test_delete(redis_store):
    await redis_store.set("oc_1", ChatState(chat_id="oc_1"))

    assert await redis_store.delete("oc_1")
    assert not await redis_store.delete("oc_1")
    assert await redis_store.get("oc_1") is None


@pytest.mark.unit
async def test_l1_cache_serves_copies(fake_redis):
    store = RedisChatStateStore("redis://localhost:6379/0", enable_l1_cache=True)
    store.client = fake_redis
    await store.set("oc_1", ChatState(chat_id="oc_1"))
    fake_redis.data.clear()

    first = await store.get("oc_1")
    first.enter_menu(MenuKind.TEXT_PAGE_SELECTION)
    second = await store.get("oc_1")

    assert second is not None
    assert second.mode.is_idle


@pytest.mark.unit
async def test_connection_errors_are_retried(redis_store, fake_redis):
    await redis_store.set("oc_1", ChatState(chat_id="oc_1"))
    stored = fake_redis.data["chat_state:oc_1"]
    fake_redis.get = AsyncMock(side_effect=[RedisConnectionError("reset by peer"), stored])

    loaded = await redis_store.get("oc_1")

    assert loaded.chat_id == "oc_1"
    assert fake_redis.get.await_count == 2


@pytest.mark.unit
async def test_other_redis_errors_read_as_missing(redis_store, fake_redis):
    fake_redis.get = AsyncMock(side_effect=ResponseError("WRONGTYPE"))

    assert await redis_store.get("oc_1") is None


@pytest.mark.unit
async def test_stats_and_ping(redis_store):
    await redis_store.set("oc_1", ChatState(chat_id="oc_1"))
    await redis_store.set("oc_2", ChatState(chat_id="oc_2"))

    stats = await redis_store.get_stats()

    assert stats["store_type"] == "redis"
    assert stats["active_chats"] == 2
    assert stats["used_memory_human"] == "1.00M"
    assert await redis_store.ping()
    assert await redis_store.cleanup_expired() == 0
