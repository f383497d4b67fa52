"""
tests/test_cache_store.py -- RedisCache against fakeredis.

Every operation must degrade to a neutral value when Redis is down
(FakeServer.connected = False) instead of raising.
"""

from __future__ import annotations

import pytest

from cache.store import RedisCache


class TestRedisCache:
    @pytest.mark.asyncio
    async def test_setex_and_get_json(self, cache: RedisCache) -> None:
        assert await cache.setex_json("k", 60, {"a": 1}) is True
        assert await cache.get_json("k") == {"a": 1}
        assert await cache.get_json("missing") is None

    @pytest.mark.asyncio
    async def test_set_if_absent_only_first_write_wins(self, cache: RedisCache) -> None:
        assert await cache.set_json_if_absent("k", 60, {"v": "first"}) is True
        assert await cache.set_json_if_absent("k", 60, {"v": "second"}) is False
        assert await cache.get_json("k") == {"v": "first"}

    @pytest.mark.asyncio
    async def test_delete(self, cache: RedisCache) -> None:
        await cache.setex_json("k", 60, {"a": 1})
        assert await cache.delete("k") is True
        assert await cache.get_json("k") is None

    @pytest.mark.asyncio
    async def test_scan_and_delete_many(self, cache: RedisCache) -> None:
        for i in range(3):
            await cache.setex_json(f"token_family:{i}", 60, {"i": i})
        await cache.setex_json("other:1", 60, {})

        keys = await cache.scan_keys("token_family:*")
        assert sorted(keys) == ["token_family:0", "token_family:1", "token_family:2"]

        assert await cache.delete_many(keys) is True
        assert await cache.scan_keys("token_family:*") == []
        assert await cache.get_json("other:1") == {}

    @pytest.mark.asyncio
    async def test_delete_many_empty_is_noop(self, cache: RedisCache) -> None:
        assert await cache.delete_many([]) is True

    @pytest.mark.asyncio
    async def test_undecodable_value_is_a_miss(self, cache: RedisCache) -> None:
        await cache._client.set("k", "{not json")
        assert await cache.get_json("k") is None


class TestRedisOutage:
    """With the server disconnected nothing raises; everything reads as a miss."""

    @pytest.mark.asyncio
    async def test_every_operation_degrades(self, cache: RedisCache, redis_server) -> None:
        redis_server.connected = False
        assert await cache.get_json("k") is None
        assert await cache.setex_json("k", 60, {"a": 1}) is False
        assert await cache.set_json_if_absent("k", 60, {"a": 1}) is False
        assert await cache.delete("k") is False
        assert await cache.scan_keys("*") == []
        assert await cache.delete_many(["a", "b"]) is False

    @pytest.mark.asyncio
    async def test_unconnected_cache_is_a_miss(self) -> None:
        cache = RedisCache("redis://unused")
        assert await cache.get_json("k") is None
        assert await cache.setex_json("k", 60, {}) is False
