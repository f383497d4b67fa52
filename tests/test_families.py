"""
tests/test_families.py -- TokenFamilyRepository: cache in front, database behind.

Covers read-through repopulation, write-through on create, eviction on
invalidation, and correctness with Redis down.
"""

from __future__ import annotations

import pytest

from auth.families import TokenFamilyRepository, family_cache_key
from auth.store import UserStore
from cache.store import RedisCache
from core.models import User


class TestReadWriteThrough:
    @pytest.mark.asyncio
    async def test_create_writes_both_layers(
        self, families: TokenFamilyRepository, cache: RedisCache, user_store: UserStore, user: User
    ) -> None:
        family = await families.create(user.id, "fam-1")
        assert await user_store.get_family("fam-1") == family
        assert (await cache.get_json(family_cache_key("fam-1")))["user_id"] == user.id

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(
        self, families: TokenFamilyRepository, user_store: UserStore, user: User, monkeypatch
    ) -> None:
        await families.create(user.id, "fam-1")

        async def _boom(family_id):
            raise AssertionError("database should not be consulted on a cache hit")

        monkeypatch.setattr(user_store, "get_family", _boom)
        assert (await families.find_active_family("fam-1")).family_id == "fam-1"

    @pytest.mark.asyncio
    async def test_cache_miss_falls_back_and_repopulates(
        self, families: TokenFamilyRepository, cache: RedisCache, user_store: UserStore, user: User
    ) -> None:
        await user_store.create_family(user.id, "fam-db-only")
        assert await cache.get_json(family_cache_key("fam-db-only")) is None

        found = await families.find_active_family("fam-db-only")
        assert found is not None and found.user_id == user.id
        assert await cache.get_json(family_cache_key("fam-db-only")) is not None

    @pytest.mark.asyncio
    async def test_unknown_family(self, families: TokenFamilyRepository) -> None:
        assert await families.find_active_family("nope") is None

    @pytest.mark.asyncio
    async def test_cache_entry_expires_with_configured_ttl(
        self, families: TokenFamilyRepository, cache: RedisCache, user: User
    ) -> None:
        await families.create(user.id, "fam-1")
        ttl = await cache._client.ttl(family_cache_key("fam-1"))
        assert 0 < ttl <= 3600


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_family_evicts_and_deletes(
        self, families: TokenFamilyRepository, cache: RedisCache, user_store: UserStore, user: User
    ) -> None:
        await families.create(user.id, "fam-1")
        await families.invalidate_family("fam-1")
        assert await cache.get_json(family_cache_key("fam-1")) is None
        assert await user_store.get_family("fam-1") is None
        assert await families.find_active_family("fam-1") is None

    @pytest.mark.asyncio
    async def test_invalidate_user_families_leaves_other_users(
        self, families: TokenFamilyRepository, cache: RedisCache, user_store: UserStore, user: User
    ) -> None:
        other = await user_store.create_user(User(email="other@example.com"))
        await families.create(user.id, "mine-1")
        await families.create(user.id, "mine-2")
        await families.create(other.id, "theirs")

        assert await families.invalidate_user_families(user.id) == 2

        assert await families.find_active_family("mine-1") is None
        assert await families.find_active_family("mine-2") is None
        assert await cache.get_json(family_cache_key("theirs")) is not None
        assert (await families.find_active_family("theirs")).user_id == other.id


class TestRedisOutage:
    @pytest.mark.asyncio
    async def test_lookup_falls_back_to_database(
        self, families: TokenFamilyRepository, user: User, redis_server
    ) -> None:
        await families.create(user.id, "fam-1")
        redis_server.connected = False
        assert (await families.find_active_family("fam-1")).family_id == "fam-1"

    @pytest.mark.asyncio
    async def test_create_succeeds_without_cache(
        self, families: TokenFamilyRepository, user_store: UserStore, user: User, redis_server
    ) -> None:
        redis_server.connected = False
        await families.create(user.id, "fam-1")
        assert await user_store.get_family("fam-1") is not None

    @pytest.mark.asyncio
    async def test_invalidation_still_deletes_durable_row(
        self, families: TokenFamilyRepository, user_store: UserStore, user: User, redis_server
    ) -> None:
        await families.create(user.id, "fam-1")
        redis_server.connected = False
        await families.invalidate_family("fam-1")
        assert await user_store.get_family("fam-1") is None

    @pytest.mark.asyncio
    async def test_invalidate_user_families_without_cache(
        self, families: TokenFamilyRepository, user_store: UserStore, user: User, redis_server
    ) -> None:
        await families.create(user.id, "fam-1")
        redis_server.connected = False
        assert await families.invalidate_user_families(user.id) == 1
        assert await user_store.get_family("fam-1") is None
