"""
auth/families.py -- Token Family repository: cache in front, durable store behind.

Read-through: find_active_family() tries Redis first, falls back to the
database on a miss (or on any cache failure, which RedisCache reports as a
miss), and repopulates the cache when the fallback finds a row.

Write-through: create() persists the row, then mirrors it into the cache.
Invalidation deletes the durable row AND evicts the cache entry; a failed
eviction is logged and the durable delete still happens, so revocation
never depends on Redis being up. A stale cache entry that survives an
outage expires on its own after token_family_cache_ttl_seconds.

Cache layout: token_family:{family_id} -> TokenFamily JSON, TTL 1 hour.

Layer rule: no imports from api/. cache/ is consumed through RedisCache only.
"""

from __future__ import annotations

import logging

from auth.store import UserStore
from cache.store import RedisCache
from core.models import TokenFamily

logger = logging.getLogger("sessionkeep.auth.families")

FAMILY_KEY_PREFIX = "token_family:"
DEFAULT_FAMILY_TTL = 60 * 60  # 1 hour


def family_cache_key(family_id: str) -> str:
    return f"{FAMILY_KEY_PREFIX}{family_id}"


class TokenFamilyRepository:
    """Session liveness records: one TokenFamily per login event."""

    def __init__(self, store: UserStore, cache: RedisCache, ttl: int = DEFAULT_FAMILY_TTL) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl

    async def create(self, user_id: str, family_id: str) -> TokenFamily:
        """Persist a new family and mirror it into the cache.

        Durable-store errors propagate; the orchestrator decides whether a
        failed write is fatal.
        """
        family = await self.store.create_family(user_id, family_id)
        await self.cache.setex_json(family_cache_key(family_id), self.ttl, family.to_dict())
        return family

    async def find_active_family(self, family_id: str) -> TokenFamily | None:
        cached = await self.cache.get_json(family_cache_key(family_id))
        if cached is not None:
            try:
                return TokenFamily.from_dict(cached)
            except (KeyError, TypeError):
                logger.warning("Ignoring malformed cached family %s", family_id)

        family = await self.store.get_family(family_id)
        if family is not None:
            await self.cache.setex_json(family_cache_key(family_id), self.ttl, family.to_dict())
        return family

    async def invalidate_family(self, family_id: str) -> None:
        if not await self.cache.delete(family_cache_key(family_id)):
            logger.warning("Could not evict family %s from cache; it will expire within %ds", family_id, self.ttl)
        await self.store.delete_family(family_id)

    async def invalidate_user_families(self, user_id: str) -> int:
        """Revoke every session of user_id. Returns the number of durable rows removed.

        Scans token_family:* and evicts the entries that belong to the user in
        one pipelined delete. Linear in the number of cached families; only
        used for sign-out-everywhere.
        """
        owned: list[str] = []
        for key in await self.cache.scan_keys(f"{FAMILY_KEY_PREFIX}*"):
            data = await self.cache.get_json(key)
            if data and data.get("user_id") == user_id:
                owned.append(key)
        if owned and not await self.cache.delete_many(owned):
            logger.warning("Could not evict %d cached families for user %s", len(owned), user_id)

        removed = await self.store.delete_user_families(user_id)
        logger.info("Revoked %d token families for user %s", removed, user_id)
        return removed
