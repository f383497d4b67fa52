"""
auth/replay.py -- Replay Cache: idempotent refresh-token exchange.

When a refresh token is consumed, the outcome (the refresh token it was
exchanged for) is recorded under used_token:{sha256(consumed token)} for five
minutes. A client that retries with the same consumed token -- typically
because the first response was lost -- receives the SAME new refresh token
instead of a second, diverging one.

The write is SET NX EX. When two requests race on the same consumed token,
exactly one entry lands; cache_used_token() returns that winning entry to
both callers so they converge on one refresh token.

Only hashes are used as keys. Raw consumed tokens never reach Redis.
"""

from __future__ import annotations

import logging
import time

from cache.store import RedisCache
from core.models import UsedToken

logger = logging.getLogger("sessionkeep.auth.replay")

USED_TOKEN_KEY_PREFIX = "used_token:"
DEFAULT_USED_TOKEN_TTL = 5 * 60


def used_token_key(token_hash: str) -> str:
    return f"{USED_TOKEN_KEY_PREFIX}{token_hash}"


class ReplayCache:
    def __init__(self, cache: RedisCache, ttl: int = DEFAULT_USED_TOKEN_TTL) -> None:
        self.cache = cache
        self.ttl = ttl

    async def cache_used_token(self, token_hash: str, new_refresh_token: str, user_id: str) -> UsedToken:
        """Record that token_hash was exchanged for new_refresh_token.

        Returns the entry that is authoritative after the call: ours if we
        stored it, the earlier one if another exchange got there first. With
        the cache down nothing is stored and our own entry is returned.
        """
        entry = UsedToken(timestamp=int(time.time() * 1000), new_token=new_refresh_token, user_id=user_id)
        key = used_token_key(token_hash)
        if await self.cache.set_json_if_absent(key, self.ttl, entry.to_dict()):
            return entry

        existing = await self.get_cached_used_token(token_hash)
        if existing is None:
            return entry
        if existing.new_token != new_refresh_token:
            logger.info("Concurrent exchange of the same refresh token; converging on the first result")
        return existing

    async def get_cached_used_token(self, token_hash: str) -> UsedToken | None:
        data = await self.cache.get_json(used_token_key(token_hash))
        if data is None:
            return None
        try:
            return UsedToken.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed replay cache entry")
            return None
