"""
cache/store.py -- Async Redis cache shared by the token family and replay caches.

Values are JSON documents stored with a TTL. Every call swallows RedisError:
a cache outage is logged and reported to the caller as a miss (None / False /
[]), never as an exception. Repositories built on top (auth/families.py,
auth/replay.py) therefore only implement read-through / write-through and do
not repeat the failure policy.

Usage:
    cache = RedisCache("redis://localhost:6379/0")
    await cache.connect()
    await cache.setex_json("token_family:abc", 3600, {...})
    data = await cache.get_json("token_family:abc")   # dict or None
    await cache.close()

Tests pass an already-built client (fakeredis.FakeAsyncRedis) instead of a URL.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger("sessionkeep.cache")


class RedisCache:
    def __init__(self, url: str | None = None, client: redis.Redis | None = None) -> None:
        self.url = url
        self._client = client

    async def connect(self) -> None:
        """Create the client (when built from a URL) and ping it once.

        A failed ping is only logged; the service starts degraded and every
        call falls through to the durable store until Redis comes back.
        """
        if self._client is None:
            self._client = redis.Redis.from_url(self.url or "redis://localhost:6379/0", decode_responses=True)
        try:
            await self._client.ping()
        except RedisError as exc:
            logger.warning("Redis unavailable at startup, continuing without cache: %s", exc)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Single-key operations
    # ------------------------------------------------------------------

    async def get_json(self, key: str) -> dict[str, Any] | None:
        """Return the decoded JSON stored at key, or None on miss or failure."""
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def setex_json(self, key: str, ttl: int, value: dict[str, Any]) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.setex(key, ttl, json.dumps(value))
        except RedisError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            return False
        return True

    async def set_json_if_absent(self, key: str, ttl: int, value: dict[str, Any]) -> bool:
        """Atomically store value only if key does not exist (SET NX EX).

        Returns True when this call created the key. False means either the
        key already held a value or the cache is unreachable.
        """
        if self._client is None:
            return False
        try:
            created = await self._client.set(key, json.dumps(value), ex=ttl, nx=True)
        except RedisError as exc:
            logger.warning("Conditional cache write failed for %s: %s", key, exc)
            return False
        return bool(created)

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.delete(key)
        except RedisError as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Multi-key operations
    # ------------------------------------------------------------------

    async def scan_keys(self, pattern: str) -> list[str]:
        """Return every key matching a glob pattern. O(keyspace); not for hot paths."""
        if self._client is None:
            return []
        try:
            return [key async for key in self._client.scan_iter(match=pattern)]
        except RedisError as exc:
            logger.warning("Cache scan failed for %s: %s", pattern, exc)
            return []

    async def delete_many(self, keys: list[str]) -> bool:
        """Delete keys in one pipelined round trip."""
        if not keys:
            return True
        if self._client is None:
            return False
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.delete(key)
                await pipe.execute()
        except RedisError as exc:
            logger.warning("Pipelined cache delete of %d keys failed: %s", len(keys), exc)
            return False
        return True
