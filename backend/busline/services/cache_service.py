"""
Redis caching service for route catalog reads.

CACHING STRATEGY
================

What we cache:
  - Route listings: "routes:list:active={active_only}"
  - Route searches: "routes:search:from={from}&to={to}"

Why:
  - Route lookups back every search form and change only on admin writes
  - Schedules and seat counts are NOT cached: a stale available_seats
    would make clients pick seats that are already gone

Invalidation strategy:
  - Any route write (create, deactivate) deletes every "routes:*" key
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

Failure policy:
  - The cache fails open. Disabled or unreachable Redis means every call is a
    miss and writes are skipped; requests are served from the store. After a
    failed connect we wait RECONNECT_BACKOFF_SECONDS before trying again.
"""

import json
import time
from typing import Optional

import redis.asyncio as redis

from busline.core.config import Settings
from busline.core.logging import get_logger
from busline.core.metrics import record_cache_operation

logger = get_logger(__name__)

RECONNECT_BACKOFF_SECONDS = 30.0
KEY_PREFIX = "routes:"


def route_list_key(active_only: bool) -> str:
    return f"{KEY_PREFIX}list:active={active_only}"


def route_search_key(from_location: str, to_location: str) -> str:
    return f"{KEY_PREFIX}search:from={from_location}&to={to_location}"


class CacheService:

    def __init__(self, settings: Settings):
        self.enabled = settings.REDIS_ENABLED
        self.url = settings.REDIS_URL
        self.ttl = settings.REDIS_CACHE_TTL
        self._client: Optional[redis.Redis] = None
        self._retry_at = 0.0

    async def get_redis(self) -> Optional[redis.Redis]:
        """Get or create Redis connection. Returns None if Redis is disabled or down."""
        if not self.enabled:
            return None
        if self._client is not None:
            return self._client
        if time.monotonic() < self._retry_at:
            return None

        client = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            self._retry_at = time.monotonic() + RECONNECT_BACKOFF_SECONDS
            await client.aclose()
            return None

        logger.info("redis_connected", url=self.url)
        self._client = client
        return client

    async def close(self) -> None:
        """Close Redis connection on shutdown."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_json(self, key: str) -> Optional[list]:
        client = await self.get_redis()
        if not client:
            return None
        try:
            data = await client.get(key)
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None
        record_cache_operation("get", data is not None)
        if data is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return json.loads(data)

    async def set_json(self, key: str, value) -> None:
        client = await self.get_redis()
        if not client:
            return
        try:
            await client.setex(key, self.ttl, json.dumps(value, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate_routes(self) -> None:
        """
        Invalidate all cached route reads.
        Uses SCAN to find and delete all keys matching the prefix.
        """
        client = await self.get_redis()
        if not client:
            return
        try:
            deleted = 0
            async for key in client.scan_iter(match=f"{KEY_PREFIX}*", count=100):
                await client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", keys_deleted=deleted)
        except Exception as e:
            logger.error("cache_invalidation_error", error=str(e))

    async def stats(self) -> dict:
        """Redis cache statistics for the health endpoint."""
        if not self.enabled:
            return {"status": "disabled"}
        client = await self.get_redis()
        if not client:
            return {"status": "unavailable"}
        try:
            info = await client.info("stats")
        except Exception as e:
            return {"status": "error", "error": str(e)}
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
