"""
Key-value cache for health snapshots and activity logs.

The cache is a best-effort side store: everything in it can be rebuilt, so
backend failures are logged and treated as misses.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..db.models import utcnow

logger = logging.getLogger(__name__)

HEALTH_KEY_PREFIX = "storesync:health:"
ACTIVITY_KEY_PREFIX = "storesync:activity:"


def health_key(connection_id: str) -> str:
    return f"{HEALTH_KEY_PREFIX}{connection_id}"


def activity_key(connection_id: str) -> str:
    return f"{ACTIVITY_KEY_PREFIX}{connection_id}"


class HealthCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def push_trimmed(self, key: str, value: str, max_entries: int, ttl_seconds: int) -> None:
        """Prepend value, keep the newest max_entries, refresh expiry."""
        ...

    async def lrange(self, key: str, limit: int) -> List[str]:
        """Newest first."""
        ...

    async def close(self) -> None: ...


class InMemoryCache:
    """Process-local cache with the same semantics as RedisCache."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow
        self._values: Dict[str, Tuple[str, float]] = {}
        self._lists: Dict[str, Tuple[List[str], float]] = {}

    def _now(self) -> float:
        return self._clock().timestamp()

    async def get(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._now():
            del self._values[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = (value, self._now() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._lists.pop(key, None)

    async def push_trimmed(self, key: str, value: str, max_entries: int, ttl_seconds: int) -> None:
        items = self._live_list(key)
        items.insert(0, value)
        del items[max_entries:]
        self._lists[key] = (items, self._now() + ttl_seconds)

    async def lrange(self, key: str, limit: int) -> List[str]:
        return list(self._live_list(key)[:limit])

    def _live_list(self, key: str) -> List[str]:
        entry = self._lists.get(key)
        if entry is None:
            return []
        items, expires_at = entry
        if expires_at <= self._now():
            del self._lists[key]
            return []
        return items

    async def close(self) -> None:
        self._values.clear()
        self._lists.clear()


class RedisCache:
    """Redis-backed cache (redis.asyncio)."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self._client = client

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._get_client().get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._get_client().setex(key, ttl_seconds, value)
        except RedisError as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self._get_client().delete(key)
        except RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")

    async def push_trimmed(self, key: str, value: str, max_entries: int, ttl_seconds: int) -> None:
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, max_entries - 1)
                pipe.expire(key, ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            logger.warning(f"Activity append failed for {key}: {e}")

    async def lrange(self, key: str, limit: int) -> List[str]:
        try:
            return await self._get_client().lrange(key, 0, limit - 1)
        except RedisError as e:
            logger.warning(f"Activity read failed for {key}: {e}")
            return []

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_cache(redis_url: str = "") -> HealthCache:
    """RedisCache when a URL is configured, InMemoryCache otherwise."""
    if redis_url:
        logger.info("Using Redis for health cache")
        return RedisCache(redis_url)
    logger.info("Using in-memory health cache")
    return InMemoryCache()
