# ============================================================================
# Namespaced Cache Layer
# ============================================================================
"""
Cache backends for platform analytics.
Provides a Redis adapter and an in-memory implementation with the same
namespaced get/set/delete/delete_pattern interface.
"""
from __future__ import annotations

import fnmatch
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from redis.exceptions import RedisError

from app.core.exceptions import CacheFailure

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 60  # seconds between expiry sweeps of the in-memory layer


# ============================================================================
# Cache Protocol (Interface)
# ============================================================================
class CacheLayer(Protocol):
    """Protocol defining the namespaced cache interface"""

    async def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        """Get a JSON value by key, None on miss or expiry"""
        ...

    async def set(self, namespace: str, key: str, value: Dict[str, Any], ttl: int) -> bool:
        """Set a JSON value with TTL in seconds"""
        ...

    async def delete(self, namespace: str, key: str) -> bool:
        """Delete a single key"""
        ...

    async def delete_pattern(self, namespace: str, pattern: str) -> int:
        """Delete every key in the namespace matching a glob pattern"""
        ...


class _StatsMixin:
    """Hit/miss/error counters shared by both backends"""

    def _init_stats(self) -> None:
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    @property
    def stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = round(self._stats["hits"] / total * 100, 2) if total > 0 else 0
        return {**self._stats, "hit_rate": hit_rate}


# ============================================================================
# Redis Cache Layer
# ============================================================================
class RedisCacheLayer(_StatsMixin):
    """
    Redis-backed cache layer.

    Keys are stored as ``{prefix}:{namespace}:{key}`` with values serialized
    as JSON. Redis errors surface as CacheFailure so callers can degrade to a
    miss.

    Usage:
        client = create_redis_client(settings.REDIS_URL)
        cache = RedisCacheLayer(client, prefix=settings.CACHE_KEY_PREFIX)
    """

    def __init__(self, redis_client, prefix: str = "educonnect"):
        self._redis = redis_client
        self._prefix = prefix
        self._init_stats()

    def make_key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self._redis.get(self.make_key(namespace, key))
        except RedisError as e:
            self._stats["errors"] += 1
            raise CacheFailure("get", str(e)) from e

        if raw is None:
            self._stats["misses"] += 1
            return None

        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            # Corrupt entries behave as a miss
            self._stats["misses"] += 1
            logger.warning(f"Discarding undecodable cache entry {namespace}:{key}")
            return None

        self._stats["hits"] += 1
        return value

    async def set(self, namespace: str, key: str, value: Dict[str, Any], ttl: int) -> bool:
        try:
            await self._redis.setex(self.make_key(namespace, key), ttl, json.dumps(value))
        except RedisError as e:
            self._stats["errors"] += 1
            raise CacheFailure("set", str(e)) from e
        return True

    async def delete(self, namespace: str, key: str) -> bool:
        try:
            result = await self._redis.delete(self.make_key(namespace, key))
        except RedisError as e:
            self._stats["errors"] += 1
            raise CacheFailure("delete", str(e)) from e
        return result > 0

    async def delete_pattern(self, namespace: str, pattern: str) -> int:
        match = self.make_key(namespace, pattern)
        deleted = 0
        try:
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=match, count=100)
                if keys:
                    deleted += await self._redis.delete(*keys)
                if cursor == 0:
                    break
        except RedisError as e:
            self._stats["errors"] += 1
            raise CacheFailure("delete_pattern", str(e)) from e
        return deleted


# ============================================================================
# In-Memory Cache Layer (Fallback/Testing)
# ============================================================================
class InMemoryCacheLayer(_StatsMixin):
    """
    In-memory cache for testing or single-process deployments.
    Not recommended for production with multiple workers.
    """

    def __init__(
        self,
        prefix: str = "educonnect",
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: Dict[str, Tuple[str, float]] = {}  # key -> (json, expires_at)
        self._prefix = prefix
        self._max_size = max_size
        self._clock = clock
        self._next_sweep = 0.0
        self._init_stats()

    def make_key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    def _live(self, full_key: str) -> Optional[str]:
        entry = self._entries.get(full_key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[full_key]
            return None
        return raw

    async def get(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        raw = self._live(self.make_key(namespace, key))
        if raw is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return json.loads(raw)

    async def set(self, namespace: str, key: str, value: Dict[str, Any], ttl: int) -> bool:
        full_key = self.make_key(namespace, key)
        now = self._clock()

        # Expired entries are swept on write as well as on read
        if now >= self._next_sweep or len(self._entries) >= self._max_size:
            self._purge_expired(now)
            self._next_sweep = now + SWEEP_INTERVAL

        if full_key not in self._entries and len(self._entries) >= self._max_size:
            # Evict the entry closest to expiry
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]

        # Serialize on write so cached values never alias caller objects
        self._entries[full_key] = (json.dumps(value), now + ttl)
        return True

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")

    async def delete(self, namespace: str, key: str) -> bool:
        return self._entries.pop(self.make_key(namespace, key), None) is not None

    async def delete_pattern(self, namespace: str, pattern: str) -> int:
        match = self.make_key(namespace, pattern)
        doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, match)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    async def exists(self, namespace: str, key: str) -> bool:
        return self._live(self.make_key(namespace, key)) is not None

    async def ttl(self, namespace: str, key: str) -> int:
        full_key = self.make_key(namespace, key)
        if self._live(full_key) is None:
            return -2
        return max(int(self._entries[full_key][1] - self._clock()), 0)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ============================================================================
# Cache Factory
# ============================================================================
def create_cache_layer(settings) -> CacheLayer:
    """
    Create the cache layer configured by CACHE_BACKEND.

    Redis connectivity is not probed here: a Redis outage later degrades
    every read to a miss instead of failing startup.
    """
    if settings.CACHE_BACKEND == "memory":
        logger.info("Using in-memory cache layer")
        return InMemoryCacheLayer(
            prefix=settings.CACHE_KEY_PREFIX,
            max_size=settings.CACHE_MEMORY_MAX_SIZE,
        )

    from app.core.redis import create_redis_client

    logger.info("Using Redis cache layer")
    return RedisCacheLayer(create_redis_client(settings.REDIS_URL), prefix=settings.CACHE_KEY_PREFIX)
