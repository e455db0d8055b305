"""
LabelDesk Backend — Cache Store Backends
==========================================

What:  Key/value cache with per-entry TTL, in two interchangeable strategies.
Why:   A single process needs no Redis; several workers need a shared cache.
How:   `build_cache_store(settings)` selects one at startup:

           memory → MemoryCacheStore  (single process; expired entries are
                                       dropped lazily on read and by an
                                       explicit sweep job)
           redis  → RedisCacheStore   (shared across workers; SETEX + SCAN)

       Values are JSON documents in both strategies, so a cached value is
       always a copy and never aliases an object held by the caller.
Who:   CacheInvalidator and AssetCoordinator.

Failures:
    RedisCacheStore lets redis errors propagate. Callers treat any cache
    error as a miss (reads) or a no-op (writes, deletes).
"""

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from redis import asyncio as aioredis

from labeldesk.config import Settings

logger = logging.getLogger(__name__)

# Characters with a meaning in Redis MATCH patterns
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class CacheStore(ABC):
    """Interface shared by the cache strategies."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None when missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with `prefix`. Returns how many went."""
        ...

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """
    In-process cache.

    Entries: key → (expires_at, serialized value). The sweeper is not started
    by the constructor; the application lifespan runs `run_sweeper()` as a
    task and cancels it on shutdown.
    """

    def __init__(self, clock=time.monotonic):
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, json.dumps(value))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def sweep_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep every `interval` seconds until cancelled."""
        logger.info("Memory cache sweeper started (every %ss)", interval)
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep_expired()
        except asyncio.CancelledError:
            logger.info("Memory cache sweeper stopped")
            raise

    def __len__(self) -> int:
        return len(self._entries)

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheStore(CacheStore):
    """Redis-backed cache (redis-py asyncio client)."""

    SCAN_BATCH = 500

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[Any]:
        payload = await self._redis.get(key)
        if payload is None:
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self._redis.setex(key, ttl, json.dumps(value))

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def delete_by_prefix(self, prefix: str) -> int:
        # SCAN instead of KEYS so large keyspaces don't block the server.
        # The prefix can carry a caller's user id: it must match literally.
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        keys = [key async for key in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH)]
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning("Redis health check failed: %s", str(e))
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def build_cache_store(config: Settings) -> CacheStore:
    """Select the cache strategy once, at process startup."""
    if config.cache_backend == "redis":
        logger.info("Cache backend: redis (%s)", config.redis_url.split("@")[-1])
        return RedisCacheStore.from_url(config.redis_url)
    logger.info("Cache backend: in-process memory")
    return MemoryCacheStore()
