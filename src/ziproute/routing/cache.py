from __future__ import annotations

from collections import OrderedDict
from typing import Protocol

import redis.asyncio as aioredis
import structlog

from ziproute.models.schemas import CachedRouting

logger = structlog.get_logger()

KEY_PREFIX = "zip-routing:"


def cache_key(postal_code: str) -> str:
    return f"{KEY_PREFIX}{postal_code}"


class CacheStore(Protocol):
    """Key-value storage for routing entries.

    Stores never decide freshness; callers compare ``expires_at`` themselves.
    """

    name: str

    async def get(self, key: str) -> CachedRouting | None: ...

    async def set(self, key: str, value: CachedRouting, ttl_s: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> int: ...

    async def size(self) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class MemoryCacheStore:
    """In-process LRU map bounded to ``max_entries``."""

    name = "memory"

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._data: OrderedDict[str, CachedRouting] = OrderedDict()

    async def get(self, key: str) -> CachedRouting | None:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    async def set(self, key: str, value: CachedRouting, ttl_s: int) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count

    async def size(self) -> int:
        return len(self._data)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisCacheStore:
    """Shared cache in Redis. Entries also carry a native TTL so Redis reclaims them."""

    name = "redis"

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheStore:
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> CachedRouting | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return CachedRouting.model_validate_json(raw)

    async def set(self, key: str, value: CachedRouting, ttl_s: int) -> None:
        await self._redis.set(key, value.model_dump_json(), ex=ttl_s)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def clear(self) -> int:
        count = 0
        async for key in self._redis.scan_iter(match=f"{KEY_PREFIX}*"):
            count += await self._redis.delete(key)
        return count

    async def size(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=f"{KEY_PREFIX}*"):
            count += 1
        return count

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


def build_cache_store(redis_url: str, max_entries: int = 10000) -> CacheStore:
    """Pick the store once at startup: Redis when a URL is configured, memory otherwise."""
    if redis_url:
        logger.info("cache_store_selected", store="redis")
        return RedisCacheStore.from_url(redis_url)
    logger.info("cache_store_selected", store="memory", max_entries=max_entries)
    return MemoryCacheStore(max_entries)
