from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from ziproute.models.schemas import CachedRouting, MarketStatus
from ziproute.routing.cache import (
    MemoryCacheStore,
    RedisCacheStore,
    build_cache_store,
    cache_key,
)


def _entry(code="75201") -> CachedRouting:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return CachedRouting(
        postal_code=code,
        redirect_url="/electricity-plans/dallas-tx",
        city_name="Dallas",
        city_slug="dallas-tx",
        content_count=42,
        territory_name="Oncor",
        market_status=MarketStatus.ACTIVE,
        cached_at=now,
        expires_at=now + timedelta(hours=24),
    )


def test_cache_key():
    assert cache_key("75201") == "zip-routing:75201"


def test_entry_validity_is_strict():
    entry = _entry()
    assert entry.is_valid(entry.expires_at - timedelta(seconds=1))
    assert not entry.is_valid(entry.expires_at)


class TestMemoryCacheStore:
    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self):
        store = MemoryCacheStore(max_entries=2)
        await store.set("a", _entry("75201"), 60)
        await store.set("b", _entry("75202"), 60)
        await store.get("a")
        await store.set("c", _entry("75203"), 60)

        assert await store.get("b") is None
        assert await store.get("a") is not None
        assert await store.size() == 2

    @pytest.mark.asyncio
    async def test_overwrite_and_clear(self):
        store = MemoryCacheStore()
        await store.set("a", _entry(), 60)
        replacement = _entry().model_copy(update={"content_count": 7})
        await store.set("a", replacement, 60)
        assert (await store.get("a")).content_count == 7
        assert await store.clear() == 1
        assert await store.size() == 0


class TestRedisCacheStore:
    @pytest.mark.asyncio
    async def test_set_uses_native_ttl(self):
        client = MagicMock()
        client.set = AsyncMock()
        store = RedisCacheStore(client)

        await store.set("zip-routing:75201", _entry(), 86400)

        args, kwargs = client.set.await_args
        assert args[0] == "zip-routing:75201"
        assert kwargs["ex"] == 86400
        assert CachedRouting.model_validate_json(args[1]) == _entry()

    @pytest.mark.asyncio
    async def test_get_round_trips_json(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=_entry().model_dump_json())
        store = RedisCacheStore(client)

        assert await store.get("zip-routing:75201") == _entry()

    @pytest.mark.asyncio
    async def test_get_missing(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        assert await RedisCacheStore(client).get("zip-routing:00000") is None


def test_build_cache_store_selects_once():
    assert isinstance(build_cache_store(""), MemoryCacheStore)
    assert isinstance(build_cache_store("redis://localhost:6379/0"), RedisCacheStore)
