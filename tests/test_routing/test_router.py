from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch, AsyncMock

import pytest

from ziproute.errors import ErrorCode, FORMAT_ERRORS
from ziproute.routing.cache import MemoryCacheStore, cache_key
from ziproute.routing.router import RoutingCache


class SlowPipeline:
    """Wraps a real pipeline, adding latency and counting calls."""

    def __init__(self, inner, delay=0.02):
        self.inner = inner
        self.delay = delay
        self.calls = 0

    async def validate(self, code, options=None):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return await self.inner.validate(code, options)


class FailingStore(MemoryCacheStore):
    name = "failing"

    async def set(self, key, value, ttl_s):
        raise ConnectionError("redis went away")

    async def get(self, key):
        raise ConnectionError("redis went away")


@pytest.mark.asyncio
async def test_dallas_route(router):
    result = await router.route("75201")
    assert result.success
    assert not result.cached
    assert result.data.city_name == "Dallas"
    assert result.data.city_slug == "dallas-tx"
    assert result.data.territory_name == "Oncor"
    assert result.data.redirect_url == "/electricity-plans/dallas-tx"
    assert result.data.market_status == "active"
    assert result.data.source == "fresh"
    assert result.data.content_count == 42


@pytest.mark.asyncio
async def test_round_trip_hits_cache(store, pipeline):
    slow = SlowPipeline(pipeline)
    router = RoutingCache(store, slow)

    first = await router.route("75201")
    second = await router.route("75201")

    assert second.cached and second.data.cached
    assert second.data.source == "cache"
    assert second.data.model_dump(exclude={"source", "cached"}) == first.data.model_dump(
        exclude={"source", "cached"}
    )
    assert second.response_time_ms <= first.response_time_ms
    assert slow.calls == 1
    assert router.hits == 1
    assert router.misses == 1


@pytest.mark.asyncio
async def test_expired_entry_is_a_miss(store, pipeline):
    clock = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
    router = RoutingCache(store, pipeline, ttl_seconds=86400, now=lambda: clock[0])

    await router.route("77002")
    clock[0] += timedelta(hours=23)
    assert (await router.route("77002")).cached

    clock[0] += timedelta(hours=2)
    result = await router.route("77002")
    assert not result.cached
    assert result.data.source == "fresh"
    # lazy expiry: entry was overwritten, not deleted
    entry = await store.get(cache_key("77002"))
    assert entry.expires_at == clock[0] + timedelta(hours=24)


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "7520", "ABCDE", "75201-1234", "7520111"])
async def test_format_failures_carry_suggestions(router, code):
    result = await router.route(code)
    assert not result.success
    assert result.error.code in FORMAT_ERRORS
    assert len(result.error.suggestions) > 0
    assert result.error.recovery_actions
    assert result.error.helpful_tips


@pytest.mark.asyncio
async def test_not_in_region(router):
    result = await router.route("99999")
    assert result.error.code == ErrorCode.NOT_IN_REGION
    assert result.error.suggestions


@pytest.mark.asyncio
async def test_regulated_area_not_cached(router, store):
    result = await router.route("78701")
    assert result.error.code == ErrorCode.NOT_SERVICEABLE
    assert await store.size() == 0


@pytest.mark.asyncio
async def test_cache_failures_never_fail_request(pipeline):
    router = RoutingCache(FailingStore(), pipeline)
    result = await router.route("75201")
    assert result.success
    assert router.cache_failures == 2


@pytest.mark.asyncio
async def test_pipeline_crash_becomes_internal_error(router):
    with patch.object(router.pipeline, "validate", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
        result = await router.route("75201")
    assert not result.success
    assert result.error.code == ErrorCode.INTERNAL_ERROR
    assert "boom" not in result.error.message
    assert result.error.suggestions


@pytest.mark.asyncio
async def test_single_flight_dedupes_concurrent_misses(store, pipeline):
    slow = SlowPipeline(pipeline, delay=0.05)
    router = RoutingCache(store, slow, single_flight=True)

    results = await asyncio.gather(*(router.route("75201") for _ in range(5)))

    assert all(r.success for r in results)
    assert slow.calls == 1


@pytest.mark.asyncio
async def test_without_single_flight_duplicates_lookups(store, pipeline):
    slow = SlowPipeline(pipeline, delay=0.05)
    router = RoutingCache(store, slow, single_flight=False)

    await asyncio.gather(*(router.route("75201") for _ in range(3)))

    assert slow.calls == 3


@pytest.mark.asyncio
async def test_bulk_route_batches_and_pauses(router):
    codes = ["75201", "75202", "77002", "99999", "76101"] * 5
    router.batch_size = 10
    with patch("ziproute.routing.router._pause", new_callable=AsyncMock) as pause:
        results = await router.bulk_route(codes)

    assert len(results) == 25
    assert [r.success for r in results[:5]] == [True, True, True, False, True]
    assert pause.await_count == 2


@pytest.mark.asyncio
async def test_warm_up_tolerates_failures(router, store):
    summary = await router.warm_up(["75201", "99999", "77001"])
    assert summary == {"warmed": 2, "failed": 1, "skipped": 0}
    assert await store.size() == 2

    again = await router.warm_up(["75201"])
    assert again["skipped"] == 1


@pytest.mark.asyncio
async def test_fast_routes_and_metrics(router, monitor):
    await router.route("75201")
    await router.route("75201")
    await router.route("ABCDE")

    metrics = router.get_performance_metrics()
    assert metrics["hits"] == 1
    assert metrics["misses"] == 1
    assert metrics["errors"] == 1
    assert metrics["hit_rate"] == 50.0
    assert "75201" in router.fast_routes
    assert monitor.get_system_health().total_requests == 3


@pytest.mark.asyncio
async def test_clear_cache(router, store):
    await router.route("75201")
    assert await router.clear_cache() == 1
    assert not (await router.route("75201")).cached
    stats = await router.cache_stats()
    assert stats["store"] == "memory"
    assert stats["entries"] == 1


@pytest.mark.asyncio
async def test_cache_analysis_ranks_hot_and_cold_codes(router):
    for code in ["75201", "75201", "75201", "77002", "77002", "76101", "99999"]:
        await router.route(code)

    analysis = router.cache_analysis()

    assert analysis.overview.total_lookups == 6
    assert analysis.overview.hit_rate == 50.0
    assert analysis.overview.miss_rate == 50.0
    assert analysis.overview.avg_hit_response_time_ms >= 0
    assert [(s.postal_code, s.count) for s in analysis.hot_postal_codes] == [("75201", 2), ("77002", 1)]
    assert [(s.postal_code, s.count) for s in analysis.cold_postal_codes] == [
        ("75201", 1), ("76101", 1), ("77002", 1)
    ]
    assert "99999" not in {s.postal_code for s in analysis.cold_postal_codes}
    assert any("warm-up" in r for r in analysis.recommendations)


@pytest.mark.asyncio
async def test_cache_analysis_limit_and_store_failures(pipeline):
    router = RoutingCache(FailingStore(), pipeline)
    for code in ["75201", "75201", "77002"]:
        await router.route(code)

    analysis = router.cache_analysis(limit=1)

    assert analysis.overview.hit_rate == 0.0
    assert analysis.cold_postal_codes[0].postal_code == "75201"
    assert analysis.cold_postal_codes[0].count == 2
    assert len(analysis.cold_postal_codes) == 1
    assert any("failing store failed" in r for r in analysis.recommendations)
    assert any("more than once" in r for r in analysis.recommendations)


def test_cache_analysis_empty(router):
    analysis = router.cache_analysis()
    assert analysis.overview.total_lookups == 0
    assert analysis.overview.miss_rate == 0.0
    assert analysis.hot_postal_codes == []
    assert analysis.recommendations == []
