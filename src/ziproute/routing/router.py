from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from ziproute.errors import ErrorCode
from ziproute.models.schemas import (
    CacheAnalysis,
    CacheOverview,
    CachedRouting,
    CodeCacheStat,
    MarketStatus,
    MonitorEvent,
    RoutingData,
    RoutingErrorBody,
    RoutingResult,
    ValidationResult,
)
from ziproute.monitoring.monitor import PerformanceMonitor
from ziproute.notify.analytics import AnalyticsSink
from ziproute.pipeline.validator import ValidationPipeline, check_format
from ziproute.routing import recovery
from ziproute.routing.cache import CacheStore, cache_key
from ziproute.territory import reference

logger = structlog.get_logger()

MAX_TRACKED_CODES = 10000
WARM_UP_HIT_RATE_PCT = 70.0


@dataclass
class _CodeStats:
    hits: int = 0
    misses: int = 0
    hit_ms: float = 0.0
    miss_ms: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


class RoutingCache:
    """Cache-first lookup of postal code to market route.

    A hit is served straight from the store. A miss runs the validation
    pipeline, writes the result through with a fixed TTL and reports the
    lookup to the performance monitor. ``route`` never raises.
    """

    def __init__(
        self,
        store: CacheStore,
        pipeline: ValidationPipeline,
        monitor: PerformanceMonitor | None = None,
        analytics: AnalyticsSink | None = None,
        ttl_seconds: int = 86400,
        batch_size: int = 10,
        batch_pause_s: float = 0.1,
        fast_route_ms: float = 100.0,
        single_flight: bool = True,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.pipeline = pipeline
        self.monitor = monitor
        self.analytics = analytics
        self.ttl = timedelta(seconds=ttl_seconds)
        self.batch_size = batch_size
        self.batch_pause_s = batch_pause_s
        self.fast_route_ms = fast_route_ms
        self.single_flight = single_flight
        self._now = now

        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.cache_failures = 0
        self.avg_response_ms = 0.0
        self._timed_requests = 0
        self.fast_routes: set[str] = set()
        self._totals = _CodeStats()
        self._code_stats: dict[str, _CodeStats] = {}
        self._inflight: dict[str, asyncio.Future[RoutingResult]] = {}
        self.warmed_up = False

    async def route(self, postal_code: str) -> RoutingResult:
        start = time.perf_counter()
        try:
            result = await self._route(postal_code, start)
        except Exception:
            logger.exception("route_internal_error", postal_code=postal_code)
            result = self._error_result(postal_code, ErrorCode.INTERNAL_ERROR, start)

        self._record(postal_code, result)
        return result

    async def _route(self, postal_code: str, start: float) -> RoutingResult:
        code, format_error = check_format(postal_code)
        if format_error is not None:
            return self._error_result(code, format_error, start)

        cached = await self._read(code)
        if cached is not None:
            self.hits += 1
            elapsed = _elapsed_ms(start)
            self._track(code, hit=True, elapsed_ms=elapsed)
            logger.debug("route_cache_hit", postal_code=code)
            return RoutingResult(
                success=True,
                data=_to_data(cached, source="cache", cached=True),
                response_time_ms=elapsed,
                cached=True,
            )

        if not self.single_flight:
            return await self._fresh(code, start)

        pending = self._inflight.get(code)
        if pending is not None:
            result = await asyncio.shield(pending)
            return result.model_copy(update={"response_time_ms": _elapsed_ms(start)})

        future: asyncio.Future[RoutingResult] = asyncio.get_running_loop().create_future()
        self._inflight[code] = future
        try:
            result = await self._fresh(code, start)
            future.set_result(result)
            return result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Nobody else may be waiting; mark retrieved so asyncio does not warn.
            future.exception()
            raise
        finally:
            self._inflight.pop(code, None)

    async def _fresh(self, code: str, start: float) -> RoutingResult:
        validation = await self.pipeline.validate(code)
        if not validation.is_valid:
            return self._error_result(code, validation.error_code or ErrorCode.INTERNAL_ERROR, start)

        entry = self._build_entry(validation)
        await self._write(entry)
        self.misses += 1
        elapsed = _elapsed_ms(start)
        self._track(code, hit=False, elapsed_ms=elapsed)
        logger.info("route_resolved", postal_code=code, city_slug=entry.city_slug, response_time_ms=elapsed)
        return RoutingResult(
            success=True,
            data=_to_data(entry, source="fresh", cached=False),
            response_time_ms=elapsed,
            cached=False,
        )

    def _build_entry(self, v: ValidationResult) -> CachedRouting:
        now = self._now()
        territory = reference.territory_by_id(v.territory_id or "")
        deregulated = territory.deregulated if territory else v.is_serviceable
        return CachedRouting(
            postal_code=v.postal_code,
            redirect_url=reference.redirect_url(v.city_slug),
            city_name=v.city_name,
            city_slug=v.city_slug,
            content_count=v.content_count,
            territory_name=v.territory_name or "",
            market_status=MarketStatus.ACTIVE if deregulated else MarketStatus.LIMITED,
            source="fresh",
            cached_at=now,
            expires_at=now + self.ttl,
        )

    async def _read(self, code: str) -> CachedRouting | None:
        try:
            entry = await self.store.get(cache_key(code))
        except Exception as e:
            self.cache_failures += 1
            logger.warning("cache_read_failed", postal_code=code, store=self.store.name, error=str(e))
            return None
        if entry is None or not entry.is_valid(self._now()):
            return None
        return entry

    async def _write(self, entry: CachedRouting) -> None:
        try:
            await self.store.set(cache_key(entry.postal_code), entry, int(self.ttl.total_seconds()))
        except Exception as e:
            self.cache_failures += 1
            logger.warning("cache_write_failed", postal_code=entry.postal_code, store=self.store.name, error=str(e))

    def _track(self, code: str, hit: bool, elapsed_ms: float) -> None:
        stats = self._code_stats.get(code)
        if stats is None and len(self._code_stats) < MAX_TRACKED_CODES:
            stats = self._code_stats[code] = _CodeStats()
        for s in (self._totals, stats):
            if s is None:
                continue
            if hit:
                s.hits += 1
                s.hit_ms += elapsed_ms
            else:
                s.misses += 1
                s.miss_ms += elapsed_ms

    def _error_result(self, code: str, error_code: ErrorCode, start: float) -> RoutingResult:
        self.errors += 1
        advice = recovery.advise(code, error_code)
        return RoutingResult(
            success=False,
            error=RoutingErrorBody(
                code=error_code,
                message=error_code.message,
                suggestions=advice.suggestion_labels,
                recovery_actions=advice.recovery_actions,
                helpful_tips=advice.helpful_tips,
            ),
            response_time_ms=_elapsed_ms(start),
            cached=False,
        )

    def _record(self, postal_code: str, result: RoutingResult) -> None:
        self._timed_requests += 1
        self.avg_response_ms += (result.response_time_ms - self.avg_response_ms) / self._timed_requests
        if result.success and result.response_time_ms < self.fast_route_ms:
            self.fast_routes.add(result.data.postal_code)

        if self.monitor is not None:
            self.monitor.record_event(MonitorEvent(
                type="lookup",
                component="routing",
                postal_code=postal_code if isinstance(postal_code, str) else None,
                response_time_ms=result.response_time_ms,
                error_code=result.error.code if result.error else None,
                cached=result.cached if result.success else None,
            ))
        if self.analytics is not None:
            self.analytics.track(
                "zip_lookup",
                postal_code=postal_code if isinstance(postal_code, str) else None,
                success=result.success,
                cached=result.cached,
                error_code=result.error.code.value if result.error else None,
                response_time_ms=result.response_time_ms,
            )

    async def bulk_route(self, postal_codes: list[str]) -> list[RoutingResult]:
        """Route many codes in fixed-size batches, pausing between batches."""
        results: list[RoutingResult] = []
        for i in range(0, len(postal_codes), self.batch_size):
            if i:
                await _pause(self.batch_pause_s)
            batch = postal_codes[i:i + self.batch_size]
            results.extend(await asyncio.gather(*(self.route(c) for c in batch)))
        return results

    async def warm_up(self, postal_codes: list[str]) -> dict[str, int]:
        """Pre-populate the cache. Individual failures are logged and skipped."""
        if self.warmed_up:
            return {"warmed": 0, "failed": 0, "skipped": len(postal_codes)}
        results = await self.bulk_route(postal_codes)
        warmed = sum(1 for r in results if r.success)
        failed = len(results) - warmed
        for code, r in zip(postal_codes, results):
            if not r.success:
                logger.info("warm_up_skipped", postal_code=code, error_code=r.error.code.value)
        self.warmed_up = True
        logger.info("cache_warmed", warmed=warmed, failed=failed)
        return {"warmed": warmed, "failed": failed, "skipped": 0}

    async def clear_cache(self) -> int:
        cleared = await self.store.clear()
        self.fast_routes.clear()
        logger.info("cache_cleared", entries=cleared)
        return cleared

    def get_performance_metrics(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": round(self.hits / lookups * 100, 2) if lookups else 0.0,
            "avg_response_time_ms": round(self.avg_response_ms, 3),
            "fast_routes": len(self.fast_routes),
            "cache_failures": self.cache_failures,
        }

    def cache_analysis(self, limit: int = 10) -> CacheAnalysis:
        """Hit/miss breakdown with the most-hit and most-missed postal codes."""
        t = self._totals
        lookups = t.hits + t.misses
        hit_rate = round(t.hits / lookups * 100, 2) if lookups else 0.0

        hot = sorted(
            (item for item in self._code_stats.items() if item[1].hits),
            key=lambda item: (-item[1].hits, item[0]),
        )[:limit]
        cold = sorted(
            (item for item in self._code_stats.items() if item[1].misses),
            key=lambda item: (-item[1].misses, item[0]),
        )[:limit]

        recommendations = []
        if lookups and hit_rate < WARM_UP_HIT_RATE_PCT:
            recommendations.append("Add the most-missed postal codes to the warm-up list")
        repeat_misses = [code for code, s in cold if s.misses > 1]
        if repeat_misses:
            recommendations.append(
                f"{len(repeat_misses)} postal codes missed the cache more than once; review the cache TTL"
            )
        if self.cache_failures:
            recommendations.append(
                f"The {self.store.name} store failed {self.cache_failures} times; check its connectivity"
            )

        return CacheAnalysis(
            overview=CacheOverview(
                total_lookups=lookups,
                hit_rate=hit_rate,
                miss_rate=round(100.0 - hit_rate, 2) if lookups else 0.0,
                avg_hit_response_time_ms=round(t.hit_ms / t.hits, 3) if t.hits else 0.0,
                avg_miss_response_time_ms=round(t.miss_ms / t.misses, 3) if t.misses else 0.0,
            ),
            hot_postal_codes=[
                CodeCacheStat(postal_code=code, count=s.hits, avg_response_time_ms=round(s.hit_ms / s.hits, 3))
                for code, s in hot
            ],
            cold_postal_codes=[
                CodeCacheStat(postal_code=code, count=s.misses, avg_response_time_ms=round(s.miss_ms / s.misses, 3))
                for code, s in cold
            ],
            recommendations=recommendations,
        )

    async def cache_stats(self) -> dict:
        stats = {"store": self.store.name, **self.get_performance_metrics()}
        try:
            stats["entries"] = await self.store.size()
        except Exception as e:
            logger.warning("cache_size_failed", store=self.store.name, error=str(e))
            stats["entries"] = None
        return stats


def _to_data(entry: CachedRouting, source: str, cached: bool) -> RoutingData:
    return RoutingData(
        postal_code=entry.postal_code,
        redirect_url=entry.redirect_url,
        city_name=entry.city_name,
        city_slug=entry.city_slug,
        content_count=entry.content_count,
        territory_name=entry.territory_name,
        market_status=entry.market_status,
        source=source,
        cached=cached,
    )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
