from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
import structlog

from ziproute.config import Settings
from ziproute.coverage.orchestrator import CoverageOrchestrator, OrchestratorConfig
from ziproute.coverage.queue import OperationQueue
from ziproute.monitoring.monitor import PerformanceMonitor
from ziproute.notify.analytics import AnalyticsSink
from ziproute.notify.slack import SlackNotifier
from ziproute.pipeline.content import StaticContentCatalog
from ziproute.pipeline.validator import ValidationPipeline
from ziproute.routing.cache import CacheStore, build_cache_store
from ziproute.routing.router import RoutingCache
from ziproute.sources.client import VerificationSource, build_sources
from ziproute.storage.database import Database

logger = structlog.get_logger()


@dataclass
class Services:
    """Every long-lived component of one process, wired once at startup."""

    settings: Settings
    http: httpx.AsyncClient
    database: Database
    store: CacheStore
    sources: list[VerificationSource]
    pipeline: ValidationPipeline
    monitor: PerformanceMonitor
    analytics: AnalyticsSink
    router: RoutingCache
    queue: OperationQueue
    orchestrator: CoverageOrchestrator
    warm_up_codes: list[str] = field(default_factory=list)
    tasks: list[asyncio.Task] = field(default_factory=list)

    async def start(self) -> None:
        await self.database.init()
        s = self.settings
        self.tasks.append(asyncio.create_task(self.queue.run(), name="operation-queue"))
        self.tasks.append(asyncio.create_task(
            self.orchestrator.run_health_loop(s.health_check_interval_s), name="health-loop"
        ))
        self.tasks.append(asyncio.create_task(
            self.monitor.run_trend_loop(s.trend_interval_s), name="trend-loop"
        ))
        if s.warm_up_on_startup and self.warm_up_codes:
            self.tasks.append(asyncio.create_task(self._warm_up(), name="cache-warm-up"))
        logger.info("services_started", cache_store=self.store.name, sources=len(self.sources))

    async def _warm_up(self) -> None:
        try:
            await self.router.warm_up(self.warm_up_codes)
        except Exception as e:
            logger.exception("warm_up_failed", error=str(e))

    async def stop(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
        await self.analytics.drain()
        await self.store.close()
        await self.http.aclose()
        await self.database.dispose()
        logger.info("services_stopped")


def build_services(settings: Settings, database: Database | None = None) -> Services:
    yaml_config = settings.load_yaml_config()
    http = httpx.AsyncClient(timeout=10.0)

    database = database or Database(settings.database_url)
    store = build_cache_store(settings.redis_url, settings.memory_cache_max_entries)
    sources = build_sources(yaml_config, http)
    content = StaticContentCatalog.from_yaml(yaml_config, default=settings.default_content_count)
    pipeline = ValidationPipeline(content, sources, min_content=settings.min_content_count)

    slack = None
    if settings.slack_webhook_url:
        emoji = yaml_config.get("slack", {}).get("severity_emoji", {})
        slack = SlackNotifier(settings.slack_webhook_url, http, emoji)
    monitor = PerformanceMonitor(notifier=slack, trend_retention_hours=settings.trend_retention_hours)
    analytics = AnalyticsSink(settings.analytics_url, http)

    router = RoutingCache(
        store,
        pipeline,
        monitor=monitor,
        analytics=analytics,
        ttl_seconds=settings.cache_ttl_seconds,
        batch_size=settings.route_batch_size,
        batch_pause_s=settings.route_batch_pause_s,
        fast_route_ms=settings.fast_route_ms,
        single_flight=settings.single_flight,
    )
    queue = OperationQueue(settings.queue_capacity, settings.queue_sub_batch, settings.queue_pause_s)
    orchestrator = CoverageOrchestrator(
        pipeline,
        database,
        queue,
        monitor=monitor,
        sources=sources,
        analytics=analytics,
        config=OrchestratorConfig(
            bulk_batch_size=settings.bulk_batch_size,
            bulk_batch_pause_s=settings.bulk_batch_pause_s,
            max_bulk_postal_codes=settings.max_bulk_postal_codes,
            max_bulk_cities=settings.max_bulk_cities,
            operation_timeout_s=settings.operation_timeout_s,
            improve_threshold=settings.coverage_improve_threshold,
            complete_threshold=settings.coverage_complete_threshold,
            cooldown_s=settings.coverage_cooldown_s,
            improve_pause_every=settings.improve_pause_every,
            improve_pause_s=settings.improve_pause_s,
        ),
    )

    return Services(
        settings=settings,
        http=http,
        database=database,
        store=store,
        sources=sources,
        pipeline=pipeline,
        monitor=monitor,
        analytics=analytics,
        router=router,
        queue=queue,
        orchestrator=orchestrator,
        warm_up_codes=[str(c) for c in yaml_config.get("warm_up", []) or []],
    )
