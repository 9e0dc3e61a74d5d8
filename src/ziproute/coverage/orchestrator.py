"""Bulk validation, coverage improvement and system health aggregation.

Sits above the routing cache for administrative work. Bulk operations
tolerate partial failure: success is an error-rate threshold, not zero
errors. Long scans check a cancellation event and an optional deadline at
every batch boundary.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ziproute.coverage.queue import OperationQueue, QueuedTask
from ziproute.errors import BulkPayloadError, ErrorCode, PersistenceError
from ziproute.models.db import CityCoverage
from ziproute.models.schemas import (
    CoverageSummary,
    HealthIssue,
    HealthStatus,
    MonitorEvent,
    OperationResult,
    OperationType,
    OverallHealth,
    PerformanceSummary,
    QualitySummary,
    Severity,
    SystemHealthCheck,
    SystemMetrics,
    SystemStatus,
    ValidationOptions,
    ValidationResult,
)
from ziproute.monitoring.monitor import PerformanceMonitor
from ziproute.notify.analytics import AnalyticsSink
from ziproute.pipeline.validator import ValidationPipeline
from ziproute.sources.breaker import BreakerState
from ziproute.sources.client import VerificationSource
from ziproute.storage import repository
from ziproute.storage.database import Database
from ziproute.territory import reference

logger = structlog.get_logger()

BULK_SUCCESS_ERROR_RATE = 0.10
MULTI_CITY_SUCCESS_ERROR_RATE = 0.20
MAX_BATCH_SIZE = 50
SCAN_SPAN = 50
SMOKE_TEST_POSTAL_CODE = "75201"
SLOW_DATABASE_MS = 1000.0
SLOW_API_MS = 3000.0
LOW_CONFIDENCE = 70.0
HIGH_ERROR_RATE_PCT = 10.0
HEALTH_SUBCHECK_TIMEOUT_S = 10.0

_ISSUE_RANK = {"critical": 4, "high": 3, "medium": 2, "low": 1}


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass
class OrchestratorConfig:
    bulk_batch_size: int = 25
    bulk_batch_pause_s: float = 1.0
    max_bulk_postal_codes: int = 500
    max_bulk_cities: int = 50
    operation_timeout_s: float = 600.0
    improve_threshold: float = 90.0
    complete_threshold: float = 95.0
    cooldown_s: float = 3600.0
    improve_pause_every: int = 10
    improve_pause_s: float = 0.5


def aggregate_overall(services: dict[str, HealthStatus]) -> OverallHealth:
    """healthy iff every service is healthy; degraded iff at least 75% are."""
    if not services:
        return OverallHealth.HEALTHY
    healthy = sum(1 for s in services.values() if s is HealthStatus.HEALTHY)
    if healthy == len(services):
        return OverallHealth.HEALTHY
    if healthy / len(services) >= 0.75:
        return OverallHealth.DEGRADED
    return OverallHealth.CRITICAL


def build_issues(services: dict[str, HealthStatus], metrics: dict[str, float]) -> list[HealthIssue]:
    issues = []
    for name, status in services.items():
        if status is HealthStatus.DOWN:
            issues.append(HealthIssue(
                severity="critical",
                component=name,
                message=f"{name} is down",
                recommendation=f"Restore {name} connectivity immediately",
            ))
        elif status is HealthStatus.DEGRADED:
            issues.append(HealthIssue(
                severity="high",
                component=name,
                message=f"{name} is degraded",
                recommendation=f"Investigate {name} latency and recent errors",
            ))

    if metrics.get("error_rate", 0.0) > HIGH_ERROR_RATE_PCT:
        issues.append(HealthIssue(
            severity="high",
            component="routing",
            message=f"Error rate is {metrics['error_rate']:.1f}%",
            recommendation="Check external source connectivity and data quality",
        ))
    if metrics.get("total_mappings", 0) and metrics.get("avg_confidence", 100.0) < LOW_CONFIDENCE:
        issues.append(HealthIssue(
            severity="medium",
            component="coverage",
            message=f"Average mapping confidence is {metrics['avg_confidence']:.0f}",
            recommendation="Re-run coverage improvement with multiple sources enabled",
        ))
    if metrics.get("avg_response_time_ms", 0.0) > SLOW_API_MS:
        issues.append(HealthIssue(
            severity="medium",
            component="routing",
            message=f"Average response time is {metrics['avg_response_time_ms']:.0f}ms",
            recommendation="Warm the cache and review external source timeouts",
        ))
    return sorted(issues, key=lambda i: _ISSUE_RANK[i.severity], reverse=True)


class CoverageOrchestrator:
    def __init__(
        self,
        pipeline: ValidationPipeline,
        database: Database,
        queue: OperationQueue,
        monitor: PerformanceMonitor | None = None,
        sources: list[VerificationSource] | None = None,
        analytics: AnalyticsSink | None = None,
        config: OrchestratorConfig | None = None,
    ):
        self.pipeline = pipeline
        self.db = database
        self.queue = queue
        self.monitor = monitor
        self.sources = list(sources or [])
        self.analytics = analytics
        self.config = config or OrchestratorConfig()
        self.latest_health: SystemHealthCheck | None = None
        self._operations: dict[str, asyncio.Event] = {}

    # -- single validation -------------------------------------------------

    async def validate_one(
        self,
        postal_code: str,
        update_coverage: bool = False,
        track_analytics: bool = False,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        result = await self._validate(postal_code, track_analytics, options)
        if update_coverage and result.is_valid and result.city_slug:
            try:
                await self._update_coverage([result])
            except PersistenceError as e:
                logger.error("coverage_update_failed", postal_code=result.postal_code, error=str(e))
        return result

    async def _validate(
        self,
        postal_code: str,
        track_analytics: bool = False,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        result = await self.pipeline.validate(postal_code, options)

        if self.monitor is not None:
            self.monitor.record_event(MonitorEvent(
                type="validation",
                component="coverage",
                postal_code=result.postal_code,
                response_time_ms=result.processing_time_ms,
                error_code=result.error_code,
            ))
        if track_analytics and self.analytics is not None:
            self.analytics.track(
                "zip_validation",
                postal_code=result.postal_code,
                is_valid=result.is_valid,
                city_slug=result.city_slug,
                error_code=result.error_code.value if result.error_code else None,
            )
        return result

    async def _update_coverage(self, results: list[ValidationResult]) -> int:
        """Persist valid results in one commit, then queue improvement for under-covered cities.

        Raises PersistenceError if the write fails. Returns the number of new mappings.
        """
        slugs = sorted({r.city_slug for r in results if r.is_valid and r.city_slug})
        if not slugs:
            return 0
        try:
            async with self.db.session() as session:
                created = await repository.record_zip_mappings(session, results)
                coverages = [await repository.get_city_coverage(session, slug) for slug in slugs]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not record mappings for {', '.join(slugs)}") from e

        for coverage in coverages:
            if coverage is not None:
                self._queue_improvement(coverage)
        return created

    def _queue_improvement(self, coverage: CityCoverage) -> None:
        slug = coverage.city_slug
        if coverage.coverage_percentage >= self.config.improve_threshold:
            return
        if coverage.last_improved_at is not None:
            last = coverage.last_improved_at
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            if datetime.now(timezone.utc) - last < timedelta(seconds=self.config.cooldown_s):
                return

        queued = self.queue.offer(QueuedTask(
            name="improve_coverage",
            run=lambda: self.improve_coverage(slug),
            key=f"improve:{slug}",
        ))
        if queued:
            logger.info("coverage_improvement_queued", city_slug=slug, coverage=coverage.coverage_percentage)

    # -- bulk --------------------------------------------------------------

    async def validate_bulk(
        self,
        postal_codes: list[str],
        batch_size: int | None = None,
        improve_coverage: bool = False,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> OperationResult:
        start = time.perf_counter()
        batch_size = max(1, batch_size or self.config.bulk_batch_size)
        total = len(postal_codes)
        processed = errors = new_mappings = persist_failures = 0
        error_codes: dict[str, int] = {}
        cities: set[str] = set()
        cancelled = False

        for i in range(0, total, batch_size):
            if i:
                await _pause(self.config.bulk_batch_pause_s)
            if _should_stop(cancel, deadline):
                cancelled = True
                break
            batch = postal_codes[i:i + batch_size]
            results = await asyncio.gather(*(self._validate(c) for c in batch))
            for r in results:
                if r.is_valid:
                    processed += 1
                    cities.add(r.city_slug)
                else:
                    errors += 1
                    key = (r.error_code or ErrorCode.INTERNAL_ERROR).value
                    error_codes[key] = error_codes.get(key, 0) + 1

            if improve_coverage:
                try:
                    new_mappings += await self._update_coverage(results)
                except PersistenceError as e:
                    persist_failures += 1
                    logger.error("bulk_coverage_update_failed", batch_start=i, batch_size=len(batch), error=str(e))

        error_rate = errors / total if total else 0.0
        success = not cancelled and persist_failures == 0 and error_rate < BULK_SUCCESS_ERROR_RATE
        summary = f"Validated {processed + errors}/{total} postal codes: {processed} valid, {errors} invalid"
        if persist_failures:
            summary += f"; {persist_failures} batches not saved"
        if cancelled:
            summary += " (cancelled)"
        logger.info(
            "bulk_validate_done",
            total=total,
            processed=processed,
            errors=errors,
            persist_failures=persist_failures,
            cancelled=cancelled,
        )
        details: dict[str, Any] = {
            "total": total,
            "valid": processed,
            "invalid": errors,
            "error_rate": round(error_rate * 100, 2),
            "cities": len(cities),
            "error_codes": error_codes,
        }
        if improve_coverage:
            details["new_mappings"] = new_mappings
            details["persist_failures"] = persist_failures
        return OperationResult(
            success=success,
            processed=processed,
            errors=errors,
            details=details,
            processing_time_ms=_elapsed_ms(start),
            summary=summary,
            cancelled=cancelled,
        )

    # -- coverage ----------------------------------------------------------

    async def improve_coverage(
        self,
        city_slug: str,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> OperationResult:
        start = time.perf_counter()
        city = reference.city_by_slug(city_slug)
        if city is None:
            return OperationResult(
                success=False,
                errors=1,
                details={"city_slug": city_slug},
                processing_time_ms=_elapsed_ms(start),
                summary=f"Unknown city {city_slug}",
            )

        try:
            async with self.db.session() as session:
                before = (await repository.refresh_city_coverage(session, city_slug)).coverage_percentage
                if before >= self.config.complete_threshold:
                    return OperationResult(
                        success=True,
                        details={"city_slug": city_slug, "coverage_before": before, "coverage_after": before},
                        processing_time_ms=_elapsed_ms(start),
                        summary=f"{city.name} coverage already at {before:.1f}%",
                    )
                mapped = await repository.get_mapped_codes(session, city_slug)
        except SQLAlchemyError as e:
            logger.error("improve_coverage_read_failed", city_slug=city_slug, error=str(e))
            return _persistence_failure(city_slug, start)

        candidates = [c for c in candidate_postal_codes(city.anchor) if c not in mapped]
        confirmed: list[ValidationResult] = []
        other_city = invalid = failures = 0
        cancelled = False
        options = ValidationOptions(require_multiple_sources=True)

        for i, code in enumerate(candidates):
            if _should_stop(cancel, deadline):
                cancelled = True
                break
            if i and i % self.config.improve_pause_every == 0:
                await _pause(self.config.improve_pause_s)
            r = await self.pipeline.validate(code, options)
            if r.is_valid and r.city_slug == city_slug:
                confirmed.append(r)
            elif r.is_valid:
                other_city += 1
            elif r.error_code is not None and not r.error_code.is_client_error:
                failures += 1
            else:
                invalid += 1

        try:
            async with self.db.session() as session:
                new_mappings = await repository.record_zip_mappings(session, confirmed, mark_improved=True)
                if not confirmed:
                    await repository.mark_improved(session, city_slug)
                after = (await repository.refresh_city_coverage(session, city_slug)).coverage_percentage
        except SQLAlchemyError as e:
            logger.error("improve_coverage_write_failed", city_slug=city_slug, error=str(e))
            return _persistence_failure(city_slug, start)

        logger.info(
            "coverage_improved",
            city_slug=city_slug,
            candidates=len(candidates),
            confirmed=len(confirmed),
            coverage_before=before,
            coverage_after=after,
        )
        return OperationResult(
            success=not cancelled and failures == 0,
            processed=len(confirmed),
            errors=failures,
            details={
                "city_slug": city_slug,
                "candidates": len(candidates),
                "confirmed": len(confirmed),
                "new_mappings": new_mappings,
                "other_city": other_city,
                "invalid": invalid,
                "coverage_before": before,
                "coverage_after": after,
            },
            processing_time_ms=_elapsed_ms(start),
            summary=f"{city.name}: confirmed {len(confirmed)} of {len(candidates)} candidates, "
                    f"coverage {before:.1f}% -> {after:.1f}%",
            cancelled=cancelled,
        )

    async def refresh_coverage(
        self,
        city_slugs: list[str] | None = None,
        max_cities: int = 100,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> OperationResult:
        """Recompute stored coverage for the given cities, or for every city below threshold."""
        start = time.perf_counter()
        refreshed: dict[str, float] = {}
        errors = 0
        cancelled = False
        try:
            async with self.db.session() as session:
                if city_slugs is None:
                    rows = await repository.get_cities_needing_attention(
                        session, self.config.improve_threshold, limit=max_cities
                    )
                    city_slugs = [r.city_slug for r in rows]
                for slug in city_slugs[:max_cities]:
                    if _should_stop(cancel, deadline):
                        cancelled = True
                        break
                    if reference.city_by_slug(slug) is None:
                        errors += 1
                        continue
                    coverage = await repository.refresh_city_coverage(session, slug)
                    refreshed[slug] = coverage.coverage_percentage
        except SQLAlchemyError as e:
            logger.error("refresh_coverage_failed", error=str(e))
            return _persistence_failure(None, start)

        return OperationResult(
            success=not cancelled and errors == 0,
            processed=len(refreshed),
            errors=errors,
            details={"coverage": refreshed},
            processing_time_ms=_elapsed_ms(start),
            summary=f"Refreshed coverage for {len(refreshed)} cities",
            cancelled=cancelled,
        )

    # -- operations --------------------------------------------------------

    async def execute(
        self,
        operation: str | OperationType,
        data: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Run one administrative operation. Raises BulkPayloadError for bad payloads."""
        options = options or {}
        try:
            op = OperationType(operation)
        except ValueError:
            raise BulkPayloadError(f"Unknown operation: {operation}")

        run = self._plan(op, data or {}, options)
        operation_id = uuid.uuid4().hex[:12]
        cancel = asyncio.Event()
        timeout_s = _numeric_option(options, "timeout_s", self.config.operation_timeout_s, float)
        deadline = time.monotonic() + timeout_s
        self._operations[operation_id] = cancel
        logger.info("operation_started", operation_id=operation_id, operation=op.value)
        try:
            result = await run(cancel, deadline)
        finally:
            self._operations.pop(operation_id, None)
        logger.info(
            "operation_finished",
            operation_id=operation_id,
            operation=op.value,
            success=result.success,
            processed=result.processed,
            errors=result.errors,
        )
        return result.model_copy(update={"operation_id": operation_id})

    def _plan(
        self, op: OperationType, data: dict[str, Any], options: dict[str, Any]
    ) -> Callable[[asyncio.Event, float], Awaitable[OperationResult]]:
        if op is OperationType.VALIDATE:
            codes = data.get("postal_codes")
            if not isinstance(codes, list) or not codes:
                raise BulkPayloadError("postal_codes must be a non-empty list")
            if len(codes) > self.config.max_bulk_postal_codes:
                raise BulkPayloadError(
                    f"At most {self.config.max_bulk_postal_codes} postal codes per request"
                )
            batch_size = _numeric_option(options, "batch_size", self.config.bulk_batch_size, int)
            batch_size = min(batch_size, MAX_BATCH_SIZE)
            improve = bool(options.get("improve_coverage", False))
            return lambda cancel, deadline: self.validate_bulk(
                codes, batch_size=batch_size, improve_coverage=improve, cancel=cancel, deadline=deadline
            )

        slugs = data.get("city_slugs")
        if slugs is not None and not isinstance(slugs, list):
            raise BulkPayloadError("city_slugs must be a list")
        if slugs is not None and len(slugs) > self.config.max_bulk_cities:
            raise BulkPayloadError(f"At most {self.config.max_bulk_cities} cities per request")

        if op is OperationType.IMPROVE_COVERAGE:
            if not slugs:
                raise BulkPayloadError("city_slugs must be a non-empty list")
            return lambda cancel, deadline: self._improve_many(slugs, cancel, deadline)

        return lambda cancel, deadline: self.refresh_coverage(
            slugs, max_cities=self.config.max_bulk_cities, cancel=cancel, deadline=deadline
        )

    async def _improve_many(self, slugs: list[str], cancel: asyncio.Event, deadline: float) -> OperationResult:
        start = time.perf_counter()
        per_city: dict[str, dict] = {}
        processed = errors = 0
        cancelled = False
        for slug in slugs:
            if _should_stop(cancel, deadline):
                cancelled = True
                break
            r = await self.improve_coverage(slug, cancel=cancel, deadline=deadline)
            per_city[slug] = {"success": r.success, "summary": r.summary, **r.details}
            if r.success:
                processed += 1
            else:
                errors += 1
            cancelled = cancelled or r.cancelled

        error_rate = errors / len(slugs) if slugs else 0.0
        return OperationResult(
            success=not cancelled and error_rate < MULTI_CITY_SUCCESS_ERROR_RATE,
            processed=processed,
            errors=errors,
            details={"cities": per_city},
            processing_time_ms=_elapsed_ms(start),
            summary=f"Improved coverage for {processed}/{len(slugs)} cities",
            cancelled=cancelled,
        )

    def cancel_operation(self, operation_id: str) -> bool:
        cancel = self._operations.get(operation_id)
        if cancel is None:
            return False
        cancel.set()
        logger.info("operation_cancel_requested", operation_id=operation_id)
        return True

    def running_operations(self) -> list[str]:
        return list(self._operations)

    # -- health ------------------------------------------------------------

    async def health_check(self) -> SystemHealthCheck:
        checks = {
            "database": self._check_database,
            "external_sources": self._check_sources,
            "validation_pipeline": self._check_pipeline,
            "performance_monitor": self._check_monitor,
        }
        outcomes = await asyncio.gather(
            *(asyncio.wait_for(check(), HEALTH_SUBCHECK_TIMEOUT_S) for check in checks.values()),
            return_exceptions=True,
        )
        services: dict[str, HealthStatus] = {}
        for name, outcome in zip(checks, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("health_subcheck_failed", service=name, error=repr(outcome))
                services[name] = HealthStatus.DOWN
            else:
                services[name] = outcome

        metrics = await self._health_metrics(services)
        check = SystemHealthCheck(
            overall=aggregate_overall(services),
            services=services,
            metrics=metrics,
            issues=build_issues(services, metrics),
        )
        self.latest_health = check
        logger.info("health_checked", overall=check.overall.value, issues=len(check.issues))
        return check

    async def _check_database(self) -> HealthStatus:
        start = time.perf_counter()
        await self.db.ping()
        return HealthStatus.DEGRADED if _elapsed_ms(start) > SLOW_DATABASE_MS else HealthStatus.HEALTHY

    async def _check_sources(self) -> HealthStatus:
        if not self.sources:
            return HealthStatus.HEALTHY
        reachable = await asyncio.gather(*(s.ping() for s in self.sources))
        up = sum(
            1 for s, ok in zip(self.sources, reachable) if ok and s.breaker.state is not BreakerState.OPEN
        )
        if up == len(self.sources):
            return HealthStatus.HEALTHY
        return HealthStatus.DEGRADED if up else HealthStatus.DOWN

    async def _check_pipeline(self) -> HealthStatus:
        result = await self.pipeline.validate(SMOKE_TEST_POSTAL_CODE)
        if result.error_code is ErrorCode.INTERNAL_ERROR:
            return HealthStatus.DOWN
        return HealthStatus.HEALTHY if result.is_valid else HealthStatus.DEGRADED

    async def _check_monitor(self) -> HealthStatus:
        if self.monitor is None:
            return HealthStatus.DEGRADED
        self.monitor.get_system_health()
        critical = [a for a in self.monitor.get_active_alerts() if a.severity is Severity.CRITICAL]
        return HealthStatus.DEGRADED if critical else HealthStatus.HEALTHY

    async def _health_metrics(self, services: dict[str, HealthStatus]) -> dict[str, float]:
        metrics: dict[str, float] = {}
        if self.monitor is not None:
            m = self.monitor.get_system_health()
            metrics.update({
                "total_requests": float(m.total_requests),
                "error_rate": m.error_rate,
                "avg_response_time_ms": m.avg_response_time_ms,
                "cache_hit_rate": m.cache_hit_rate,
                "active_alerts": float(m.active_alerts),
            })
        if services.get("database") is not HealthStatus.DOWN:
            try:
                async with self.db.session() as session:
                    stats = await repository.get_mapping_stats(session)
                metrics["total_mappings"] = float(stats["total_mappings"])
                metrics["avg_confidence"] = round(stats["avg_confidence"], 2)
            except SQLAlchemyError as e:
                logger.warning("health_mapping_stats_failed", error=str(e))
        metrics["queued_operations"] = float(len(self.queue))
        return metrics

    async def system_status(self, refresh: bool = False) -> SystemStatus:
        """Combine health with coverage totals, data quality and throughput.

        Reuses the latest health check unless ``refresh`` is set or none has run.
        Raises PersistenceError if the coverage tables cannot be read.
        """
        health = self.latest_health
        if refresh or health is None:
            health = await self.health_check()

        try:
            async with self.db.session() as session:
                summary = await repository.get_coverage_summary(
                    session, self.config.improve_threshold, self.config.complete_threshold
                )
                stats = await repository.get_mapping_stats(session)
                freshness = await repository.get_data_freshness_hours(session)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read coverage status") from e

        m = self.monitor.get_system_health() if self.monitor is not None else SystemMetrics()
        return SystemStatus(
            health=health,
            coverage=CoverageSummary(
                total_cities=len(reference.CITIES),
                tracked_cities=summary["tracked_cities"],
                covered_cities=summary["covered_cities"],
                fully_covered_cities=summary["fully_covered_cities"],
                total_postal_codes_mapped=stats["total_mappings"],
                avg_coverage=summary["avg_coverage"],
            ),
            quality=QualitySummary(
                avg_confidence=round(stats["avg_confidence"], 2),
                data_freshness_hours=freshness,
                cities_needing_attention=summary["needing_attention"],
                open_issues=len(health.issues),
                critical_issues=sum(1 for i in health.issues if i.severity == "critical"),
            ),
            performance=PerformanceSummary(
                total_requests=m.total_requests,
                avg_response_time_ms=m.avg_response_time_ms,
                error_rate=m.error_rate,
                throughput_per_hour=self.monitor.throughput_per_hour() if self.monitor is not None else 0.0,
            ),
        )

    async def run_health_loop(self, interval_s: float) -> None:
        while True:
            try:
                await self.health_check()
            except Exception as e:
                logger.exception("health_loop_error", error=str(e))
            await asyncio.sleep(interval_s)


def candidate_postal_codes(anchor: str) -> list[str]:
    """Codes in ``[anchor, anchor+50]`` then ``[max(anchor-50, floor), anchor-1]``."""
    n = int(anchor)
    upper = range(n, min(n + SCAN_SPAN, 99999) + 1)
    lower = range(max(n - SCAN_SPAN, reference.SCAN_FLOOR), n)
    return [f"{c:05d}" for c in (*upper, *lower)]


def _numeric_option(options: dict[str, Any], name: str, default: float, cast: Callable[[Any], Any]) -> Any:
    value = options.get(name, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise BulkPayloadError(f"{name} must be a number, got {value!r}")


def _should_stop(cancel: asyncio.Event | None, deadline: float | None) -> bool:
    if cancel is not None and cancel.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


def _persistence_failure(city_slug: str | None, start: float) -> OperationResult:
    return OperationResult(
        success=False,
        errors=1,
        details={"city_slug": city_slug, "error_code": ErrorCode.PERSISTENCE_ERROR.value},
        processing_time_ms=_elapsed_ms(start),
        summary=ErrorCode.PERSISTENCE_ERROR.message,
    )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
