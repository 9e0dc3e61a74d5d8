"""Performance monitoring for routing lookups.

Ingests one event per lookup, keeps rolling totals plus a sliding window of
recent events, raises keyed alerts when thresholds are breached, snapshots
trends on a timer and turns live metrics into ranked recommendations.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from ziproute.models.schemas import (
    AlertType,
    CacheAnalysis,
    MonitorEvent,
    PerformanceAlert,
    PerformanceExport,
    Recommendation,
    RecommendationReport,
    Severity,
    SystemMetrics,
    TrendSnapshot,
)
from ziproute.notify.slack import SlackNotifier

logger = structlog.get_logger()

SLOW_RESPONSE_MS = 1000.0
CRITICAL_RESPONSE_MS = 2000.0
HIGH_ERROR_RATE = 0.15
CRITICAL_ERROR_RATE = 0.30
LOW_CACHE_HIT_RATE = 0.60

TARGET_CACHE_HIT_PCT = 80.0
TARGET_RESPONSE_MS = 200.0
TARGET_SUCCESS_PCT = 98.0
HIGH_TRAFFIC_REQUESTS = 10000
MAX_IMPROVEMENT_PCT = 80.0


@dataclass
class _Counters:
    requests: int = 0
    errors: int = 0
    client_errors: int = 0
    response_ms: float = 0.0
    timed: int = 0
    cache_hits: int = 0
    cache_lookups: int = 0

    def add(self, event: MonitorEvent, is_error: bool) -> None:
        self.requests += 1
        if is_error:
            self.errors += 1
        elif event.error_code is not None:
            self.client_errors += 1
        if event.response_time_ms is not None:
            self.response_ms += event.response_time_ms
            self.timed += 1
        if event.cached is not None:
            self.cache_lookups += 1
            if event.cached:
                self.cache_hits += 1

    @property
    def avg_response_ms(self) -> float:
        return self.response_ms / self.timed if self.timed else 0.0

    @property
    def error_pct(self) -> float:
        return self.errors / self.requests * 100 if self.requests else 0.0

    @property
    def cache_hit_pct(self) -> float:
        return self.cache_hits / self.cache_lookups * 100 if self.cache_lookups else 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_system_error(event: MonitorEvent) -> bool:
    if event.type == "error":
        return True
    return event.error_code is not None and not event.error_code.is_client_error


class PerformanceMonitor:
    def __init__(
        self,
        notifier: SlackNotifier | None = None,
        window_size: int = 100,
        min_samples: int = 20,
        trend_retention_hours: int = 168,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.notifier = notifier
        self.min_samples = min_samples
        self.trend_retention = timedelta(hours=trend_retention_hours)
        self._clock = clock
        self.started_at = clock()
        self._totals = _Counters()
        self._interval = _Counters()
        self._window: deque[tuple[bool, bool | None]] = deque(maxlen=window_size)
        self._alerts: dict[str, PerformanceAlert] = {}
        self._active_by_key: dict[str, str] = {}
        self._trends: deque[TrendSnapshot] = deque()
        self._notify_tasks: set[asyncio.Task] = set()

    # -- ingestion ---------------------------------------------------------

    def record_event(self, event: MonitorEvent) -> list[PerformanceAlert]:
        """Ingest one event. Returns alerts raised or escalated by it."""
        is_error = _is_system_error(event)
        self._totals.add(event, is_error)
        self._interval.add(event, is_error)
        self._window.append((is_error, event.cached))

        raised = []
        if event.response_time_ms is not None and event.response_time_ms > SLOW_RESPONSE_MS:
            severity = Severity.CRITICAL if event.response_time_ms > CRITICAL_RESPONSE_MS else Severity.HIGH
            raised.append(self._raise(
                AlertType.SLOW_RESPONSE,
                event.component,
                severity,
                f"Response took {event.response_time_ms:.0f}ms (threshold {SLOW_RESPONSE_MS:.0f}ms)",
                {"response_time_ms": event.response_time_ms},
            ))

        if len(self._window) >= self.min_samples:
            raised.extend(self._check_window(event.component))

        return [a for a in raised if a is not None]

    def _check_window(self, component: str) -> list[PerformanceAlert | None]:
        raised = []
        samples = len(self._window)
        error_rate = sum(1 for is_error, _ in self._window if is_error) / samples
        if error_rate > HIGH_ERROR_RATE:
            severity = Severity.CRITICAL if error_rate > CRITICAL_ERROR_RATE else Severity.HIGH
            raised.append(self._raise(
                AlertType.HIGH_ERROR_RATE,
                component,
                severity,
                f"Error rate {error_rate:.0%} over the last {samples} requests",
                {"error_rate": round(error_rate * 100, 2), "samples": samples},
            ))

        lookups = [cached for _, cached in self._window if cached is not None]
        if len(lookups) >= self.min_samples:
            hit_rate = sum(1 for c in lookups if c) / len(lookups)
            if hit_rate < LOW_CACHE_HIT_RATE:
                raised.append(self._raise(
                    AlertType.LOW_CACHE_HIT_RATE,
                    component,
                    Severity.MEDIUM,
                    f"Cache hit rate {hit_rate:.0%} is below {LOW_CACHE_HIT_RATE:.0%}",
                    {"cache_hit_rate": round(hit_rate * 100, 2)},
                ))
        return raised

    # -- alerts ------------------------------------------------------------

    def _raise(
        self,
        alert_type: AlertType,
        component: str,
        severity: Severity,
        message: str,
        metrics: dict[str, float],
    ) -> PerformanceAlert | None:
        key = f"{alert_type.value}:{component}"
        now = self._clock()
        existing_id = self._active_by_key.get(key)

        if existing_id is not None:
            alert = self._alerts[existing_id]
            escalated = severity.rank > alert.severity.rank
            alert.occurrences += 1
            alert.timestamp = now
            alert.metrics = metrics
            if escalated:
                alert.severity = severity
                alert.message = message
                logger.warning("alert_escalated", alert_id=alert.id, key=key, severity=severity.value)
                self._maybe_notify(alert)
                return alert
            return None

        alert = PerformanceAlert(
            id=uuid.uuid4().hex[:12],
            key=key,
            type=alert_type,
            component=component,
            severity=severity,
            message=message,
            metrics=metrics,
            timestamp=now,
        )
        self._alerts[alert.id] = alert
        self._active_by_key[key] = alert.id
        logger.warning("alert_raised", alert_id=alert.id, key=key, severity=severity.value, message=message)
        self._maybe_notify(alert)
        return alert

    def _maybe_notify(self, alert: PerformanceAlert) -> None:
        if self.notifier is None or alert.severity is not Severity.CRITICAL:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.notifier.notify_alert(alert))
        except RuntimeError:
            logger.warning("alert_notify_skipped_no_loop", alert_id=alert.id)
            return
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    def get_active_alerts(self) -> list[PerformanceAlert]:
        active = [a for a in self._alerts.values() if not a.resolved]
        return sorted(active, key=lambda a: (a.severity.rank, a.timestamp), reverse=True)

    def get_alert(self, alert_id: str) -> PerformanceAlert | None:
        return self._alerts.get(alert_id)

    def resolve_alert(self, alert_id: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None or alert.resolved:
            return False
        alert.resolved = True
        alert.resolved_at = self._clock()
        if self._active_by_key.get(alert.key) == alert_id:
            del self._active_by_key[alert.key]
        logger.info("alert_resolved", alert_id=alert_id, key=alert.key)
        return True

    # -- metrics & trends --------------------------------------------------

    def get_system_health(self) -> SystemMetrics:
        t = self._totals
        return SystemMetrics(
            total_requests=t.requests,
            avg_response_time_ms=round(t.avg_response_ms, 2),
            error_rate=round(t.error_pct, 2),
            success_rate=round(100.0 - t.error_pct, 2),
            cache_hit_rate=round(t.cache_hit_pct, 2),
            active_alerts=len(self._active_by_key),
        )

    def capture_trend(self) -> TrendSnapshot:
        now = self._clock()
        i = self._interval
        snapshot = TrendSnapshot(
            timestamp=now,
            response_time_ms=round(i.avg_response_ms, 2),
            request_count=i.requests,
            error_rate=round(i.error_pct, 2),
            cache_hit_rate=round(i.cache_hit_pct, 2),
        )
        self._trends.append(snapshot)
        self._interval = _Counters()

        cutoff = now - self.trend_retention
        while self._trends and self._trends[0].timestamp < cutoff:
            self._trends.popleft()
        return snapshot

    def get_trends(self, hours: int = 24) -> list[TrendSnapshot]:
        cutoff = self._clock() - timedelta(hours=hours)
        return [s for s in self._trends if s.timestamp >= cutoff]

    async def run_trend_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            snapshot = self.capture_trend()
            logger.debug("trend_captured", requests=snapshot.request_count, error_rate=snapshot.error_rate)

    # -- recommendations ---------------------------------------------------

    def get_recommendations(self) -> RecommendationReport:
        m = self.get_system_health()
        recs: list[Recommendation] = []

        if m.total_requests:
            if m.cache_hit_rate < TARGET_CACHE_HIT_PCT:
                recs.append(Recommendation(
                    priority=Severity.HIGH if m.cache_hit_rate < 70 else Severity.MEDIUM,
                    category="caching",
                    title="Improve cache hit rate",
                    detail="Extend the warm-up list with frequently requested postal codes "
                           "and review the cache TTL.",
                    current=m.cache_hit_rate,
                    target=TARGET_CACHE_HIT_PCT,
                ))
            if m.avg_response_time_ms >= TARGET_RESPONSE_MS:
                recs.append(Recommendation(
                    priority=Severity.HIGH if m.avg_response_time_ms > 300 else Severity.MEDIUM,
                    category="performance",
                    title="Reduce average response time",
                    detail="Check external source latency and consider lowering source timeouts.",
                    current=m.avg_response_time_ms,
                    target=TARGET_RESPONSE_MS,
                ))
            if m.success_rate < TARGET_SUCCESS_PCT:
                recs.append(Recommendation(
                    priority=Severity.MEDIUM,
                    category="reliability",
                    title="Raise lookup success rate",
                    detail="Review recent upstream and persistence errors.",
                    current=m.success_rate,
                    target=TARGET_SUCCESS_PCT,
                ))
            if m.total_requests > HIGH_TRAFFIC_REQUESTS:
                recs.append(Recommendation(
                    priority=Severity.MEDIUM,
                    category="infrastructure",
                    title="Plan for traffic growth",
                    detail="Move the routing cache to Redis if it is still in memory.",
                    current=float(m.total_requests),
                    target=float(HIGH_TRAFFIC_REQUESTS),
                ))

        recs.sort(key=lambda r: r.priority.rank, reverse=True)
        high = sum(1 for r in recs if r.priority is Severity.HIGH)
        improvement = min(high * 25 + len(recs) * 10, MAX_IMPROVEMENT_PCT)
        return RecommendationReport(recommendations=recs, estimated_improvement_pct=float(improvement))

    # -- export ------------------------------------------------------------

    def throughput_per_hour(self) -> float:
        """Requests per hour since start, averaged over at least one hour."""
        hours = max((self._clock() - self.started_at).total_seconds() / 3600, 1.0)
        return round(self._totals.requests / hours, 2)

    def export_performance_data(
        self, cache_analysis: CacheAnalysis | None = None, hours: int = 168
    ) -> PerformanceExport:
        now = self._clock()
        trends = self.get_trends(hours)
        alerts = self.get_active_alerts()
        export = PerformanceExport(
            export_id=f"perf-export-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}",
            generated_at=now,
            record_count=len(trends) + len(alerts),
            system_health=self.get_system_health(),
            trends=trends,
            alerts=alerts,
            cache_analysis=cache_analysis,
        )
        logger.info("performance_exported", export_id=export.export_id, records=export.record_count)
        return export
