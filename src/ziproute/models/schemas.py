from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ziproute.errors import ErrorCode


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationOptions(BaseModel):
    validate_content_available: bool = False
    require_multiple_sources: bool = False
    min_content: int | None = None


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    postal_code: str
    is_valid: bool
    city_name: str | None = None
    city_slug: str | None = None
    county: str | None = None
    territory_name: str | None = None
    territory_id: str | None = None
    is_serviceable: bool = False
    content_count: int = 0
    confidence: int = 0
    source_id: str | None = None
    error_code: ErrorCode | None = None
    error_message: str | None = None
    processing_time_ms: float = 0.0


class MarketStatus(str, Enum):
    ACTIVE = "active"
    LIMITED = "limited"


class CachedRouting(BaseModel):
    postal_code: str
    redirect_url: str
    city_name: str
    city_slug: str
    content_count: int
    territory_name: str
    market_status: MarketStatus
    source: Literal["cache", "fresh"] = "fresh"
    cached_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class RoutingData(BaseModel):
    postal_code: str
    redirect_url: str
    city_name: str
    city_slug: str
    content_count: int
    territory_name: str
    market_status: MarketStatus
    source: Literal["cache", "fresh"]
    cached: bool


class RoutingErrorBody(BaseModel):
    code: ErrorCode
    message: str
    suggestions: list[str] = []
    recovery_actions: list[str] = []
    helpful_tips: list[str] = []


class RoutingResult(BaseModel):
    success: bool
    data: RoutingData | None = None
    error: RoutingErrorBody | None = None
    response_time_ms: float = 0.0
    cached: bool = False


class OperationType(str, Enum):
    VALIDATE = "validate"
    IMPROVE_COVERAGE = "improve_coverage"
    REFRESH_COVERAGE = "refresh_coverage"


class OperationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_id: str | None = None
    success: bool
    processed: int = 0
    errors: int = 0
    details: dict[str, Any] = {}
    processing_time_ms: float = 0.0
    summary: str = ""
    cancelled: bool = False


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3, Severity.CRITICAL: 4}


class AlertType(str, Enum):
    SLOW_RESPONSE = "slow_response"
    HIGH_ERROR_RATE = "high_error_rate"
    LOW_CACHE_HIT_RATE = "low_cache_hit_rate"


class PerformanceAlert(BaseModel):
    id: str
    key: str
    type: AlertType
    component: str
    severity: Severity
    message: str
    metrics: dict[str, float] = {}
    timestamp: datetime = Field(default_factory=utcnow)
    occurrences: int = 1
    resolved: bool = False
    resolved_at: datetime | None = None


class MonitorEvent(BaseModel):
    type: Literal["lookup", "validation", "bulk", "error"] = "lookup"
    component: str = "routing"
    postal_code: str | None = None
    response_time_ms: float | None = None
    error_code: ErrorCode | None = None
    cached: bool | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class TrendSnapshot(BaseModel):
    timestamp: datetime
    response_time_ms: float
    request_count: int
    error_rate: float
    cache_hit_rate: float


class SystemMetrics(BaseModel):
    total_requests: int = 0
    avg_response_time_ms: float = 0.0
    error_rate: float = 0.0
    success_rate: float = 100.0
    cache_hit_rate: float = 0.0
    active_alerts: int = 0


class Recommendation(BaseModel):
    priority: Severity
    category: str
    title: str
    detail: str
    current: float
    target: float


class RecommendationReport(BaseModel):
    recommendations: list[Recommendation]
    estimated_improvement_pct: float


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class OverallHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class HealthIssue(BaseModel):
    severity: Literal["critical", "high", "medium", "low"]
    component: str
    message: str
    recommendation: str


class SystemHealthCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: OverallHealth
    services: dict[str, HealthStatus]
    metrics: dict[str, float] = {}
    issues: list[HealthIssue] = []
    last_checked: datetime = Field(default_factory=utcnow)


class CoverageSummary(BaseModel):
    total_cities: int
    tracked_cities: int
    covered_cities: int
    fully_covered_cities: int
    total_postal_codes_mapped: int
    avg_coverage: float


class QualitySummary(BaseModel):
    avg_confidence: float
    data_freshness_hours: float | None = None
    cities_needing_attention: int = 0
    open_issues: int = 0
    critical_issues: int = 0


class PerformanceSummary(BaseModel):
    total_requests: int
    avg_response_time_ms: float
    error_rate: float
    throughput_per_hour: float


class SystemStatus(BaseModel):
    """Health, coverage, data quality and throughput in one report."""

    health: SystemHealthCheck
    coverage: CoverageSummary
    quality: QualitySummary
    performance: PerformanceSummary
    generated_at: datetime = Field(default_factory=utcnow)


class CodeCacheStat(BaseModel):
    postal_code: str
    count: int
    avg_response_time_ms: float


class CacheOverview(BaseModel):
    total_lookups: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    avg_hit_response_time_ms: float = 0.0
    avg_miss_response_time_ms: float = 0.0


class CacheAnalysis(BaseModel):
    overview: CacheOverview
    hot_postal_codes: list[CodeCacheStat] = []
    cold_postal_codes: list[CodeCacheStat] = []
    recommendations: list[str] = []


class PerformanceExport(BaseModel):
    export_id: str
    generated_at: datetime
    record_count: int
    system_health: SystemMetrics
    trends: list[TrendSnapshot]
    alerts: list[PerformanceAlert]
    cache_analysis: CacheAnalysis | None = None


# API payloads

class ValidateRequest(BaseModel):
    postal_code: str
    options: ValidationOptions = ValidationOptions()


class BulkOperationRequest(BaseModel):
    operation: OperationType
    data: dict[str, Any] = {}
    options: dict[str, Any] = {}
