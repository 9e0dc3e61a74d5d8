"""HTTP client for external territory verification sources.

Each source answers ``GET {base_url}/territory/{postal_code}`` with a JSON body
``{city, county, territory: {id, name}, deregulated, confidence}``.

Transient failures (connection errors, 5xx, 429) are retried with exponential
backoff and +/-25% jitter. 429 honours ``Retry-After``. Other 4xx fail at once.
Every source sits behind its own circuit breaker and rate limiter.
"""
from __future__ import annotations

import asyncio
import random

import httpx
import structlog
from pydantic import BaseModel

from ziproute.errors import ErrorCode, SourceError
from ziproute.sources.breaker import CircuitBreaker, RateLimiter

logger = structlog.get_logger()


class SourceConfig(BaseModel):
    id: str
    base_url: str
    timeout_s: float = 5.0
    max_retries: int = 2
    base_delay_s: float = 0.25
    max_delay_s: float = 4.0
    failure_threshold: int = 5
    recovery_timeout_s: float = 60.0
    requests_per_second: float = 10.0
    api_key: str = ""
    enabled: bool = True


class SourceVerdict(BaseModel):
    source_id: str
    city_name: str | None = None
    county: str | None = None
    territory_id: str | None = None
    territory_name: str | None = None
    deregulated: bool | None = None
    confidence: int = 0

    @property
    def has_territory(self) -> bool:
        return bool(self.territory_id or self.territory_name)


def _parse_verdict(source_id: str, payload: dict) -> SourceVerdict:
    territory = payload.get("territory") or {}
    if isinstance(territory, str):
        territory = {"name": territory}
    return SourceVerdict(
        source_id=source_id,
        city_name=payload.get("city"),
        county=payload.get("county"),
        territory_id=territory.get("id"),
        territory_name=territory.get("name"),
        deregulated=payload.get("deregulated"),
        confidence=int(payload.get("confidence", 80)),
    )


class VerificationSource:
    def __init__(self, config: SourceConfig, http: httpx.AsyncClient):
        self.config = config
        self.id = config.id
        self._http = http
        self.breaker = CircuitBreaker(
            config.id,
            failure_threshold=config.failure_threshold,
            recovery_timeout_s=config.recovery_timeout_s,
        )
        self.limiter = RateLimiter(config.requests_per_second)

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.config.api_key} if self.config.api_key else {}

    async def verify(self, postal_code: str) -> SourceVerdict:
        """Look up one postal code. Raises SourceError when no answer is available."""
        if not self.breaker.allow():
            raise SourceError(self.id, "circuit open", code=ErrorCode.UPSTREAM_ERROR)

        url = f"{self.config.base_url.rstrip('/')}/territory/{postal_code}"
        for attempt in range(self.config.max_retries + 1):
            await self.limiter.acquire()
            try:
                resp = await self._http.get(url, headers=self._headers(), timeout=self.config.timeout_s)
            except httpx.TimeoutException:
                if await self._retry_or_fail(attempt, "timeout", ErrorCode.TIMEOUT):
                    continue
            except httpx.TransportError as e:
                if await self._retry_or_fail(attempt, str(e), ErrorCode.UPSTREAM_ERROR):
                    continue
            else:
                if resp.status_code == 200:
                    self.breaker.record_success()
                    try:
                        return _parse_verdict(self.id, resp.json())
                    except (ValueError, TypeError, AttributeError) as e:
                        raise SourceError(self.id, f"malformed response: {e}") from e
                if resp.status_code == 404:
                    self.breaker.record_success()
                    raise SourceError(self.id, "postal code unknown to source", code=ErrorCode.NOT_FOUND)
                if resp.status_code == 429:
                    if await self._retry_or_fail(
                        attempt, "rate limited", ErrorCode.RATE_LIMITED, _retry_after(resp)
                    ):
                        continue
                if resp.status_code >= 500:
                    if await self._retry_or_fail(attempt, f"status {resp.status_code}", ErrorCode.UPSTREAM_ERROR):
                        continue
                raise SourceError(self.id, f"unexpected status {resp.status_code}")

        raise SourceError(self.id, "retries exhausted")

    async def _retry_or_fail(
        self, attempt: int, reason: str, code: ErrorCode, delay: float | None = None
    ) -> bool:
        """Sleep before the next attempt, or record the failure and raise."""
        if attempt >= self.config.max_retries:
            self.breaker.record_failure()
            logger.warning("source_failed", source=self.id, reason=reason, attempts=attempt + 1)
            raise SourceError(self.id, reason, code=code)
        if delay is None:
            delay = min(self.config.base_delay_s * (2 ** attempt), self.config.max_delay_s)
            delay *= random.uniform(0.75, 1.25)
        logger.info("source_retry", source=self.id, reason=reason, attempt=attempt + 1, delay_s=round(delay, 3))
        await asyncio.sleep(delay)
        return True

    async def ping(self) -> bool:
        try:
            resp = await self._http.get(
                f"{self.config.base_url.rstrip('/')}/health",
                headers=self._headers(),
                timeout=self.config.timeout_s,
            )
        except httpx.HTTPError as e:
            logger.warning("source_ping_failed", source=self.id, error=str(e))
            return False
        return resp.status_code < 500


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def build_sources(yaml_config: dict, http: httpx.AsyncClient) -> list[VerificationSource]:
    sources = []
    for raw in yaml_config.get("sources", []) or []:
        config = SourceConfig(**raw)
        if config.enabled:
            sources.append(VerificationSource(config, http))
    return sources
