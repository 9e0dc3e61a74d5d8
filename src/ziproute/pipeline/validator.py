from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from ziproute.errors import ErrorCode, SourceError
from ziproute.models.schemas import ValidationOptions, ValidationResult
from ziproute.sources.client import SourceVerdict, VerificationSource
from ziproute.territory import reference

logger = structlog.get_logger()

REFERENCE_SOURCE_ID = "reference"
REFERENCE_CONFIDENCE = 90
FALLBACK_CONFIDENCE = 60


class ContentCatalog(Protocol):
    async def count_for(self, city_slug: str) -> int: ...


@dataclass
class _Resolution:
    city_name: str
    city_slug: str
    county: str | None
    territory_id: str | None
    territory_name: str | None
    deregulated: bool
    confidence: int
    source_id: str


def check_format(value: Any) -> tuple[str, ErrorCode | None]:
    """Normalise a raw postal code and return the first format error, if any."""
    if not isinstance(value, str):
        return ("" if value is None else str(value)), ErrorCode.INVALID_FORMAT
    code = value.strip()
    if not code:
        return code, ErrorCode.INVALID_FORMAT
    head, sep, tail = code.partition("-")
    if sep and head.isdigit() and tail.isdigit():
        # ZIP+4 is a real format, just not one we route on
        return code, ErrorCode.INVALID_FORMAT
    if not code.isdigit() or not code.isascii():
        return code, ErrorCode.INVALID_CHARACTERS
    if len(code) != 5:
        return code, ErrorCode.INVALID_LENGTH
    return code, None


class ValidationPipeline:
    """Format, territory, serviceability and content checks for one postal code.

    Each stage short-circuits with a specific error code. Expected failures are
    returned as an invalid ``ValidationResult``; nothing is raised to callers.
    """

    def __init__(
        self,
        content: ContentCatalog,
        sources: list[VerificationSource] | None = None,
        min_content: int = 5,
    ):
        self.content = content
        self.sources = list(sources or [])
        self.min_content = min_content

    async def validate(self, postal_code: Any, options: ValidationOptions | None = None) -> ValidationResult:
        options = options or ValidationOptions()
        start = time.perf_counter()
        code, _ = check_format(postal_code)
        try:
            return await self._run(postal_code, options, start)
        except Exception:
            logger.exception("validation_internal_error", postal_code=code)
            return _failure(code, ErrorCode.INTERNAL_ERROR, start)

    async def _run(self, raw: Any, options: ValidationOptions, start: float) -> ValidationResult:
        code, error = check_format(raw)
        if error is not None:
            return _failure(code, error, start)

        if not reference.in_region(code):
            return _failure(code, ErrorCode.NOT_IN_REGION, start)

        if options.require_multiple_sources:
            resolution = await self._resolve_from_sources(code)
        else:
            resolution = _resolve_from_reference(code, REFERENCE_CONFIDENCE)
        if resolution is None:
            return _failure(code, ErrorCode.NOT_FOUND, start)

        if not resolution.deregulated:
            return _failure(code, ErrorCode.NOT_SERVICEABLE, start, resolution)

        count = await self.content.count_for(resolution.city_slug)
        if options.validate_content_available:
            minimum = options.min_content if options.min_content is not None else self.min_content
            if count <= 0:
                return _failure(code, ErrorCode.NO_CONTENT, start, resolution, count)
            if count < minimum:
                return _failure(code, ErrorCode.INSUFFICIENT_CONTENT, start, resolution, count)

        return ValidationResult(
            postal_code=code,
            is_valid=True,
            city_name=resolution.city_name,
            city_slug=resolution.city_slug,
            county=resolution.county,
            territory_name=resolution.territory_name,
            territory_id=resolution.territory_id,
            is_serviceable=True,
            content_count=count,
            confidence=resolution.confidence,
            source_id=resolution.source_id,
            processing_time_ms=_elapsed_ms(start),
        )

    async def _resolve_from_sources(self, code: str) -> _Resolution | None:
        outcomes = await asyncio.gather(
            *(source.verify(code) for source in self.sources), return_exceptions=True
        )
        verdicts: list[SourceVerdict] = []
        for source, outcome in zip(self.sources, outcomes):
            if isinstance(outcome, SourceError):
                logger.info("source_no_answer", source=source.id, postal_code=code, reason=outcome.message)
            elif isinstance(outcome, BaseException):
                logger.error("source_unexpected_error", source=source.id, postal_code=code, error=repr(outcome))
            else:
                verdicts.append(outcome)

        if not verdicts:
            logger.warning("sources_unavailable_fallback", postal_code=code)
            return _resolve_from_reference(code, FALLBACK_CONFIDENCE)
        return _combine(code, verdicts)


def _resolve_from_reference(code: str, confidence: int) -> _Resolution | None:
    match = reference.lookup(code)
    if match is None:
        return None
    return _Resolution(
        city_name=match.city.name,
        city_slug=match.city.slug,
        county=match.city.county,
        territory_id=match.territory.id,
        territory_name=match.territory.name,
        deregulated=match.territory.deregulated,
        confidence=confidence,
        source_id=REFERENCE_SOURCE_ID,
    )


def _combine(code: str, verdicts: list[SourceVerdict]) -> _Resolution | None:
    """Merge source answers: explicit territory data wins, confidence is the max."""
    best = max(verdicts, key=lambda v: (v.has_territory, v.confidence))
    confidence = max(v.confidence for v in verdicts)
    static = reference.lookup(code)

    city_name = best.city_name or next((v.city_name for v in verdicts if v.city_name), None)
    if city_name is None and static is not None:
        city_name = static.city.name
    if city_name is None:
        return None

    if static is not None and static.city.name.lower() == city_name.lower():
        slug, county = static.city.slug, best.county or static.city.county
    else:
        slug, county = reference.city_slug(city_name), best.county

    territory = None
    if best.has_territory:
        territory = reference.territory_by_id(best.territory_id or "") or reference.territory_by_name(
            best.territory_name or ""
        )
        territory_id = best.territory_id or (territory.id if territory else None)
        territory_name = best.territory_name or (territory.name if territory else None)
    elif static is not None:
        territory = static.territory
        territory_id, territory_name = territory.id, territory.name
    else:
        territory_id = territory_name = None

    if best.deregulated is not None:
        deregulated = best.deregulated
    else:
        deregulated = territory.deregulated if territory else False

    return _Resolution(
        city_name=city_name,
        city_slug=slug,
        county=county,
        territory_id=territory_id,
        territory_name=territory_name,
        deregulated=deregulated,
        confidence=min(confidence, 100),
        source_id=best.source_id,
    )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def _failure(
    code: str,
    error: ErrorCode,
    start: float,
    resolution: _Resolution | None = None,
    content_count: int = 0,
) -> ValidationResult:
    fields = {}
    if resolution is not None:
        fields = {
            "city_name": resolution.city_name,
            "city_slug": resolution.city_slug,
            "county": resolution.county,
            "territory_name": resolution.territory_name,
            "territory_id": resolution.territory_id,
            "is_serviceable": resolution.deregulated,
            "confidence": resolution.confidence,
            "source_id": resolution.source_id,
        }
    return ValidationResult(
        postal_code=code,
        is_valid=False,
        content_count=content_count,
        error_code=error,
        error_message=error.message,
        processing_time_ms=_elapsed_ms(start),
        **fields,
    )
