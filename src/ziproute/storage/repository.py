from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func

from ziproute.models.db import CityCoverage, ZipCodeMapping
from ziproute.models.schemas import ValidationResult
from ziproute.territory import reference


async def get_city_coverage(session: AsyncSession, city_slug: str) -> CityCoverage | None:
    result = await session.execute(select(CityCoverage).where(CityCoverage.city_slug == city_slug))
    return result.scalars().first()


async def get_or_create_city_coverage(session: AsyncSession, city_slug: str) -> CityCoverage:
    coverage = await get_city_coverage(session, city_slug)
    if coverage is not None:
        return coverage
    city = reference.city_by_slug(city_slug)
    coverage = CityCoverage(
        city_slug=city_slug,
        city_name=city.name if city else city_slug,
        known_zip_count=len(reference.known_postal_codes(city_slug)),
        primary_territory_id=city.territory_id if city else None,
    )
    session.add(coverage)
    await session.flush()
    return coverage


async def get_mapped_codes(session: AsyncSession, city_slug: str) -> set[str]:
    result = await session.execute(
        select(ZipCodeMapping.postal_code).where(
            ZipCodeMapping.city_slug == city_slug,
            ZipCodeMapping.is_active == True,  # noqa: E712
        )
    )
    return set(result.scalars().all())


async def record_zip_mappings(
    session: AsyncSession,
    results: list[ValidationResult],
    mark_improved: bool = False,
) -> int:
    """Upsert confirmed mappings and recompute the affected cities' coverage.

    All rows are written in a single commit. Returns the number of new mappings.
    """
    now = datetime.now(timezone.utc)
    created = 0
    touched: set[str] = set()

    for r in results:
        if not r.is_valid or not r.city_slug:
            continue
        existing = (
            await session.execute(select(ZipCodeMapping).where(ZipCodeMapping.postal_code == r.postal_code))
        ).scalars().first()
        if existing is None:
            existing = ZipCodeMapping(
                postal_code=r.postal_code,
                city_slug=r.city_slug,
                city_name=r.city_name or r.city_slug,
                territory_id=r.territory_id or "",
                territory_name=r.territory_name or "",
            )
            created += 1
        existing.city_slug = r.city_slug
        existing.city_name = r.city_name or r.city_slug
        existing.county = r.county
        existing.territory_id = r.territory_id or ""
        existing.territory_name = r.territory_name or ""
        existing.confidence = r.confidence
        existing.source_id = r.source_id
        existing.is_active = True
        existing.last_validated = now
        session.add(existing)
        touched.add(r.city_slug)

    await session.flush()
    for slug in touched:
        coverage = await _recompute(session, slug, now)
        if mark_improved:
            coverage.last_improved_at = now

    await session.commit()
    return created


async def refresh_city_coverage(session: AsyncSession, city_slug: str) -> CityCoverage:
    coverage = await _recompute(session, city_slug, datetime.now(timezone.utc))
    await session.commit()
    return coverage


async def mark_improved(session: AsyncSession, city_slug: str) -> None:
    coverage = await get_or_create_city_coverage(session, city_slug)
    coverage.last_improved_at = datetime.now(timezone.utc)
    session.add(coverage)
    await session.commit()


async def _recompute(session: AsyncSession, city_slug: str, now: datetime) -> CityCoverage:
    coverage = await get_or_create_city_coverage(session, city_slug)
    codes = sorted(await get_mapped_codes(session, city_slug))
    known = len(reference.known_postal_codes(city_slug)) or len(codes)
    coverage.zip_codes = json.dumps(codes)
    coverage.known_zip_count = known
    coverage.coverage_percentage = round(min(len(codes) / known * 100, 100.0), 2) if known else 0.0
    coverage.updated_at = now
    session.add(coverage)
    return coverage


async def get_cities_needing_attention(
    session: AsyncSession, threshold: float, limit: int = 100
) -> list[CityCoverage]:
    result = await session.execute(
        select(CityCoverage)
        .where(CityCoverage.coverage_percentage < threshold)
        .order_by(CityCoverage.coverage_percentage)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_coverage_summary(
    session: AsyncSession, improve_threshold: float, complete_threshold: float
) -> dict:
    tracked, avg_coverage = (
        await session.execute(
            select(func.count(CityCoverage.id), func.coalesce(func.avg(CityCoverage.coverage_percentage), 0.0))
        )
    ).one()

    async def _count(*conditions) -> int:
        return (await session.execute(select(func.count(CityCoverage.id)).where(*conditions))).scalar_one()

    return {
        "tracked_cities": tracked,
        "covered_cities": await _count(CityCoverage.coverage_percentage > 0),
        "fully_covered_cities": await _count(CityCoverage.coverage_percentage >= complete_threshold),
        "needing_attention": await _count(CityCoverage.coverage_percentage < improve_threshold),
        "avg_coverage": round(float(avg_coverage), 2),
    }


async def get_data_freshness_hours(session: AsyncSession, now: datetime | None = None) -> float | None:
    """Average age in hours of active mappings' last validation, or None if nothing is mapped."""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        select(ZipCodeMapping.last_validated).where(ZipCodeMapping.is_active == True)  # noqa: E712
    )
    stamps = [s if s.tzinfo else s.replace(tzinfo=timezone.utc) for s in result.scalars().all()]
    if not stamps:
        return None
    total = sum((now - s).total_seconds() for s in stamps)
    return round(total / len(stamps) / 3600, 2)


async def get_mapping_stats(session: AsyncSession) -> dict:
    total = (await session.execute(select(func.count(ZipCodeMapping.id)))).scalar_one()
    avg_confidence = (
        await session.execute(select(func.coalesce(func.avg(ZipCodeMapping.confidence), 0.0)))
    ).scalar_one()
    cities = (await session.execute(select(func.count(CityCoverage.id)))).scalar_one()
    return {"total_mappings": total, "avg_confidence": float(avg_confidence), "cities_tracked": cities}
