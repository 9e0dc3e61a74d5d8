from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ziproute.models.schemas import ValidationResult
from ziproute.storage import repository


def _valid(code, slug="dallas-tx", city="Dallas", confidence=90) -> ValidationResult:
    return ValidationResult(
        postal_code=code,
        is_valid=True,
        city_name=city,
        city_slug=slug,
        county="Dallas",
        territory_id="oncor",
        territory_name="Oncor",
        is_serviceable=True,
        confidence=confidence,
        source_id="reference",
    )


@pytest.mark.asyncio
async def test_record_mappings_and_coverage(session):
    created = await repository.record_zip_mappings(session, [_valid("75201"), _valid("75202")])
    assert created == 2

    coverage = await repository.get_city_coverage(session, "dallas-tx")
    assert coverage.known_zip_count == 60
    assert coverage.zip_code_list == ["75201", "75202"]
    assert coverage.coverage_percentage == pytest.approx(3.33)
    assert coverage.primary_territory_id == "oncor"
    assert coverage.last_improved_at is None


@pytest.mark.asyncio
async def test_record_is_upsert(session):
    await repository.record_zip_mappings(session, [_valid("75201", confidence=60)])
    created = await repository.record_zip_mappings(session, [_valid("75201", confidence=95)])
    assert created == 0

    stats = await repository.get_mapping_stats(session)
    assert stats["total_mappings"] == 1
    assert stats["avg_confidence"] == 95.0


@pytest.mark.asyncio
async def test_invalid_results_ignored(session):
    invalid = ValidationResult(postal_code="99999", is_valid=False)
    assert await repository.record_zip_mappings(session, [invalid]) == 0
    assert (await repository.get_mapping_stats(session))["total_mappings"] == 0


@pytest.mark.asyncio
async def test_cities_needing_attention(session):
    tyler = [_valid(f"757{n:02d}", slug="tyler-tx", city="Tyler") for n in range(1, 14)]
    await repository.record_zip_mappings(session, tyler + [_valid("75201")], mark_improved=True)

    needing = await repository.get_cities_needing_attention(session, threshold=90)
    assert [c.city_slug for c in needing] == ["dallas-tx"]

    tyler_cov = await repository.get_city_coverage(session, "tyler-tx")
    assert tyler_cov.coverage_percentage == 100.0
    assert tyler_cov.last_improved_at is not None


@pytest.mark.asyncio
async def test_coverage_summary(session):
    tyler = [_valid(f"757{n:02d}", slug="tyler-tx", city="Tyler") for n in range(1, 14)]
    await repository.record_zip_mappings(session, tyler + [_valid("75201")])

    summary = await repository.get_coverage_summary(session, improve_threshold=90, complete_threshold=95)

    assert summary["tracked_cities"] == 2
    assert summary["covered_cities"] == 2
    assert summary["fully_covered_cities"] == 1
    assert summary["needing_attention"] == 1
    assert summary["avg_coverage"] == pytest.approx(50.84, abs=0.01)


@pytest.mark.asyncio
async def test_data_freshness(session):
    assert await repository.get_data_freshness_hours(session) is None

    await repository.record_zip_mappings(session, [_valid("75201"), _valid("75202")])
    later = datetime.now(timezone.utc) + timedelta(hours=6)
    assert await repository.get_data_freshness_hours(session, now=later) == pytest.approx(6.0, abs=0.01)
