from __future__ import annotations

from unittest.mock import patch, AsyncMock

import pytest

from ziproute.models.schemas import MonitorEvent


@pytest.mark.asyncio
async def test_route_success(client):
    resp = await client.get("/route/75201")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["data"]["redirect_url"] == "/electricity-plans/dallas-tx"
    assert data["data"]["territory_name"] == "Oncor"
    assert data["cached"] is False

    resp = await client.get("/route/75201")
    assert resp.json()["cached"] is True


@pytest.mark.asyncio
async def test_route_client_error(client):
    resp = await client.get("/route/ABCDE")
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INVALID_CHARACTERS"
    assert error["suggestions"]
    assert error["recovery_actions"]


@pytest.mark.asyncio
async def test_route_not_in_region(client):
    resp = await client.get("/route/99999")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "NOT_IN_REGION"


@pytest.mark.asyncio
async def test_route_internal_error(client, services):
    with patch.object(services.pipeline, "validate", new_callable=AsyncMock, side_effect=RuntimeError("secret")):
        resp = await client.get("/route/77002")
    assert resp.status_code == 503
    body = resp.json()
    assert body["error"]["code"] == "INTERNAL_ERROR"
    assert "secret" not in resp.text


@pytest.mark.asyncio
async def test_validate(client):
    resp = await client.post("/validate", json={
        "postal_code": "79401",
        "options": {"validate_content_available": True},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["is_valid"] is False
    assert data["error_code"] == "INSUFFICIENT_CONTENT"
    assert data["city_slug"] == "lubbock-tx"


@pytest.mark.asyncio
async def test_bulk_validate(client):
    resp = await client.post("/bulk/operations", json={
        "operation": "validate",
        "data": {"postal_codes": ["75201", "77002", "76101"]},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["processed"] == 3
    assert data["operation_id"]


@pytest.mark.asyncio
async def test_bulk_partial_failure_is_207(client):
    resp = await client.post("/bulk/operations", json={
        "operation": "validate",
        "data": {"postal_codes": ["75201", "99999"]},
    })
    assert resp.status_code == 207
    assert resp.json()["errors"] == 1


@pytest.mark.asyncio
async def test_bulk_over_cap(client):
    resp = await client.post("/bulk/operations", json={
        "operation": "validate",
        "data": {"postal_codes": ["75201"] * 501},
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_bulk_unknown_operation(client):
    resp = await client.post("/bulk/operations", json={"operation": "reindex", "data": {}})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cancel_unknown_operation(client):
    resp = await client.post("/bulk/operations/abc/cancel")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert set(data["services"]) == {"database", "external_sources", "validation_pipeline", "performance_monitor"}

    resp = await client.get("/health", params={"detailed": "true"})
    detailed = resp.json()
    assert detailed["overall"] == "healthy"
    assert "metrics" in detailed
    assert detailed["issues"] == []


@pytest.mark.asyncio
async def test_health_head(client):
    resp = await client.head("/health")
    assert resp.status_code == 200
    assert resp.headers["x-health-status"] == "healthy"
    assert resp.content == b""


@pytest.mark.asyncio
async def test_monitoring_alerts_and_resolve(client, services):
    services.monitor.record_event(MonitorEvent(response_time_ms=2500))

    resp = await client.get("/monitoring/alerts")
    alerts = resp.json()
    assert len(alerts) == 1
    assert alerts[0]["severity"] == "CRITICAL"

    resp = await client.post(f"/monitoring/alerts/{alerts[0]['id']}/resolve")
    assert resp.status_code == 200
    resp = await client.post(f"/monitoring/alerts/{alerts[0]['id']}/resolve")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_monitoring_metrics_and_cache(client):
    await client.get("/route/75201")

    metrics = (await client.get("/monitoring/metrics")).json()
    assert metrics["total_requests"] == 1

    cache = (await client.get("/monitoring/cache")).json()
    assert cache["store"] == "memory"
    assert cache["entries"] == 1
    assert cache["queue"]["capacity"] == 50

    resp = await client.delete("/monitoring/cache")
    assert resp.json()["entries"] == 1

    recs = (await client.get("/monitoring/recommendations")).json()
    assert "estimated_improvement_pct" in recs

    trends = (await client.get("/monitoring/trends", params={"hours": 2})).json()
    assert trends == []


@pytest.mark.asyncio
async def test_bulk_non_numeric_option_is_400(client):
    resp = await client.post("/bulk/operations", json={
        "operation": "validate",
        "data": {"postal_codes": ["75201"]},
        "options": {"batch_size": "lots"},
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_monitoring_status(client):
    await client.post("/bulk/operations", json={
        "operation": "validate",
        "data": {"postal_codes": ["75201", "75202"]},
        "options": {"improve_coverage": True},
    })

    resp = await client.get("/monitoring/status", params={"refresh": "true"})
    assert resp.status_code == 200
    status = resp.json()
    assert status["health"]["overall"] == "healthy"
    assert status["coverage"]["total_postal_codes_mapped"] == 2
    assert status["coverage"]["tracked_cities"] == 1
    assert status["performance"]["total_requests"] == 2


@pytest.mark.asyncio
async def test_monitoring_cache_analysis_and_export(client):
    await client.get("/route/75201")
    await client.get("/route/75201")

    analysis = (await client.get("/monitoring/cache/analysis")).json()
    assert analysis["overview"]["total_lookups"] == 2
    hot = analysis["hot_postal_codes"]
    assert [(h["postal_code"], h["count"]) for h in hot] == [("75201", 1)]

    export = (await client.get("/monitoring/export")).json()
    assert export["export_id"].startswith("perf-export-")
    assert export["system_health"]["total_requests"] == 2
    assert export["cache_analysis"]["overview"]["hit_rate"] == 50.0
