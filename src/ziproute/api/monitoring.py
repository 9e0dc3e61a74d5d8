from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ziproute.api.deps import get_services
from ziproute.errors import PersistenceError
from ziproute.models.schemas import (
    CacheAnalysis,
    PerformanceAlert,
    PerformanceExport,
    RecommendationReport,
    SystemMetrics,
    SystemStatus,
    TrendSnapshot,
)
from ziproute.services import Services

router = APIRouter(prefix="/monitoring")


@router.get("/metrics", response_model=SystemMetrics)
async def metrics(services: Services = Depends(get_services)):
    return services.monitor.get_system_health()


@router.get("/trends", response_model=list[TrendSnapshot])
async def trends(hours: int = Query(24, ge=1, le=168), services: Services = Depends(get_services)):
    return services.monitor.get_trends(hours)


@router.get("/alerts", response_model=list[PerformanceAlert])
async def alerts(services: Services = Depends(get_services)):
    return services.monitor.get_active_alerts()


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str, services: Services = Depends(get_services)):
    if not services.monitor.resolve_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found or already resolved")
    return {"status": "resolved", "alert_id": alert_id}


@router.get("/recommendations", response_model=RecommendationReport)
async def recommendations(services: Services = Depends(get_services)):
    return services.monitor.get_recommendations()


@router.get("/cache")
async def cache(services: Services = Depends(get_services)):
    return {
        **(await services.router.cache_stats()),
        "queue": services.queue.stats(),
    }


@router.delete("/cache")
async def clear_cache(services: Services = Depends(get_services)):
    cleared = await services.router.clear_cache()
    return {"status": "cleared", "entries": cleared}


@router.get("/cache/analysis", response_model=CacheAnalysis)
async def cache_analysis(limit: int = Query(10, ge=1, le=100), services: Services = Depends(get_services)):
    return services.router.cache_analysis(limit)


@router.get("/status", response_model=SystemStatus)
async def status(refresh: bool = False, services: Services = Depends(get_services)):
    try:
        return await services.orchestrator.system_status(refresh=refresh)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/export", response_model=PerformanceExport)
async def export(services: Services = Depends(get_services)):
    return services.monitor.export_performance_data(services.router.cache_analysis())
