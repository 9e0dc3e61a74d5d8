from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from ziproute.api.deps import get_services
from ziproute.models.schemas import OverallHealth
from ziproute.services import Services

router = APIRouter()


async def _current(services: Services, refresh: bool):
    check = services.orchestrator.latest_health
    if check is None or refresh:
        check = await services.orchestrator.health_check()
    return check


@router.get("/health")
async def health(detailed: bool = False, refresh: bool = False, services: Services = Depends(get_services)):
    check = await _current(services, refresh)
    status_code = 503 if check.overall is OverallHealth.CRITICAL else 200
    if detailed:
        body = check.model_dump(mode="json")
    else:
        body = {
            "status": check.overall.value,
            "services": {name: s.value for name, s in check.services.items()},
            "last_checked": check.last_checked.isoformat(),
        }
    return JSONResponse(status_code=status_code, content=body)


@router.head("/health")
async def health_probe(services: Services = Depends(get_services)):
    check = await _current(services, refresh=False)
    status_code = 503 if check.overall is OverallHealth.CRITICAL else 200
    return Response(status_code=status_code, headers={"X-Health-Status": check.overall.value})
