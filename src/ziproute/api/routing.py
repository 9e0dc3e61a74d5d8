from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ziproute.api.deps import get_services
from ziproute.errors import ErrorCode
from ziproute.models.schemas import RoutingResult, ValidateRequest, ValidationResult
from ziproute.services import Services

router = APIRouter()


def _status_for(code: ErrorCode) -> int:
    return 400 if code.is_client_error else 503


@router.get("/route/{postal_code}", response_model=RoutingResult)
async def route(postal_code: str, services: Services = Depends(get_services)):
    result = await services.router.route(postal_code)
    if result.success:
        return result
    return JSONResponse(status_code=_status_for(result.error.code), content=result.model_dump(mode="json"))


@router.post("/validate", response_model=ValidationResult)
async def validate(payload: ValidateRequest, services: Services = Depends(get_services)):
    return await services.orchestrator.validate_one(
        payload.postal_code,
        track_analytics=True,
        options=payload.options,
    )
