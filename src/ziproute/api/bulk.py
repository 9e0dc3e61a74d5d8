from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ziproute.api.deps import get_services
from ziproute.errors import BulkPayloadError
from ziproute.models.schemas import BulkOperationRequest, OperationResult
from ziproute.services import Services

logger = structlog.get_logger()

router = APIRouter(prefix="/bulk")


@router.post("/operations", response_model=OperationResult)
async def run_operation(payload: BulkOperationRequest, services: Services = Depends(get_services)):
    try:
        result = await services.orchestrator.execute(payload.operation, payload.data, payload.options)
    except BulkPayloadError as e:
        logger.info("bulk_payload_rejected", operation=payload.operation.value, reason=e.message)
        raise HTTPException(status_code=400, detail={"code": e.code.value, "message": e.message})

    status = 200 if result.success and result.errors == 0 else 207
    return JSONResponse(status_code=status, content=result.model_dump(mode="json"))


@router.post("/operations/{operation_id}/cancel")
async def cancel_operation(operation_id: str, services: Services = Depends(get_services)):
    if not services.orchestrator.cancel_operation(operation_id):
        raise HTTPException(status_code=404, detail="Operation not running")
    return {"status": "cancelling", "operation_id": operation_id}
