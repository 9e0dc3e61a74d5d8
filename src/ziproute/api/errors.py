from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ziproute.errors import ErrorCode
from ziproute.routing import recovery

logger = structlog.get_logger()


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the exception, return a generic body with no internal detail."""
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    advice = recovery.advise(None, ErrorCode.INTERNAL_ERROR)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": ErrorCode.INTERNAL_ERROR.message,
                "suggestions": advice.suggestion_labels,
                "recovery_actions": advice.recovery_actions,
                "helpful_tips": advice.helpful_tips,
            },
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(Exception, internal_error_handler)
