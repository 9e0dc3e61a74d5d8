from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ziproute.config import get_settings
from ziproute.services import build_services
from ziproute.utils.logging import setup_logging
from ziproute.api.errors import register_error_handlers
from ziproute.api.routing import router as routing_router
from ziproute.api.bulk import router as bulk_router
from ziproute.api.health import router as health_router
from ziproute.api.monitoring import router as monitoring_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    services = build_services(get_settings())
    app.state.services = services
    await services.start()
    try:
        yield
    finally:
        await services.stop()


app = FastAPI(title="ZipRoute", version="0.1.0", lifespan=lifespan)

register_error_handlers(app)
app.include_router(routing_router)
app.include_router(bulk_router)
app.include_router(health_router)
app.include_router(monitoring_router)
