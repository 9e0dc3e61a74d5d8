from __future__ import annotations

import os
import pytest

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from httpx import AsyncClient, ASGITransport

# Override settings before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = ""
os.environ["SLACK_WEBHOOK_URL"] = ""
os.environ["ANALYTICS_URL"] = ""
os.environ["WARM_UP_ON_STARTUP"] = "false"

from ziproute.main import app
from ziproute.config import Settings
from ziproute.coverage.queue import OperationQueue
from ziproute.coverage.orchestrator import CoverageOrchestrator, OrchestratorConfig
from ziproute.monitoring.monitor import PerformanceMonitor
from ziproute.pipeline.content import StaticContentCatalog
from ziproute.pipeline.validator import ValidationPipeline
from ziproute.routing.cache import MemoryCacheStore
from ziproute.routing.router import RoutingCache
from ziproute.services import build_services
from ziproute.storage.database import Database

CONTENT_COUNTS = {"dallas-tx": 42, "houston-tx": 45, "lubbock-tx": 3, "tyler-tx": 0}


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def database(engine):
    return Database("sqlite+aiosqlite://", engine=engine)


@pytest.fixture
def content():
    return StaticContentCatalog(CONTENT_COUNTS, default=15)


@pytest.fixture
def pipeline(content):
    return ValidationPipeline(content, [], min_content=5)


@pytest.fixture
def monitor():
    return PerformanceMonitor()


@pytest.fixture
def store():
    return MemoryCacheStore(max_entries=100)


@pytest.fixture
def router(store, pipeline, monitor):
    return RoutingCache(store, pipeline, monitor=monitor, batch_pause_s=0)


@pytest.fixture
def queue():
    return OperationQueue(capacity=5, sub_batch=2, pause_s=0)


@pytest.fixture
def orchestrator(pipeline, database, queue, monitor):
    config = OrchestratorConfig(bulk_batch_pause_s=0, improve_pause_s=0)
    return CoverageOrchestrator(pipeline, database, queue, monitor=monitor, config=config)


@pytest.fixture
async def services(database):
    services = build_services(Settings(warm_up_on_startup=False), database=database)
    yield services
    await services.http.aclose()


@pytest.fixture
async def client(services):
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    del app.state.services
