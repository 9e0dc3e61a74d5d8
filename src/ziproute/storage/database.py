from __future__ import annotations

from pathlib import Path

from sqlmodel import SQLModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

# Table classes must be imported so create_all sees them.
from ziproute.models import db as _models  # noqa: F401


class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str, engine: AsyncEngine | None = None):
        self.url = url
        if engine is None:
            # Ensure the data directory exists for SQLite
            if "sqlite" in url and "///" in url:
                db_path = url.split("///")[-1]
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(url, echo=False)
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()

    def session(self) -> AsyncSession:
        return self.session_factory()
