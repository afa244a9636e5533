"""Shared fixtures: throwaway SQLite database and instant pacing."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shopcrawl.db.models import Base
from shopcrawl.ingest import pacing


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shopcrawl.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Replace every crawl sleep with a no-op; returns the requested durations."""
    requested: list[float] = []

    async def fake_pause(seconds: float) -> None:
        requested.append(seconds)

    monkeypatch.setattr(pacing, "pause", fake_pause)
    return requested
