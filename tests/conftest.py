"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from copytrade_harvester.domain.values import ProjectKey
from copytrade_harvester.storage.database import DatabaseManager
from copytrade_harvester.storage.models import Base

T0 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock that advances by ``step`` on every read."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def t0() -> datetime:
    """Fixed reference instant."""
    return T0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def project_key() -> ProjectKey:
    """Sample OKX project key."""
    return ProjectKey.of("OKX", "abc123")


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db_manager(tmp_path: Path) -> AsyncIterator[DatabaseManager]:
    """File-backed SQLite database shared by every session of a test."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'harvester.db'}")
    await db.init_schema_async()
    yield db
    await db.dispose_async()
