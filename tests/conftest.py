import os

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.database import Base, create_session_factory
from app.main import create_app
from app.repositories.memory import MemoryPersistence
from app.repositories.sql import SqlPersistence
from app.services.holidays import HolidayService
from app.services.portal import BookingPortal
from tests.fixtures.booking_fixtures import (  # noqa: F401
    FIXED_NOW,
    FakeClock,
    RecordingSink,
    admin_actor,
    provider_actor,
    seed_directory,
    user_actor,
)

# SQL backend tests run against in-memory SQLite unless a real database is given
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(FIXED_NOW)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def persistence() -> MemoryPersistence:
    """In-memory persistence with the standard test directory loaded."""
    store = MemoryPersistence()
    await seed_directory(store)
    return store


@pytest.fixture
def portal(persistence, sink, clock) -> BookingPortal:
    return BookingPortal(
        persistence,
        sink=sink,
        holiday_service=HolidayService(country=""),
        clock=clock,
    )


@pytest.fixture
async def sql_persistence():
    """SQL persistence over a fresh schema."""
    engine_options = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine_options = {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    engine = create_async_engine(TEST_DATABASE_URL, **engine_options)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    store = SqlPersistence(create_session_factory(engine))
    await seed_directory(store)
    yield store

    await engine.dispose()


@pytest.fixture
async def client(persistence, sink, clock):
    """HTTP client bound to an app wired to the test portal."""
    app = create_app(
        persistence,
        sink=sink,
        holiday_service=HolidayService(country=""),
        clock=clock,
    )
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

