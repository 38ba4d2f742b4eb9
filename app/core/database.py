from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import DateTime, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.types import TypeDecorator

from app.core.config import settings

logger = structlog.get_logger(__name__)

# SQLAlchemy Base class for models
Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    Backends without native timezone support hand back naive values; those are
    read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def create_engine(url: str, worker: bool = False) -> AsyncEngine:
    """Build an async engine; worker engines skip pooling across event loops."""
    if worker:
        return create_async_engine(url, echo=False, future=True, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=False,  # Disabled to prevent SQLAlchemy engine logs
        future=True,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Async engine and session factory; absent when running on the in-memory backend
engine: Optional[AsyncEngine] = (
    create_engine(settings.DATABASE_URL) if settings.DATABASE_URL else None
)
AsyncSessionLocal: Optional[async_sessionmaker] = (
    create_session_factory(engine) if engine is not None else None
)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Check connectivity and create any missing tables."""
    bind = bind or engine
    if bind is None:
        logger.info("No DATABASE_URL configured, skipping database initialization")
        return

    # Import models so they register on Base.metadata
    from app import models  # noqa: F401

    try:
        async with bind.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database connection initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", exc_info=e)
        raise


async def ping_db(bind: Optional[AsyncEngine] = None) -> bool:
    """Lightweight health probe."""
    bind = bind or engine
    if bind is None:
        return True
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed", exc_info=e)
        return False
