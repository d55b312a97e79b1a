"""Database engine, session factory and declarative base.

Entities, change events and read statuses live in the same database so that an
entity write and the change event documenting it commit in one transaction.

Key exports:
- Base                   — declarative base for all ORM models
- UTCDateTime            — DateTime column type that always round-trips as aware UTC
- init_database(...)     — call at startup to create the engine
- close_database()       — call at shutdown to dispose the engine
- create_schema()        — create missing tables (local runs and tests)
- get_db_session()       — FastAPI dependency yielding an AsyncSession
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from entity_history_engine.observability import get_logger

logger = get_logger(__name__)

# Set by init_database(), cleared by close_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Declarative base shared by every ORM model of the service."""


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware DateTime that normalizes to UTC on the way in and out.

    SQLite drops tzinfo on storage, so values read back are re-tagged as UTC.
    Naive values passed in are treated as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def init_database(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: int = 30,
) -> async_sessionmaker[AsyncSession]:
    """Initialize the database engine and session factory.

    Must be called once at application startup (in the lifespan handler)
    before any session is requested.

    Args:
        database_url: SQLAlchemy async connection URL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Max overflow connections above pool_size (ignored for SQLite).
        pool_timeout: Seconds to wait for a connection before raising.

    Returns:
        The session factory bound to the new engine.
    """
    global _engine, _session_factory  # noqa: PLW0603

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )

    logger.info("Initializing database engine", pool_size=pool_size, max_overflow=max_overflow)
    _engine = create_async_engine(database_url, **engine_kwargs)
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _session_factory


async def create_schema() -> None:
    """Create every table registered on Base.metadata that does not exist yet.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _engine is None:
        raise RuntimeError("Database has not been initialized. Call init_database() first.")

    # Ensure the models are registered on the metadata
    from entity_history_engine.core import models  # noqa: F401

    async with _engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def close_database() -> None:
    """Dispose the database engine.

    Must be called at application shutdown.
    """
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    Commits are driven by the unit of work, not by this dependency; any
    exception escaping the request rolls back whatever is still pending.

    Yields:
        AsyncSession: A session bound to the service database.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database has not been initialized. "
            "Call init_database() in the application lifespan handler."
        )

    async with _session_factory() as session:
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise
