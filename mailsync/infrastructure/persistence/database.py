"""Persistence: async engine, session factory, and Base for SQLAlchemy ORM.

The engine and session factory are created lazily on first use so importing
this module does not trigger Settings validation. Sync jobs open their own
short sessions through get_session_factory(); request handlers use get_db /
get_db_transactional.

SQLite (aiosqlite) is supported for development and tests. pysqlite's
implicit transaction handling breaks SAVEPOINT, so for SQLite the driver's
own BEGIN is disabled and SQLAlchemy emits it instead.
"""

import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import SqlNotConfiguredException

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


def _enable_sqlite_savepoints(sqlite_engine: AsyncEngine) -> None:
    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an AsyncEngine with driver-appropriate options."""
    settings = get_settings()
    if database_url.startswith("sqlite"):
        sqlite_engine = create_async_engine(database_url, echo=echo)
        _enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine
    connect_args: dict[str, Any] = {}
    if "asyncpg" in database_url:
        connect_args["command_timeout"] = settings.db_command_timeout or 60
        connect_args["server_settings"] = {"jit": "off"}
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size or 10,
        max_overflow=settings.db_max_overflow or 20,
        pool_recycle=3600,
        connect_args=connect_args,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _ensure_engine() -> None:
    """Create engine and AsyncSessionLocal on first use."""
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return
    settings = get_settings()
    if not settings.database_url:
        return
    engine = build_engine(settings.database_url, echo=settings.database_echo)
    AsyncSessionLocal = build_session_factory(engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory, creating it if needed.

    Raises:
        SqlNotConfiguredException: DATABASE_URL is not set.
    """
    _ensure_engine()
    if AsyncSessionLocal is None:
        logger.error("SQL database not configured: set DATABASE_URL")
        raise SqlNotConfiguredException()
    return AsyncSessionLocal


async def create_tables() -> None:
    """Create every table registered on Base.metadata (development helper)."""
    from mailsync.infrastructure.persistence import models  # noqa: F401

    _ensure_engine()
    if engine is None:
        raise SqlNotConfiguredException()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the engine on shutdown and forget the session factory."""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_db():
    """Database session dependency for read operations. Does not commit."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


async def get_db_transactional():
    """Database session dependency for writes: commit on success, roll back on error."""
    factory = get_session_factory()
    async with factory() as session:
        async with session.begin():
            yield session
