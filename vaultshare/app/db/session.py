# vaultshare/app/db/session.py
"""
Engine and session factory for the record store.

Two backends are supported: SQLite through aiosqlite (development and the
test suite) and PostgreSQL through asyncpg. Services get one
``AsyncSession`` per request from ``get_db`` and commit explicitly; the
audit service opens its own sessions from ``AsyncSessionLocal``.
"""
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from vaultshare.app.core.config import settings

# seconds a writer waits on a locked SQLite file before failing
SQLITE_BUSY_TIMEOUT = 30


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def _create_async_engine() -> AsyncEngine:
    if settings.is_sqlite:
        # a fresh connection per session; concurrent writers queue on the
        # file lock for up to SQLITE_BUSY_TIMEOUT
        sqlite_engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DATABASE_ECHO,
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        )
        event.listen(sqlite_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


engine: AsyncEngine = _create_async_engine()

# Attributes stay loaded after commit so services can return the records
# they just wrote; lookups that must see other sessions' writes use
# populate_existing.
AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, always closed."""
    async with AsyncSessionLocal() as session:
        yield session
