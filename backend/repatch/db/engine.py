"""
Database engine configuration for repatch.

Provides async SQLAlchemy engine with SQLite WAL mode,
crash-safe PRAGMA configuration, and session management.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from repatch.config import settings


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings for crash safety and concurrency.

    - WAL mode: readers never block the conditional render-state writes
    - FULL synchronous: a committed transition survives a crash
    - Foreign keys: pipeline_runs -> patch_notes integrity
    - Busy timeout: concurrent writers wait up to 5s for the write lock
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, registering SQLite PRAGMAs when applicable."""
    new_engine = create_async_engine(database_url, echo=False)
    if new_engine.dialect.name == "sqlite":
        # CRITICAL: Use engine.sync_engine for aiosqlite compatibility
        event.listens_for(new_engine.sync_engine, "connect")(configure_sqlite_pragmas)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for an engine.

    expire_on_commit=False keeps rows readable after commit without a
    lazy refresh (which would need a greenlet context).
    """
    return async_sessionmaker(
        bind,
        expire_on_commit=False,
        class_=AsyncSession,
    )


# Create async engine
engine = build_engine(settings.storage.database_url)

# Create session factory
async_session = build_session_factory(engine)


async def shutdown():
    """Dispose of engine and close all connections."""
    await engine.dispose()
