"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.
Uses the asyncpg driver for PostgreSQL; aiosqlite is accepted for local runs and tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from config.redis_client import discard_queued_signals, publish_queued_signals
from config.settings import settings


# ── Engine ────────────────────────────────────────────────────
def _engine_options() -> dict:
    if settings.is_sqlite:
        # Seconds a transaction waits for the SQLite write lock
        return {"echo": settings.DEBUG, "connect_args": {"timeout": settings.DATABASE_POOL_TIMEOUT}}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,       # Detect stale connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "echo": settings.DEBUG,      # Log SQL in debug mode
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())


def enable_sqlite_transactions(async_engine: AsyncEngine, begin: str = "BEGIN IMMEDIATE") -> None:
    """
    pysqlite defers BEGIN until the first write, which breaks SAVEPOINT.
    Take over transaction control so begin_nested() behaves as on PostgreSQL,
    and use WAL so readers never block the writer.

    SQLite ignores SELECT ... FOR UPDATE. BEGIN IMMEDIATE takes the database
    write lock when the transaction starts, so two confirms on the same seat
    run one after the other instead of the second failing with
    "database is locked". Pass begin="BEGIN" for a read-mostly engine.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin)


if settings.is_sqlite:
    enable_sqlite_transactions(engine)

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autoflush=False,
)


def create_task_engine() -> AsyncEngine:
    """
    Engine for Celery workers. Each task runs its own event loop,
    so pooled connections must not outlive it.
    """
    task_engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    if settings.is_sqlite:
        enable_sqlite_transactions(task_engine)
    return task_engine


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.
    Change-feed signals queued during the request go out after the commit.

    Usage:
        @router.get("/sessions")
        async def list_sessions(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_queued_signals(session)
            raise
        else:
            await publish_queued_signals(session)
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context(
    factory: async_sessionmaker = AsyncSessionLocal,
) -> AsyncGenerator[AsyncSession, None]:
    """Context manager version for use outside of FastAPI routes."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_queued_signals(session)
            raise
        else:
            await publish_queued_signals(session)
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables. Run during app startup."""
    import shared.models.models  # noqa: F401  (registers mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
