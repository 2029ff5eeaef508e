"""
tasks/runner.py
Bridge from synchronous Celery tasks to the async service layer.

Each call gets a fresh event loop, a NullPool engine and its own Redis
client, all torn down before returning.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import config.redis_client as redis_module
from config.database import create_task_engine, get_db_context

logger = logging.getLogger(__name__)


async def run_operation(
    operation: Callable[..., Awaitable[Any]],
    *args: Any,
    session_factory: async_sessionmaker | None = None,
) -> Any:
    """Run operation(db, *args) in one committed transaction."""
    engine = None
    if session_factory is None:
        engine = create_task_engine()
        session_factory = async_sessionmaker(
            bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )

    owns_redis = redis_module.redis_client is None
    if owns_redis:
        try:
            await redis_module.init_redis()
        except (RedisError, OSError) as e:
            # Change signals are skipped; dashboards catch up on their next fetch
            logger.warning(f"Redis unavailable for task, change signals disabled: {e}")

    try:
        async with get_db_context(session_factory) as db:
            return await operation(db, *args)
    finally:
        if owns_redis:
            await redis_module.close_redis()
        if engine is not None:
            await engine.dispose()


def run_with_session(operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
    return asyncio.run(run_operation(operation, *args))
