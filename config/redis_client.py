"""
config/redis_client.py
Async Redis client for the JWT deny-list, rate limiting,
and the pub/sub change feed that wakes up admin dashboards.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)

SIGNALS_KEY = "change_signals"


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=5), reraise=True)
async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Redis Helpers ─────────────────────────────────────────────
class RedisCache:
    """Deny-list, rate-limit and change-feed calls over one client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── JWT Deny List ─────────────────────────────────────────
    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, window_seconds)
        return count <= limit

    # ── Change Feed ───────────────────────────────────────────
    async def publish_change(self, table: str, entity_id: str, event: str) -> int:
        """
        Publish a wake-up signal. Subscribers re-run their own queries;
        the payload only says which row moved.
        """
        message = json.dumps({"table": table, "id": entity_id, "event": event})
        return await self.client.publish(settings.REDIS_CHANGE_CHANNEL, message)


# ── Post-commit signalling ────────────────────────────────────
def queue_change_signal(session, table: str, entity_id: Any, event: str) -> None:
    """Remember a change signal on the DB session; sent once the transaction commits."""
    session.info.setdefault(SIGNALS_KEY, []).append((table, str(entity_id), event))


def discard_queued_signals(session) -> None:
    session.info.pop(SIGNALS_KEY, None)


async def publish_queued_signals(session) -> int:
    """
    Publish and clear the session's queued signals. Best effort:
    a Redis outage never fails the request that produced the change.
    """
    signals = session.info.pop(SIGNALS_KEY, [])
    if not signals or redis_client is None:
        return 0

    cache = RedisCache(redis_client)
    sent = 0
    for table, entity_id, event in signals:
        try:
            await cache.publish_change(table, entity_id, event)
            sent += 1
        except Exception as e:
            logger.warning(f"Change signal {event} for {table}:{entity_id} not published: {e}")
    return sent
