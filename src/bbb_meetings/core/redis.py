"""Shared Redis connection pool.

Used by the meeting library index (sorted sets), the event stream
publisher and the tenant lookup cache. All three hold plain string
members, so the pool decodes responses.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from src.bbb_meetings.config import get_settings

logger = structlog.get_logger(__name__)

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Return the process-wide Redis client, creating it on first use."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(get_settings().REDIS_URL, decode_responses=True)
    return _redis_pool


async def check_redis(client: aioredis.Redis | None = None) -> str | None:
    """PING Redis. Returns None when healthy, else a short error description."""
    client = client if client is not None else get_redis_pool()
    try:
        if await client.ping():
            return None
        return "PING did not return PONG"
    except aioredis.RedisError as exc:
        logger.warning("redis.ping_failed", error=str(exc))
        return str(exc)


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
