"""Redis async connection pool."""

from __future__ import annotations

import redis.asyncio as aioredis

from ridedispatch.config import settings

_pool: aioredis.ConnectionPool | None = None


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return aioredis.Redis(connection_pool=_pool)
