# shared/redis_client.py
# Centralized Redis connection management
from __future__ import annotations

import redis.asyncio as redis
from redis.exceptions import RedisError

from config.config import REDIS_URL
from shared.errors import PartialBatchFailure, TransientStoreError

# Connection pool (singleton)
_pool = None

async def get_redis() -> redis.Redis:
    """Get a Redis client from the connection pool."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(REDIS_URL, decode_responses=True)
    return redis.Redis(connection_pool=_pool)

async def close_redis() -> None:
    """Disconnect the shared pool (bot/web shutdown)."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


async def get_redis_replies(pipe, count: int) -> list:
    """
    Execute a pipeline and make sure exactly `count` replies succeeded.

    Errors inside the pipeline do not abort it; they come back as reply
    values and are counted as failures here. Nothing is rolled back.
    """
    try:
        replies = await pipe.execute(raise_on_error=False)
    except RedisError as e:
        raise TransientStoreError(f"pipeline execution failed: {e}") from e

    errors = [rep for rep in replies if isinstance(rep, Exception)]
    succeeded = len(replies) - len(errors)
    if len(replies) != count or errors:
        raise PartialBatchFailure(count, succeeded, errors)
    return replies
