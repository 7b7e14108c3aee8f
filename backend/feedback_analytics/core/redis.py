"""Redis client for the metrics cache and the ingest stream."""

import logging

import redis.asyncio as redis
from fastapi import Request
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError

from feedback_analytics.core.config import settings

logger = logging.getLogger(__name__)

# Connection pool settings
SOCKET_TIMEOUT = 5.0  # seconds
SOCKET_CONNECT_TIMEOUT = 5.0  # seconds
RETRY_ON_TIMEOUT = True
MAX_CONNECTIONS = 10

# Module-level globals kept only for standalone / worker contexts
redis_client: redis.Redis | None = None
_connection_pool: ConnectionPool | None = None


def _make_pool() -> ConnectionPool:
    return ConnectionPool.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=SOCKET_TIMEOUT,
        socket_connect_timeout=SOCKET_CONNECT_TIMEOUT,
        retry_on_timeout=RETRY_ON_TIMEOUT,
        max_connections=MAX_CONNECTIONS,
    )


async def get_redis() -> redis.Redis:
    """Get or create a module-level Redis client (for worker / non-DI contexts)."""
    global redis_client, _connection_pool
    if redis_client is None:
        _connection_pool = _make_pool()
        redis_client = redis.Redis(connection_pool=_connection_pool)
    return redis_client


async def get_redis_dep(request: Request) -> redis.Redis:
    """FastAPI dependency returning the Redis client from ``app.state``."""
    return request.app.state.redis  # type: ignore[no-any-return]


async def close_redis() -> None:
    """Close the module-level Redis connection and pool."""
    global redis_client, _connection_pool
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if _connection_pool:
        await _connection_pool.disconnect()
        _connection_pool = None


async def safe_redis_get(
    key: str,
    *,
    client: redis.Redis | None = None,
) -> str | None:
    """Get a key, treating Redis errors as a cache miss."""
    try:
        r = client or await get_redis()
        value: str | None = await r.get(key)
        return value
    except (RedisError, ConnectionError, OSError) as e:
        logger.warning(f"Redis GET failed for {key}: {e}")
        return None


async def safe_redis_setex(
    key: str,
    ttl: int,
    value: str,
    *,
    client: redis.Redis | None = None,
) -> bool:
    """Set key with expiration, with error handling.

    Args:
        key: Redis key to set.
        ttl: Time to live in seconds.
        value: Value to store.
        client: Redis client to use. Falls back to ``get_redis()`` when *None*.

    Returns:
        True if successful, False otherwise.
    """
    try:
        r = client or await get_redis()
        await r.setex(key, ttl, value)
        return True
    except (RedisError, ConnectionError, OSError) as e:
        logger.warning(f"Redis SETEX failed for {key}: {e}")
        return False


async def safe_redis_delete_pattern(
    pattern: str,
    *,
    client: redis.Redis | None = None,
) -> int:
    """Delete every key matching a glob pattern.

    Uses SCAN rather than KEYS so large keyspaces are not blocked.

    Returns:
        Number of keys deleted (0 when Redis is unavailable).
    """
    try:
        r = client or await get_redis()
        keys = [key async for key in r.scan_iter(match=pattern, count=500)]
        if not keys:
            return 0
        deleted: int = await r.delete(*keys)
        return deleted
    except (RedisError, ConnectionError, OSError) as e:
        logger.warning(f"Redis pattern delete failed for {pattern}: {e}")
        return 0
