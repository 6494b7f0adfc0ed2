"""Shared Redis connection pools.

Key layout (values are strings, decoded on read):

    job:{job_id}                  JSON job record, SETEX with the job record TTL
    upload_job:{upload_id}        job id created from an upload, same TTL
    ratelimit:{client}:{window}   fixed-window request counter

The API process uses the async pool (job records, rate limiter, health
checks). Celery workers report progress through the sync pool via the
helpers in ``fileswift.services.job_store``.
"""

import logging
import threading
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from fileswift.config import Settings, get_settings

logger = logging.getLogger(__name__)

SYNC_MAX_CONNECTIONS = 20
ASYNC_MAX_CONNECTIONS = 50

_lock = threading.Lock()
_sync_pool: Optional[redis.ConnectionPool] = None
_async_pool: Optional[aioredis.ConnectionPool] = None


def _pool_options(settings: Settings, max_connections: int) -> dict[str, Any]:
    # Short socket timeouts: callers fail open or report 503 rather than hang
    return {
        "max_connections": max_connections,
        "decode_responses": True,
        "socket_keepalive": True,
        "socket_connect_timeout": settings.redis_socket_timeout,
        "socket_timeout": settings.redis_socket_timeout,
        "health_check_interval": 30,
    }


def _get_sync_pool() -> redis.ConnectionPool:
    global _sync_pool
    with _lock:
        if _sync_pool is None:
            settings = get_settings()
            _sync_pool = redis.ConnectionPool.from_url(
                settings.redis_url, **_pool_options(settings, SYNC_MAX_CONNECTIONS)
            )
        return _sync_pool


def _get_async_pool() -> aioredis.ConnectionPool:
    global _async_pool
    with _lock:
        if _async_pool is None:
            settings = get_settings()
            _async_pool = aioredis.ConnectionPool.from_url(
                settings.redis_url, **_pool_options(settings, ASYNC_MAX_CONNECTIONS)
            )
        return _async_pool


def get_sync_client() -> redis.Redis:
    """Client on the shared sync pool, for worker-side job updates."""
    return redis.Redis(connection_pool=_get_sync_pool())


async def get_async_client() -> aioredis.Redis:
    """Client on the shared async pool."""
    return aioredis.Redis(connection_pool=_get_async_pool())


def close_all_sync() -> None:
    """Drop the sync pool (Celery worker shutdown)."""
    global _sync_pool
    with _lock:
        pool, _sync_pool = _sync_pool, None
    if pool is not None:
        try:
            pool.disconnect()
        except redis.RedisError as e:
            logger.warning(f"Error closing sync Redis pool: {e}")


async def close_all_async() -> None:
    """Drop the async pool (API shutdown)."""
    global _async_pool
    with _lock:
        pool, _async_pool = _async_pool, None
    if pool is not None:
        try:
            await pool.disconnect()
        except redis.RedisError as e:
            logger.warning(f"Error closing async Redis pool: {e}")
