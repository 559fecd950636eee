"""
Redis connection management.

Provides a shared asyncio ``ConnectionPool`` and a convenience
factory for ``redis.asyncio.Redis`` clients.  Socket timeouts are
applied at the pool level so a stalled Redis can only delay a
cache call by a bounded amount.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from medianest.core.config import Settings, get_settings

# ── Global Redis connection pool ────────────────────────

_redis_pool: aioredis.ConnectionPool | None = None


def get_redis_pool(settings: Settings | None = None) -> aioredis.ConnectionPool:
    """Return a module-level Redis ``ConnectionPool``.

    Reusing a single pool avoids the overhead of creating
    and tearing down connections per request.

    Args:
        settings: Optional settings override (defaults to the
            cached application settings).

    Returns:
        A shared ``ConnectionPool`` instance.
    """
    global _redis_pool
    if _redis_pool is None:
        settings = settings or get_settings()
        _redis_pool = aioredis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
    return _redis_pool


def get_redis_client(settings: Settings | None = None) -> aioredis.Redis:
    """Return an asyncio Redis client on the shared pool.

    The client is long-lived: the application creates one at
    startup and closes it via ``close_redis_pool`` on shutdown.

    Returns:
        A ``redis.asyncio.Redis`` instance on the shared pool.
    """
    return aioredis.Redis(connection_pool=get_redis_pool(settings))


async def close_redis_pool() -> None:
    """Disconnect every pooled connection and forget the pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None
