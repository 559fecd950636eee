"""
MongoDB connection management.

One ``AsyncMongoClient`` per process, created lazily and shared by
the sequence generator and the status store.  Server selection is
bounded by the store read timeout so an unreachable server fails
fast instead of hanging requests.
"""

from __future__ import annotations

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from medianest.core.config import Settings, get_settings

_mongo_client: AsyncMongoClient | None = None


def get_mongo_client(settings: Settings | None = None) -> AsyncMongoClient:
    """Return the shared ``AsyncMongoClient``.

    Datetimes come back timezone-aware (UTC) so they compare
    cleanly with ``datetime.now(timezone.utc)``.

    Returns:
        A shared client instance.
    """
    global _mongo_client
    if _mongo_client is None:
        settings = settings or get_settings()
        timeout_ms = int(settings.STORE_READ_TIMEOUT * 1000)
        _mongo_client = AsyncMongoClient(
            settings.MONGO_URI,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            appname=settings.APP_NAME,
        )
    return _mongo_client


def get_database(settings: Settings | None = None) -> AsyncDatabase:
    """Return the application database on the shared client."""
    settings = settings or get_settings()
    return get_mongo_client(settings)[settings.MONGO_DB]


async def close_mongo_client() -> None:
    """Close the shared client (application shutdown)."""
    global _mongo_client
    if _mongo_client is not None:
        await _mongo_client.close()
        _mongo_client = None
