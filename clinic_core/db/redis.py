"""Shared Redis client for check-in claims and observed consultation averages."""

import redis.asyncio as redis

from clinic_core.core.config import get_settings

_redis: redis.Redis | None = None


def bind_redis(client: redis.Redis | None) -> None:
    """Install (or clear, with None) the client returned by get_redis()."""
    global _redis
    _redis = client


async def init_redis(url: str | None = None) -> None:
    """Connect the shared Redis client and verify connectivity."""
    if _redis is not None:
        return

    settings = get_settings()
    client = redis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=5,
    )
    await client.ping()
    bind_redis(client)


async def close_redis() -> None:
    """Close the Redis connection pool."""
    if _redis is not None:
        await _redis.aclose()
    bind_redis(None)


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
