"""Async Redis helpers shared by the service (rate-limit counters)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Config

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None
_redis_lock = asyncio.Lock()


async def get_redis() -> Redis:
    """Return a shared Redis client instance."""
    global _redis_client

    if _redis_client is None:
        async with _redis_lock:
            if _redis_client is None:
                _redis_client = Redis.from_url(
                    Config.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                )
    return _redis_client


async def close_redis() -> None:
    """Close the shared Redis connection if it exists."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError as exc:
            logger.debug("Failed to close Redis connection cleanly: %s", exc)
        finally:
            _redis_client = None


async def incr_window_counter(key: str, window_ms: int, client: Optional[Redis] = None) -> Optional[int]:
    """Atomically bump a fixed-window counter and return its new value.

    The key receives a millisecond TTL when it is created, so the window
    starts at the first hit. Returns None when Redis is unavailable.
    """
    try:
        client = client or await get_redis()
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.pexpire(key, window_ms, nx=True)
            count, _ = await pipe.execute()
    except RedisError as exc:
        logger.debug("Redis counter update failed for key %s: %s", key, exc)
        return None

    return int(count)


async def cache_delete(*keys: str) -> None:
    """Remove provided keys from Redis, ignoring missing ones."""
    if not keys:
        return
    try:
        client = await get_redis()
        await client.delete(*keys)
    except RedisError as exc:
        logger.debug("Redis delete failed for keys %s: %s", keys, exc)
