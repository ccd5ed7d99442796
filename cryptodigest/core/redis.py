"""Shared Redis client.

Subscriber records, the allowed-symbol catalog and the per-subscriber cycle
locks all live in one Redis database. The bot handlers, the digest worker
and the standalone broadcaster share this client; a process creates it on
first use and closes it on shutdown.
"""
import asyncio
import redis.asyncio as redis
from cryptodigest.core.config import settings


_client: redis.Redis | None = None
_client_lock = asyncio.Lock()


async def get_redis() -> redis.Redis:
    """Get the process-wide client, creating it on first call."""
    global _client

    if _client is not None:
        return _client

    async with _client_lock:
        # Another task may have created it while we waited
        if _client is None:
            _client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50
            )
    return _client


async def close_redis():
    """Close the client; the next get_redis() opens a new one."""
    global _client
    async with _client_lock:
        if _client is not None:
            await _client.aclose()
            _client = None
