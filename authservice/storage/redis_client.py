from __future__ import annotations

import redis.asyncio as aioredis
from redis import Redis

# Default operation timeout for Redis commands
DEFAULT_OPERATION_TIMEOUT = 5.0


def create_redis_client(
    redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT
) -> aioredis.Redis:
    """Async client shared by the banned-token and 2FA code stores."""
    return aioredis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


def verify_redis_connection(redis_url: str) -> None:
    """Assert Redis connectivity before wiring Redis-backed stores."""
    # A short-lived synchronous client avoids binding the async client to a
    # temporary event loop during startup checks.
    sync_client = Redis.from_url(redis_url, decode_responses=True)
    try:
        sync_client.ping()
    finally:
        sync_client.close()


async def close_redis_client(client: aioredis.Redis) -> None:
    await client.aclose()
