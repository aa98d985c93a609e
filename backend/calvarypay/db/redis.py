"""Redis client construction."""

import redis.asyncio as redis


async def create_redis(url: str, ping: bool = True) -> redis.Redis:
    """Create a Redis client backed by a connection pool.

    The ping is allowed to fail: the cache is a fail-open dependency, so the
    service starts even when Redis is down.
    """
    client = redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )

    if ping:
        await client.ping()

    return client


async def close_redis(client: redis.Redis | None) -> None:
    """Close the Redis connection pool."""
    if client is not None:
        await client.aclose()
