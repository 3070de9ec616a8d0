"""
Redis client for the notifier's pub/sub channels and the per-resource
assignment locks.

Redis is not a source of truth: if it is down, events are reported as
delivery warnings, and assignment creates fail until the locks can be
taken again. Committed state lives only in the database.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from backend.app.core.config import settings

logger = logging.getLogger("bus_clearance.redis")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return redis_client


async def ping_redis() -> bool:
    """True when Redis answers PING."""
    try:
        return await redis_client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed", extra={"error": repr(exc)})
        return False


async def close_redis() -> None:
    await redis_client.aclose()
