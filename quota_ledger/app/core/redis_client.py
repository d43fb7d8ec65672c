"""
Redis connection used for webhook event dedupe.

Redis holds only short-lived markers ("this gateway event was processed").
Nothing in it is authoritative; the ledger lives in the database.
"""

import logging

import redis.asyncio as redis
from quota_ledger.app.core.config import settings

logger = logging.getLogger(__name__)


def create_redis_client() -> redis.Redis:
    return redis.from_url(
        settings.redis_url,
        decode_responses=settings.redis_decode_responses,
    )


redis_client = create_redis_client()


async def get_redis():
    """FastAPI dependency for the webhook endpoint."""
    return redis_client


async def ping_redis() -> bool:
    """True when Redis answers; used by the health check."""
    try:
        return bool(await redis_client.ping())
    except redis.RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
