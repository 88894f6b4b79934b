"""
Redis client initialization and connection management.

Redis holds two kinds of short-lived state for this service: the token
revocation lists written by the auth service, and per-invoice reversal locks.
Both expire on their own, so nothing here needs a cleanup job.
"""

import logging

import redis.asyncio as redis
from payments_backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Shared async client; connections are opened lazily by the pool
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    FastAPI dependency returning the shared Redis client.

    Overridden in tests with an in-memory stand-in.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection for the health endpoint.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return bool(await redis_client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Release pooled connections on shutdown."""
    try:
        await redis_client.aclose()
    except Exception as e:
        logger.warning("Error closing Redis client: %s", e)
