"""
Redis client factory for the optional shared retrieval cache.

Provides:
- Async Redis client with connection pooling
- Graceful degradation: returns None when Redis is unconfigured or unreachable
- fakeredis in the test environment

The client is created per service instance and injected into the caches that
use it; there is no process-wide singleton.
"""

import os
from typing import Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


def _redact(redis_url: str) -> str:
    return redis_url.split("@")[-1] if "@" in redis_url else redis_url.split("//")[-1]


async def create_redis_client(redis_url: Optional[str], use_fake: Optional[bool] = None) -> Optional[redis.Redis]:
    """
    Create an async Redis client and verify the connection.

    Args:
        redis_url: Redis connection URL; None disables the shared cache
        use_fake: If True, use fakeredis. If None, auto-detect from LEGALRAG_APP_ENV.

    Returns:
        Redis client instance or None if unavailable

    Raises:
        No exceptions - returns None on failure for graceful degradation
    """
    if use_fake is None:
        use_fake = os.getenv("LEGALRAG_APP_ENV") == "test"

    if use_fake:
        from fakeredis import aioredis as fakeredis

        logger.info("Using fakeredis for the shared retrieval cache")
        return fakeredis.FakeRedis(decode_responses=True)

    if not redis_url:
        logger.info(
            "Redis URL not configured, shared retrieval cache disabled",
            hint="Set LEGALRAG_REDIS_URL to share cached results across processes",
        )
        return None

    try:
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        await client.ping()
        logger.info("Redis client initialized", url=_redact(redis_url), max_connections=20)
        return client

    except redis.ConnectionError as e:
        logger.error(
            "Redis connection failed",
            error=str(e),
            redis_url=_redact(redis_url),
            hint="Check LEGALRAG_REDIS_URL and ensure Redis server is running",
        )
        return None

    except Exception as e:
        logger.error("Unexpected error initializing Redis", error=str(e), error_type=type(e).__name__)
        return None


async def close_redis_client(client: Optional[redis.Redis]) -> None:
    """Close a Redis client, ignoring errors."""
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning("Error closing Redis client", error=str(e))


async def health_check(client: Optional[redis.Redis]) -> bool:
    """
    Check Redis health.

    Returns:
        True if Redis is healthy, False otherwise
    """
    if client is None:
        return False
    try:
        return (await client.ping()) is True
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
