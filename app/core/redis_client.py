"""Redis client configuration and utilities."""

import redis
import redis.asyncio as aioredis
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None
_async_redis_client: aioredis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


def create_async_redis_client() -> aioredis.Redis:
    """
    Create a dedicated asyncio Redis client.

    Pub/sub listeners hold their connection for the lifetime of the process,
    so they get their own client instead of sharing the request-path one.
    """
    return aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
    )


def get_async_redis_client() -> aioredis.Redis:
    """Shared asyncio client for publishing from request handlers."""
    global _async_redis_client

    if _async_redis_client is None:
        _async_redis_client = create_async_redis_client()

    return _async_redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


async def close_async_redis_connection() -> None:
    """Close the shared asyncio client."""
    global _async_redis_client

    if _async_redis_client is not None:
        await _async_redis_client.aclose()
        _async_redis_client = None


class RateLimiter:
    """Fixed-window rate limiter backed by Redis counters."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize rate limiter with Redis client."""
        self.redis = redis_client

    def check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int = 60,
    ) -> bool:
        """
        Count one hit against ``key`` and report whether it is allowed.

        Args:
            key: Rate limit key (e.g., client IP)
            limit: Maximum number of hits per window
            window: Time window in seconds

        Returns:
            True if within limit, False if exceeded
        """
        try:
            current = int(self.redis.incr(key))
            if current == 1:
                self.redis.expire(key, window)
            return current <= limit
        except Exception as e:
            # Fail open: an unavailable Redis must not lock users out
            logger.warning("rate_limiter_unavailable", key=key, error=str(e))
            return True
