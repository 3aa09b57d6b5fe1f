"""
Redis client initialization and connection management.

Redis backs the distributed lock backend used when several API workers
share one database (settings.lock_backend = "redis").
"""

import redis.asyncio as redis
from redis.exceptions import RedisError
from fleetcore.core.config import settings


# Create async Redis client (connections are opened lazily)
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.
    
    This can be used as a FastAPI dependency if needed.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.
    
    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (RedisError, OSError):
        return False
