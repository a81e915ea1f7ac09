"""Redis caching service for lesson content and synthesized speech."""
import hashlib
import logging
from typing import Optional
import redis
from langcampus.core.config import settings

logger = logging.getLogger(__name__)

# Redis client (with graceful degradation); only connected when caching is enabled
redis_client = None
redis_available = False

if settings.cache_enabled:
    try:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()  # Test connection
        redis_available = True
    except Exception as e:
        logger.warning(f"Redis not available: {e}. Continuing without cache.")
        redis_client = None
        redis_available = False


def make_key(namespace: str, *parts: str) -> str:
    """Deterministic key: namespace plus md5 of the joined parts."""
    digest = hashlib.md5("\x1f".join(parts).encode()).hexdigest()
    return f"{namespace}:{digest}"


def get(key: str) -> Optional[str]:
    """
    Get value from cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None
    """
    if not redis_available or not redis_client:
        return None

    try:
        return redis_client.get(key)
    except redis.RedisError as e:
        logger.error(f"Cache get error: {e}")
        return None


def set(key: str, value: str, ttl: int) -> None:
    """Set value in cache with TTL (seconds)."""
    if not redis_available or not redis_client:
        return

    try:
        redis_client.setex(key, ttl, value)
    except redis.RedisError as e:
        logger.error(f"Cache set error: {e}")
