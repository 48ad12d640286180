"""
Redis Caching and Locking Layer

Caches settlement status lookups for the app-blocking boundary and holds the
per-date batch lock. Degrades gracefully if Redis is unavailable: reads miss,
writes are dropped and locks fail open.
"""
import json
import logging
from typing import Optional, Any
import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None

SETTLEMENT_STATUS_TTL_S = 300


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        # Test connection
        _redis_client.ping()
        logger.info("Redis connection established")
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Caching disabled.")
        _redis_client = None
        return None


def cache_key(prefix: str, *args) -> str:
    """Generate cache key from prefix and arguments."""
    return ":".join([prefix] + [str(a) for a in args if a is not None])


def get_cache(key: str) -> Optional[Any]:
    """Get value from cache. Returns None if not found or Redis unavailable."""
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value:
            return json.loads(value)
        return None
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache get error for key {key}: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = SETTLEMENT_STATUS_TTL_S) -> bool:
    """Set value in cache. Returns True if successful, False otherwise."""
    client = get_redis_client()
    if not client:
        return False

    try:
        client.setex(key, ttl, json.dumps(value, default=str))
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache set error for key {key}: {e}")
        return False


def delete_cache(key: str) -> bool:
    """Delete key from cache. Returns True if successful, False otherwise."""
    client = get_redis_client()
    if not client:
        return False

    try:
        client.delete(key)
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Cache delete error for key {key}: {e}")
        return False


def settlement_status_key(user_id, settlement_date) -> str:
    return cache_key("settlement_status", user_id, settlement_date)


def invalidate_settlement_status(user_id, settlement_date) -> bool:
    return delete_cache(settlement_status_key(user_id, settlement_date))


def _lock_key(name: str) -> str:
    return cache_key("lock", name)


def acquire_lock(name: str, ttl_s: int) -> bool:
    """
    Acquire a named in-flight lock.
    Returns True if acquired, False if another holder has it.
    """
    client = get_redis_client()
    if not client:
        return True  # fail open

    try:
        return bool(client.set(_lock_key(name), "1", nx=True, ex=ttl_s))
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Lock acquire error for {name}: {e}")
        return True  # fail open


def release_lock(name: str) -> None:
    """Release a named lock after the holder finishes."""
    client = get_redis_client()
    if not client:
        return
    try:
        client.delete(_lock_key(name))
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Lock release error for {name}: {e}")
