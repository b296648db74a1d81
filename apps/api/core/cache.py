"""
Redis Caching Layer

JSON cache over Redis used for form templates and idempotent replays.
Degrades gracefully: if Redis is unavailable every read is a miss and
every write is a no-op.
"""
import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

logger = logging.getLogger(__name__)

# One connection pool per Redis URL
_redis_clients: dict = {}


def get_redis_client(redis_url: Optional[str]) -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    if not redis_url:
        return None
    if redis_url in _redis_clients:
        return _redis_clients[redis_url]

    try:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client.ping()
        logger.info("Redis connection established")
        _redis_clients[redis_url] = client
        return client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Caching disabled.")
        return None


def cache_key(prefix: str, *args, **kwargs) -> str:
    """Generate cache key from prefix and arguments."""
    key_parts = [prefix]

    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))

    # Sorted for consistency, skip None values
    for k, v in sorted(kwargs.items()):
        if v is not None:
            key_parts.append(f"{k}:{v}")

    return ":".join(key_parts)


class JsonCache:
    """
    JSON values in Redis with a default TTL.

    Pass client directly (tests) or a redis_url; with neither, caching is off.
    """

    def __init__(self, redis_url: Optional[str] = None, default_ttl: int = 300, client=None):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self._client = client

    @property
    def client(self):
        if self._client is None and self.redis_url:
            self._client = get_redis_client(self.redis_url)
        return self._client

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None if not found or Redis unavailable."""
        client = self.client
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

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        client = self.client
        if not client:
            return False
        try:
            client.setex(
                key,
                ttl if ttl is not None else self.default_ttl,
                json.dumps(value, default=str)  # default=str handles datetime
            )
            return True
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache set error for key {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        client = self.client
        if not client:
            return False
        try:
            client.delete(key)
            return True
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache delete error for key {key}: {e}")
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern. Returns count of deleted keys."""
        client = self.client
        if not client:
            return 0
        try:
            keys = list(client.scan_iter(match=pattern))
            if keys:
                return client.delete(*keys)
            return 0
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"Cache invalidation error for pattern {pattern}: {e}")
            return 0
