"""Redis connection and the JSON cache used for slot listings."""

import json
from typing import Any

import redis
from structlog import get_logger

from app.config import settings

logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


def _connect() -> redis.Redis:
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password or None,
        decode_responses=settings.redis_decode_responses,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
    )


def get_redis_client() -> redis.Redis:
    """Shared Redis client, connected lazily on first use."""
    global _redis_client

    if _redis_client is None:
        _redis_client = _connect()
    return _redis_client


async def check_redis_connection() -> bool:
    """True when Redis answers a PING."""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


def close_redis_connection() -> None:
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CacheManager:
    """JSON values in Redis.

    Every operation fails open: a Redis outage degrades to cache misses and
    never fails the booking path.
    """

    SCAN_BATCH = 100

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def get_json(self, key: str) -> Any | None:
        """Cached value for ``key``, or None on a miss or Redis error."""
        try:
            raw = self.redis.get(key)
        except Exception as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None
        return json.loads(raw) if raw else None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Store ``value`` as JSON.

        Args:
            key: Cache key
            value: Any JSON-encodable value; dates, UUIDs and decimals become strings
            ttl: Expiry in seconds, none when omitted

        Returns:
            Whether the value was written
        """
        payload = json.dumps(value, default=str)
        try:
            if ttl:
                self.redis.setex(key, ttl, payload)
            else:
                self.redis.set(key, payload)
        except Exception as e:
            logger.warning("cache_write_failed", key=key, error=str(e))
            return False
        return True

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob ``pattern``; returns how many went."""
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=self.SCAN_BATCH))
            if not keys:
                return 0
            return int(self.redis.delete(*keys))
        except Exception as e:
            logger.warning("cache_invalidation_failed", pattern=pattern, error=str(e))
            return 0
