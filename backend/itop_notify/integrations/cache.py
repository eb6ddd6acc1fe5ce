"""Cache service with Protocol pattern for dependency injection.

Provides RedisCacheService (real cache) and NullCacheService (no-op fallback),
plus TTLCache, which stores an expiry wrapper next to each value and re-checks
the age of every hit instead of trusting the backing store's own eviction.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis

from ..config import APP_ID, settings

logger = logging.getLogger(__name__)

_CACHED_AT = "cached_at"
_TTL = "ttl"
_DATA = "data"


class CacheService(Protocol):
    """Cache service interface."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl: int) -> None: ...
    def delete(self, key: str) -> None: ...
    def delete_prefix(self, prefix: str) -> int: ...
    def ping(self) -> bool: ...


class RedisCacheService:
    """Redis-backed cache implementation."""

    def __init__(self, redis_url: str) -> None:
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._client.ping()

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError:
            logger.warning("Redis GET failed for %s", key, exc_info=True)
            return None

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self._client.setex(key, ttl, value)
        except redis.RedisError:
            logger.warning("Redis SETEX failed for %s", key, exc_info=True)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError:
            logger.warning("Redis DEL failed for %s", key, exc_info=True)

    def delete_prefix(self, prefix: str) -> int:
        removed = 0
        try:
            for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                removed += self._client.delete(key)
        except redis.RedisError:
            logger.warning("Redis prefix delete failed for %s", prefix, exc_info=True)
        return removed

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


class NullCacheService:
    """No-op cache for when Redis is unavailable."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl: int) -> None:
        pass

    def delete(self, key: str) -> None:
        pass

    def delete_prefix(self, prefix: str) -> int:
        return 0

    def ping(self) -> bool:
        return False


def create_cache_service() -> CacheService:
    """Factory: create the appropriate cache service based on configuration."""
    if not settings.redis_url:
        return NullCacheService()
    try:
        return RedisCacheService(settings.redis_url)
    except (redis.RedisError, ValueError):
        logger.warning("Redis unreachable at %s, caching disabled", settings.redis_url)
        return NullCacheService()


class TTLCache:
    """Application-level TTL cache over a CacheService.

    Entries are stored as ``{"cached_at", "ttl", "data"}``; a hit is only
    trusted while ``now - cached_at <= ttl``. Expired or malformed entries
    are deleted on read.
    """

    def __init__(
        self,
        backend: CacheService,
        namespace: str = f"{APP_ID}_ci_data",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._namespace = namespace
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> Any | None:
        full_key = self._key(key)
        raw = self._backend.get(full_key)
        if raw is None:
            logger.debug("Cache miss: %s", key)
            return None

        try:
            wrapper = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            wrapper = None
        if (
            not isinstance(wrapper, dict)
            or not isinstance(wrapper.get(_CACHED_AT), int | float)
            or not isinstance(wrapper.get(_TTL), int | float)
            or _DATA not in wrapper
        ):
            logger.warning("Cache entry has invalid format, dropping: %s", key)
            self._backend.delete(full_key)
            return None

        age = int(self._clock()) - wrapper[_CACHED_AT]
        if age > wrapper[_TTL]:
            logger.info(
                "Cache entry expired: %s (age=%ss, ttl=%ss, exceeded by %ss)",
                key, age, wrapper[_TTL], age - wrapper[_TTL],
            )
            self._backend.delete(full_key)
            return None

        logger.debug("Cache hit: %s (age=%ss, ttl=%ss)", key, age, wrapper[_TTL])
        return wrapper[_DATA]

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        wrapper = {_CACHED_AT: int(self._clock()), _TTL: int(ttl_seconds), _DATA: value}
        self._backend.set(self._key(key), json.dumps(wrapper, ensure_ascii=False), int(ttl_seconds))
        logger.debug("Cached %s (ttl=%ss)", key, ttl_seconds)

    def invalidate(self, key: str) -> None:
        self._backend.delete(self._key(key))
        logger.info("Cache entry invalidated: %s", key)

    def clear(self) -> int:
        removed = self._backend.delete_prefix(f"{self._namespace}:")
        logger.warning("All cache entries cleared (%d removed)", removed)
        return removed
