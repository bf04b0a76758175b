# services/cache.py
"""
Redis-backed cache for derived data such as beer statistics.

Every operation degrades to a no-op when Redis is disabled or unreachable,
so callers always fall back to the database.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class CacheService:
    """JSON cache with TTLs and pattern invalidation"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, default_ttl: int = 600,
                 prefix: str = 'beer_review'):
        self.redis_client = redis_client
        self.default_ttl = default_ttl
        self.prefix = prefix
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.redis_client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {str(e)}")
            return None

        if raw is None:
            self.misses += 1
            return None
        self.hits += 1
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            self.redis_client.setex(self._key(key), ttl or self.default_ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {str(e)}")
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key starting with ``pattern``"""
        if not self.enabled:
            return 0
        removed = 0
        try:
            for key in self.redis_client.scan_iter(match=self._key(f"{pattern}*"), count=500):
                removed += self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {str(e)}")
        if removed:
            logger.debug(f"Invalidated {removed} cache keys for {pattern}")
        return removed

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        data = {
            'enabled': self.enabled,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': round(self.hits / total * 100, 1) if total else 0.0,
        }
        if self.enabled:
            try:
                data['keys'] = sum(1 for _ in self.redis_client.scan_iter(match=self._key('*'), count=500))
            except redis.RedisError as e:
                data['error'] = str(e)
        return data


cache_service = CacheService()


def init_cache(redis_client: Optional[redis.Redis], default_ttl: int = 600) -> CacheService:
    """Point the shared cache at a Redis client (None disables it)"""
    cache_service.redis_client = redis_client
    cache_service.default_ttl = default_ttl
    cache_service.hits = 0
    cache_service.misses = 0
    return cache_service
