from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Optional

import redis

from app.core.metrics import metrics
from app.core.settings import SETTINGS

logger = logging.getLogger(__name__)


class MemoryCache:
    def __init__(self) -> None:
        self._store: dict[str, tuple[float | None, str]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        now = time.time()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and expires_at <= now:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        with self._lock:
            self._store[key] = (expires_at, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)


class CacheClient:
    """String cache backed by Redis when a URL is configured, else by ``MemoryCache``.

    Redis errors are logged and counted, and the call falls through to the local
    cache.
    """

    def __init__(self, redis_url: str | None) -> None:
        self._redis: Optional[redis.Redis] = None
        self._local = MemoryCache()
        if redis_url:
            try:
                self._redis = redis.Redis.from_url(redis_url, decode_responses=True)
            except Exception as exc:
                logger.warning("cache redis init failed, using memory cache: %s", exc)
                self._redis = None

    @property
    def redis_enabled(self) -> bool:
        return self._redis is not None

    def get_text(self, key: str) -> Optional[str]:
        if self._redis is not None:
            try:
                return self._redis.get(key)
            except Exception as exc:
                logger.warning("cache redis get failed: %s", exc)
                metrics.inc("chat_cache_errors_total", {"op": "get"})
        return self._local.get(key)

    def set_text(self, key: str, value: str, ttl: int | None = None) -> None:
        if self._redis is not None:
            try:
                if ttl is not None:
                    self._redis.setex(key, ttl, value)
                else:
                    self._redis.set(key, value)
                return
            except Exception as exc:
                logger.warning("cache redis set failed: %s", exc)
                metrics.inc("chat_cache_errors_total", {"op": "set"})
        self._local.set(key, value, ttl)

    def delete(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except Exception as exc:
                logger.warning("cache redis delete failed: %s", exc)
                metrics.inc("chat_cache_errors_total", {"op": "delete"})
        self._local.delete(key)


_cache: CacheClient | None = None


def get_cache() -> CacheClient:
    global _cache
    if _cache is not None:
        return _cache
    _cache = CacheClient(SETTINGS.redis_url or None)
    return _cache
