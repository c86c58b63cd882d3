"""Feed cache with stale-while-revalidate semantics.

Each entry carries ``fresh_until`` and ``hard_until``. Fresh entries are
served as-is; stale ones are served while one background refresh per key
recomputes them; expired ones are recomputed inline. Cache failures are
logged and never fail the caller.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Protocol

import redis

from medinet.core.settings import settings

logger = logging.getLogger(__name__)

FEED_KEY_PREFIX = "post:feed"
REFRESH_LOCK_SECONDS = 30

HIT_FRESH = "fresh"
HIT_STALE = "stale"
MISS = "miss"


def feed_cache_key(viewer_id: int, sort: str, limit: int, offset: int = 0) -> str:
    return f"{FEED_KEY_PREFIX}:{viewer_id}:{sort}:{limit}:{offset}"


class CacheBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...

    def acquire(self, key: str, ttl_seconds: int) -> bool: ...

    def release(self, key: str) -> None: ...


class MemoryCacheBackend:
    """Process-local backend used when Redis is disabled (``REDIS_URL=memory://``)."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                self._values.pop(key, None)
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._values[key] = (value, self._clock() + ttl_seconds)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._values if key.startswith(prefix)]
            for key in keys:
                del self._values[key]
            return len(keys)

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            item = self._values.get(key)
            if item is not None and self._clock() < item[1]:
                return False
            self._values[key] = ("1", self._clock() + ttl_seconds)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class RedisCacheBackend:
    """Redis-backed cache shared by every API process."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        client = redis.Redis.from_url(
            url,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
            health_check_interval=30,
            retry_on_timeout=True,
        )
        return cls(client)

    def get(self, key: str) -> str | None:
        value = self._redis.get(key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._redis.set(key, value, ex=ttl_seconds)

    def delete_prefix(self, prefix: str) -> int:
        keys = list(self._redis.scan_iter(match=f"{prefix}*", count=100))
        if not keys:
            return 0
        return int(self._redis.delete(*keys))

    def acquire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self._redis.set(key, "1", nx=True, ex=ttl_seconds))

    def release(self, key: str) -> None:
        self._redis.delete(key)


CACHE_ERRORS = (redis.RedisError, OSError, ValueError, TypeError)


class FeedCache:
    """Stale-while-revalidate wrapper around a :class:`CacheBackend`."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        fresh_ttl: int | None = None,
        hard_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
        executor: Executor | None = None,
    ) -> None:
        self.backend = backend
        self.fresh_ttl = fresh_ttl if fresh_ttl is not None else settings.feed_cache_ttl_seconds
        self.hard_ttl = max(
            self.fresh_ttl,
            hard_ttl if hard_ttl is not None else settings.feed_cache_hard_ttl_seconds,
        )
        self._clock = clock
        self._executor = executor
        self._inflight: set[str] = set()
        self._inflight_lock = threading.Lock()

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="feed-refresh")
        return self._executor

    def _read(self, key: str) -> dict[str, Any] | None:
        try:
            raw = self.backend.get(key)
            return json.loads(raw) if raw else None
        except CACHE_ERRORS as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    def store(self, key: str, value: Any) -> bool:
        now = self._clock()
        entry = {
            "value": value,
            "fresh_until": now + self.fresh_ttl,
            "hard_until": now + self.hard_ttl,
        }
        try:
            self.backend.set(key, json.dumps(entry), self.hard_ttl)
            return True
        except CACHE_ERRORS as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            return False

    def invalidate_prefix(self, prefix: str) -> None:
        try:
            self.backend.delete_prefix(prefix)
        except CACHE_ERRORS as exc:
            logger.warning("Cache invalidation failed for %s: %s", prefix, exc)

    def invalidate_viewer(self, viewer_id: int) -> None:
        self.invalidate_prefix(f"{FEED_KEY_PREFIX}:{viewer_id}:")

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        refresh: Callable[[], Any] | None = None,
    ) -> tuple[Any, str]:
        """Return ``(value, status)`` where status is fresh, stale or miss.

        Args:
            key: Cache key.
            compute: Produces the value inline on a miss.
            refresh: Produces the value in the background for stale hits;
                must not share state with the calling request. Defaults to
                ``compute``.
        """
        entry = self._read(key)
        now = self._clock()
        if entry is not None:
            if now < entry.get("fresh_until", 0):
                return entry["value"], HIT_FRESH
            if now < entry.get("hard_until", 0):
                self.schedule_refresh(key, refresh or compute)
                return entry["value"], HIT_STALE

        value = compute()
        self.store(key, value)
        return value, MISS

    def schedule_refresh(self, key: str, refresh: Callable[[], Any]) -> bool:
        """Start a background refresh unless one is already in flight for ``key``."""
        with self._inflight_lock:
            if key in self._inflight:
                return False
            self._inflight.add(key)

        lock_key = f"{key}:refresh"
        try:
            acquired = self.backend.acquire(lock_key, REFRESH_LOCK_SECONDS)
        except CACHE_ERRORS as exc:
            logger.warning("Cache refresh lock failed for %s: %s", key, exc)
            acquired = True
        if not acquired:
            self._finish(key, None)
            return False

        def job() -> None:
            try:
                self.store(key, refresh())
            except Exception as exc:  # noqa: BLE001 - background refresh is best effort
                logger.warning("Background cache refresh failed for %s: %s", key, exc)
            finally:
                self._finish(key, lock_key)

        self._get_executor().submit(job)
        return True

    def _finish(self, key: str, lock_key: str | None) -> None:
        if lock_key is not None:
            try:
                self.backend.release(lock_key)
            except CACHE_ERRORS as exc:
                logger.warning("Cache refresh unlock failed for %s: %s", key, exc)
        with self._inflight_lock:
            self._inflight.discard(key)

    def shutdown(self) -> None:
        """Stop the refresh executor without waiting for queued refreshes."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


_feed_cache: FeedCache | None = None


def build_feed_cache() -> FeedCache:
    if settings.cache_enabled:
        return FeedCache(RedisCacheBackend.from_url(settings.redis_url))
    return FeedCache(MemoryCacheBackend())


def get_feed_cache() -> FeedCache:
    """Return the process-wide feed cache."""
    global _feed_cache
    if _feed_cache is None:
        _feed_cache = build_feed_cache()
    return _feed_cache
