"""
Search response cache.

Entries are stored under ``search:<sha256>`` keys with a TTL. Every key is
also added to one tag set per entity kind the search covered
(``search-tag:<kind>``), so a write to one kind drops exactly the responses
that could contain it. A cache outage never fails a search: reads miss and
writes are skipped, with a warning logged.
"""

import hashlib
import json
import threading
import time
from typing import Any, Dict, Iterable, Optional, Set, Tuple

import redis
import structlog

from ..config import get_settings

logger = structlog.get_logger()

KEY_PREFIX = "search:"
TAG_PREFIX = "search-tag:"


def make_cache_key(payload: Dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def tag_key(kind: str) -> str:
    return TAG_PREFIX + kind


class SearchCache:
    """Interface shared by the cache backends."""

    ttl_seconds: int

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, tags: Iterable[str]) -> None:
        raise NotImplementedError

    def invalidate(self, *kinds: str) -> int:
        """Drop every entry tagged with any of ``kinds``; returns entries dropped."""
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class InMemorySearchCache(SearchCache):
    """Process-local cache for single-instance deployments and tests."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._tags: Dict[str, Set[str]] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, tags: Iterable[str]) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl_seconds, value)
            for kind in tags:
                self._tags.setdefault(tag_key(kind), set()).add(key)

    def invalidate(self, *kinds: str) -> int:
        removed = 0
        with self._lock:
            for kind in kinds:
                for key in self._tags.pop(tag_key(kind), set()):
                    if self._entries.pop(key, None) is not None:
                        removed += 1
        return removed

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisSearchCache(SearchCache):
    """Redis-backed cache shared by every API worker."""

    def __init__(
        self,
        url: str,
        ttl_seconds: int = 300,
        max_connections: int = 10,
        socket_timeout: float = 2.0,
    ):
        self.ttl_seconds = ttl_seconds
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=pool)

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            logger.warning("search_cache_unavailable", operation="get", error=str(exc))
            return None

    def set(self, key: str, value: str, tags: Iterable[str]) -> None:
        try:
            pipe = self._client.pipeline()
            pipe.set(key, value, ex=self.ttl_seconds)
            for kind in tags:
                pipe.sadd(tag_key(kind), key)
                # Tag sets outlive their newest member by at most one TTL
                pipe.expire(tag_key(kind), self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as exc:
            logger.warning("search_cache_unavailable", operation="set", error=str(exc))

    def invalidate(self, *kinds: str) -> int:
        removed = 0
        try:
            for kind in kinds:
                tag = tag_key(kind)
                keys = self._client.smembers(tag)
                pipe = self._client.pipeline()
                if keys:
                    pipe.delete(*keys)
                pipe.delete(tag)
                results = pipe.execute()
                if keys:
                    removed += results[0]
        except redis.RedisError as exc:
            logger.warning("search_cache_unavailable", operation="invalidate", error=str(exc))
        return removed

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def clear(self) -> None:
        try:
            keys = list(self._client.scan_iter(match=KEY_PREFIX + "*"))
            keys += list(self._client.scan_iter(match=TAG_PREFIX + "*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as exc:
            logger.warning("search_cache_unavailable", operation="clear", error=str(exc))


_cache: Optional[SearchCache] = None
_cache_lock = threading.Lock()


def build_search_cache() -> SearchCache:
    settings = get_settings()
    if settings.cache_backend == "redis":
        return RedisSearchCache(
            settings.redis_url,
            ttl_seconds=settings.search_cache_ttl_seconds,
            max_connections=settings.cache_max_connections,
            socket_timeout=settings.health_check_timeout_seconds,
        )
    return InMemorySearchCache(ttl_seconds=settings.search_cache_ttl_seconds)


def get_search_cache() -> SearchCache:
    """Process-wide cache instance, built from settings on first use."""
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = build_search_cache()
        return _cache


def set_search_cache(cache: Optional[SearchCache]) -> None:
    """Replace the process-wide cache (None rebuilds from settings)."""
    global _cache
    with _cache_lock:
        _cache = cache
