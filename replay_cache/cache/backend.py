"""Cache backend implementations.

Defines the CacheBackend ABC and two concrete implementations:
- RedisCacheBackend: Production backend using Redis with JSON serialization
- InMemoryCacheBackend: Dict-based backend with TTL, for testing/dev

Backends only know get / set-with-TTL. Expiry is the store's job: there is
no delete, the TTL applied at write time is the only removal path.

Backends raise CacheBackendError when the store misbehaves. Turning those
failures into cache misses is the job of CacheStore (see store.py), not of
the backend.

The factory function get_cache_backend() selects the appropriate backend
based on settings. Redis is used when a URL is configured; InMemory is the
fallback so the cache works without a Redis connection.
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

log = structlog.get_logger(__name__)


class CacheBackendError(Exception):
    """The backing store failed to read or write a value."""


class CacheBackend(ABC):
    """Abstract interface all cache backends must implement."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return cached value for key, or None if not found / expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        """Store a JSON-serializable value under key with TTL in seconds."""

    @abstractmethod
    async def info(self) -> dict[str, Any]:
        """Return backend-specific info/stats dict."""

    async def close(self) -> None:
        """Release connections held by the backend."""


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCacheBackend(CacheBackend):
    """Production cache backend backed by Redis.

    Uses redis-py async for all operations. Values are JSON-serialised so
    they round-trip cleanly without pickle security risks. The client is
    created lazily on first call so construction never blocks.
    """

    def __init__(self, redis_url: str, password: str | None = None) -> None:
        self._redis_url = redis_url
        self._password = password
        self._client: aioredis.Redis | None = None

    def _get_client(self) -> aioredis.Redis:
        """Return or create the Redis client (lazy init)."""
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                password=self._password,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._get_client().get(key)
        except RedisError as exc:
            raise CacheBackendError(f"redis GET failed: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheBackendError(f"cached value is not valid JSON: {exc}") from exc

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            serialised = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise CacheBackendError(f"value is not JSON serializable: {exc}") from exc
        try:
            await self._get_client().setex(key, max(1, int(ttl)), serialised)
        except RedisError as exc:
            raise CacheBackendError(f"redis SETEX failed: {exc}") from exc

    async def info(self) -> dict[str, Any]:
        try:
            client = self._get_client()
            redis_info = await client.info()
            dbsize = await client.dbsize()
            return {
                "backend": "redis",
                "connected": True,
                "used_memory_human": redis_info.get("used_memory_human", "unknown"),
                "keyspace_hits": redis_info.get("keyspace_hits", 0),
                "keyspace_misses": redis_info.get("keyspace_misses", 0),
                "db_size": dbsize,
            }
        except RedisError as exc:
            return {
                "backend": "redis",
                "connected": False,
                "error": str(exc),
            }

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._client is not None:
            client, self._client = self._client, None
            try:
                await client.aclose()
            except RedisError as exc:
                log.warning("cache.redis.close_failed", error=str(exc))


# ---------------------------------------------------------------------------
# In-memory backend (testing / dev fallback)
# ---------------------------------------------------------------------------


class _CacheEntry:
    """Single entry stored by InMemoryCacheBackend."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, ttl: int) -> None:
        self.value = value
        self.expires_at: float = time.monotonic() + ttl

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed cache with TTL support.

    Serialised through JSON on write, like Redis, so values read back have
    the same shape a Redis round trip would give (no datetimes, no tuples).
    Guarded by an asyncio.Lock. Suitable for testing and single-process dev
    environments. Does NOT persist across process restarts.
    """

    def __init__(self) -> None:
        self._store: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        # Simple hit/miss counters for stats
        self._hits: int = 0
        self._misses: int = 0

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired:
                if entry is not None:
                    del self._store[key]
                self._misses += 1
                return None
            self._hits += 1
            return json.loads(entry.value)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            serialised = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise CacheBackendError(f"value is not JSON serializable: {exc}") from exc
        async with self._lock:
            self._store[key] = _CacheEntry(serialised, ttl)

    async def info(self) -> dict[str, Any]:
        async with self._lock:
            # Prune expired before counting
            expired = [k for k, v in self._store.items() if v.is_expired]
            for k in expired:
                del self._store[k]

            total_requests = self._hits + self._misses
            hit_rate = self._hits / total_requests if total_requests > 0 else 0.0

            return {
                "backend": "memory",
                "connected": True,
                "total_keys": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 4),
            }


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_cache_backend(settings: Any) -> CacheBackend:
    """Return the appropriate CacheBackend for the given settings.

    Uses Redis when a redis_url is configured, otherwise the in-memory
    backend so the cache works in dev without any infrastructure.

    Args:
        settings: Application Settings instance.

    Returns:
        A CacheBackend implementation ready for use.
    """
    redis_url: str = getattr(settings, "redis_url", "")

    if redis_url:
        secret = getattr(settings, "redis_password", None)
        password = secret.get_secret_value() if secret is not None else None
        log.info("cache.backend_selected", backend="redis")
        return RedisCacheBackend(redis_url, password=password)

    log.info("cache.backend_selected", backend="memory")
    return InMemoryCacheBackend()
