"""Response Caching Layer.

Public API:
    CacheBackend             - Abstract base for all backends
    RedisCacheBackend        - Redis-backed production store
    InMemoryCacheBackend     - Dict-backed store for dev/testing
    CacheBackendError        - Raised by backends on store failure
    get_cache_backend        - Factory: selects backend from settings

    CacheStore, StoreResult  - Backend access with failures as values

    Fingerprint, fingerprint - Canonical request key derivation

    ResponseCacheMiddleware  - Read-through cache for generate / stream calls
    replay_stream            - Replays captured stream parts
"""

from replay_cache.cache.backend import (
    CacheBackend,
    CacheBackendError,
    InMemoryCacheBackend,
    RedisCacheBackend,
    get_cache_backend,
)
from replay_cache.cache.fingerprint import (
    Fingerprint,
    OversizeRequestError,
    UncacheableRequestError,
    UnserializableRequestError,
    fingerprint,
)
from replay_cache.cache.middleware import ResponseCacheMiddleware
from replay_cache.cache.replay import replay_stream
from replay_cache.cache.store import CacheStore, StoreOutcome, StoreResult

__all__ = [
    "CacheBackend",
    "CacheBackendError",
    "RedisCacheBackend",
    "InMemoryCacheBackend",
    "get_cache_backend",
    "CacheStore",
    "StoreOutcome",
    "StoreResult",
    "Fingerprint",
    "fingerprint",
    "UncacheableRequestError",
    "UnserializableRequestError",
    "OversizeRequestError",
    "ResponseCacheMiddleware",
    "replay_stream",
]
