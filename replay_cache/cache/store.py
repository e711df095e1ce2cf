"""Typed access to a cache backend.

CacheStore wraps a CacheBackend and never raises: every read or write
comes back as a StoreResult that is either a hit, a miss, a completed
write, or a failure carrying the reason. The response cache decides what
a failure means (a miss for reads, nothing at all for writes) by looking
at the result instead of catching exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from replay_cache.cache.backend import CacheBackend

log = structlog.get_logger(__name__)


class StoreOutcome(StrEnum):
    HIT = "hit"
    MISS = "miss"
    WRITTEN = "written"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StoreResult:
    """Outcome of one store operation."""

    outcome: StoreOutcome
    value: Any = None
    error: str | None = None

    @classmethod
    def hit(cls, value: Any) -> StoreResult:
        return cls(StoreOutcome.HIT, value=value)

    @classmethod
    def miss(cls) -> StoreResult:
        return cls(StoreOutcome.MISS)

    @classmethod
    def written(cls) -> StoreResult:
        return cls(StoreOutcome.WRITTEN)

    @classmethod
    def failed(cls, reason: str) -> StoreResult:
        return cls(StoreOutcome.FAILED, error=reason)

    @property
    def is_hit(self) -> bool:
        return self.outcome == StoreOutcome.HIT

    @property
    def is_failure(self) -> bool:
        return self.outcome == StoreOutcome.FAILED


class CacheStore:
    """get / set-with-TTL over a backend, with failures as values."""

    def __init__(self, backend: CacheBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    async def read(self, key: str) -> StoreResult:
        """Look up ``key``. Never raises."""
        try:
            value = await self._backend.get(key)
        except Exception as exc:
            log.warning(
                "cache.store.read_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return StoreResult.failed(f"{type(exc).__name__}: {exc}")
        if value is None:
            return StoreResult.miss()
        return StoreResult.hit(value)

    async def write(self, key: str, value: Any, ttl: int) -> StoreResult:
        """Store ``value`` under ``key`` for ``ttl`` seconds. Never raises."""
        try:
            await self._backend.set(key, value, ttl)
        except Exception as exc:
            log.warning(
                "cache.store.write_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return StoreResult.failed(f"{type(exc).__name__}: {exc}")
        return StoreResult.written()
