"""Response cache middleware for model invocations.

Wraps a downstream "generate" or "stream" call with a read-through cache
keyed on the request fingerprint:

- invoke_once: request -> one result. A hit returns the stored result; a
  miss runs the call and returns its result; the store write finishes in
  the background.
- invoke_streaming: request -> async iterator of parts. A hit replays the
  stored parts; a miss opens the live stream on first iteration, forwards it
  while capturing every part, and stores the capture once the stream
  finishes cleanly.

Caching rules:
- Requests with no canonical form, or whose canonical form is over the key
  size ceiling, bypass the cache entirely (the store is never touched)
- Store failures are misses on read and no-ops on write; they never reach
  the caller
- Downstream failures propagate unchanged and are never cached
- A stream that errors, or that the consumer abandons, is never cached

There is no single-flight: concurrent misses for the same fingerprint each
run the downstream call and each write the entry (last write wins).
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog

from replay_cache.cache.backend import CacheBackend, get_cache_backend
from replay_cache.cache.fingerprint import (
    DEFAULT_MAX_KEY_BYTES,
    UncacheableRequestError,
    fingerprint,
)
from replay_cache.cache.replay import replay_stream
from replay_cache.cache.serialization import restore_parts, restore_result, to_jsonable
from replay_cache.cache.store import CacheStore
from replay_cache.config import Settings, get_settings
from replay_cache.types import (
    GenerateCall,
    GenerateParams,
    GenerateResult,
    StreamCall,
    StreamPart,
)

log = structlog.get_logger(__name__)

_GENERATE = "generate"
_STREAM = "stream"


async def _open_stream(call: StreamCall) -> AsyncIterator[StreamPart]:
    """Run a stream call that returns either an iterator or an awaitable of one."""
    stream = call()
    if inspect.isawaitable(stream):
        stream = await stream
    return stream


class ResponseCacheMiddleware:
    """Read-through cache in front of a model invocation.

    Holds no per-request state. The only mutable state is the set of
    background write tasks started by misses, kept so they are not garbage
    collected mid-flight and so callers can drain them.
    """

    def __init__(
        self,
        store: CacheStore | CacheBackend,
        *,
        ttl_seconds: int = 3600,
        max_key_bytes: int = DEFAULT_MAX_KEY_BYTES,
        namespace: str = "llmcache",
        replay_initial_delay_ms: int = 0,
        replay_chunk_delay_ms: int = 10,
    ) -> None:
        self._store = store if isinstance(store, CacheStore) else CacheStore(store)
        self._ttl = ttl_seconds
        self._max_key_bytes = max_key_bytes
        self._namespace = namespace
        self._replay_initial_delay_ms = replay_initial_delay_ms
        self._replay_chunk_delay_ms = replay_chunk_delay_ms
        self._pending_writes: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        backend: CacheBackend | None = None,
    ) -> ResponseCacheMiddleware:
        """Build the middleware from application settings.

        Args:
            settings: Settings instance. Falls back to get_settings().
            backend: Explicit backend. Falls back to get_cache_backend().
        """
        settings = settings or get_settings()
        return cls(
            backend or get_cache_backend(settings),
            ttl_seconds=settings.cache_ttl_seconds,
            max_key_bytes=settings.cache_max_key_bytes,
            namespace=settings.cache_namespace,
            replay_initial_delay_ms=settings.cache_replay_initial_delay_ms,
            replay_chunk_delay_ms=settings.cache_replay_chunk_delay_ms,
        )

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def cache_key(self, params: GenerateParams, kind: str = _GENERATE) -> str:
        """Return the store key for a request.

        Generate results and stream captures live under separate prefixes,
        so the same parameters never map one shape onto the other.

        Raises:
            UncacheableRequestError: The request cannot be fingerprinted
        """
        fp = fingerprint(params, max_bytes=self._max_key_bytes)
        return fp.key(f"{self._namespace}:{kind}")

    def _key_or_none(self, params: GenerateParams, kind: str) -> str | None:
        try:
            return self.cache_key(params, kind)
        except UncacheableRequestError as exc:
            log.debug("cache.response.uncacheable", kind=kind, reason=str(exc))
            return None

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def invoke_once(
        self,
        params: GenerateParams,
        call: GenerateCall,
    ) -> GenerateResult:
        """Return the cached result for ``params``, or run ``call`` and cache it.

        Args:
            params: Invocation parameters, used only to build the key
            call: Zero-argument coroutine function running the real request

        Returns:
            The downstream result, or the cached one with its response
            timestamp restored to a datetime.
        """
        key = self._key_or_none(params, _GENERATE)
        if key is None:
            return await call()

        lookup = await self._store.read(key)
        if lookup.is_hit:
            try:
                if not isinstance(lookup.value, Mapping):
                    raise TypeError(
                        f"cached result is {type(lookup.value).__name__}, expected object"
                    )
                cached = restore_result(lookup.value)
            except (TypeError, ValueError) as exc:
                log.warning("cache.response.unreadable", key=key, error=str(exc))
            else:
                log.debug("cache.response.hit", key=key)
                return cached

        log.debug("cache.response.miss", key=key, lookup=lookup.outcome)
        result = await call()
        self._schedule_write(key, result)
        return result

    async def invoke_streaming(
        self,
        params: GenerateParams,
        call: StreamCall,
    ) -> AsyncIterator[StreamPart]:
        """Return a replayed stream for ``params``, or a capturing live stream.

        Args:
            params: Invocation parameters, used only to build the key
            call: Zero-argument callable returning the live part iterator
                (or an awaitable resolving to it)

        Returns:
            An async iterator of parts. For uncacheable requests this is
            the downstream stream object itself. On a miss ``call`` runs
            when the iterator is first advanced, so an iterator that is
            never iterated leaves no upstream stream open.
        """
        key = self._key_or_none(params, _STREAM)
        if key is None:
            return await _open_stream(call)

        lookup = await self._store.read(key)
        if lookup.is_hit:
            try:
                parts = restore_parts(lookup.value)
            except (TypeError, ValueError) as exc:
                log.warning("cache.stream.unreadable", key=key, error=str(exc))
            else:
                log.debug("cache.stream.hit", key=key, parts=len(parts))
                return replay_stream(
                    parts,
                    initial_delay_ms=self._replay_initial_delay_ms,
                    chunk_delay_ms=self._replay_chunk_delay_ms,
                )

        log.debug("cache.stream.miss", key=key, lookup=lookup.outcome)
        return self._capture(key, call)

    # ------------------------------------------------------------------
    # Stream capture / background writes
    # ------------------------------------------------------------------

    async def _capture(
        self,
        key: str,
        call: StreamCall,
    ) -> AsyncIterator[StreamPart]:
        """Open the live stream, forward it unchanged, and store it once exhausted.

        An exception from the stream, a cancellation, or the consumer
        closing early all leave this generator before the write is
        scheduled, so partial captures are dropped.
        """
        stream = await _open_stream(call)
        captured: list[StreamPart] = []
        try:
            async for part in stream:
                captured.append(part)
                yield part
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self._schedule_write(key, captured)

    def _schedule_write(self, key: str, value: Any) -> None:
        """Snapshot ``value`` and dispatch the store write as a detached task.

        The snapshot is taken before returning, so a caller mutating the
        result it was handed cannot change what gets stored.
        """
        try:
            payload = to_jsonable(value)
        except TypeError as exc:
            log.warning("cache.response.unstorable", key=key, error=str(exc))
            return
        task = asyncio.create_task(self._persist(key, payload), name=f"cache-write:{key}")
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)
        log.debug("cache.write.scheduled", key=key)

    def _on_write_done(self, task: asyncio.Task[None]) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            log.debug("cache.write.cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.warning(
                "cache.write.task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _persist(self, key: str, payload: Any) -> None:
        """Write a JSON-safe payload to the store. Never raises."""
        outcome = await self._store.write(key, payload, self._ttl)
        if not outcome.is_failure:
            log.debug("cache.response.stored", key=key, ttl=self._ttl)

    # ------------------------------------------------------------------
    # Lifecycle / stats
    # ------------------------------------------------------------------

    @property
    def pending_writes(self) -> int:
        """Number of background store writes still in flight."""
        return len(self._pending_writes)

    async def drain(self) -> None:
        """Wait for every background store write started so far."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def get_cache_stats(self) -> dict[str, Any]:
        """Return backend statistics plus the number of pending writes."""
        info = await self._store.backend.info()
        return {
            "backend": info.get("backend", "unknown"),
            "connected": info.get("connected", False),
            "total_keys": info.get("total_keys", info.get("db_size", 0)),
            "hits": info.get("hits", info.get("keyspace_hits", 0)),
            "misses": info.get("misses", info.get("keyspace_misses", 0)),
            "pending_writes": self.pending_writes,
            "extra": info,
        }
