"""
Shared test fixtures for pytest.

Provides common mocks and test data for all test modules:
- fake_settings: Test environment configuration
- backend: Fresh InMemoryCacheBackend
- middleware: ResponseCacheMiddleware over that backend, replay delays off
- failing_backend: Backend mock whose get/set always raise
- spy_backend: Backend mock that records calls and stores nothing
- make_stream: Factory building a live part stream, optionally failing
- sample_parts: A captured stream with a response-metadata part
- t0: Fixed timezone-aware generation timestamp
"""

from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from replay_cache.cache.backend import CacheBackend, CacheBackendError, InMemoryCacheBackend
from replay_cache.cache.middleware import ResponseCacheMiddleware
from replay_cache.config import Environment, Settings, get_settings

T0 = datetime(2025, 3, 14, 15, 9, 26, 535897, tzinfo=timezone.utc)


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep structlog context variables from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        redis_url="",
        litellm_base_url="http://localhost:4000",
        litellm_api_key="sk-test-key",
        litellm_default_model="openai/test-model",
        cache_ttl_seconds=120,
        cache_max_key_bytes=4096,
        cache_replay_initial_delay_ms=0,
        cache_replay_chunk_delay_ms=0,
    )


# ------------------------------------------------------------------ #
# Backends & middleware
# ------------------------------------------------------------------ #

@pytest.fixture
def backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def middleware(backend: InMemoryCacheBackend) -> ResponseCacheMiddleware:
    return ResponseCacheMiddleware(
        backend,
        ttl_seconds=60,
        replay_initial_delay_ms=0,
        replay_chunk_delay_ms=0,
    )


@pytest.fixture
def failing_backend() -> MagicMock:
    """Backend whose every read and write raises."""
    mock = MagicMock(spec=CacheBackend)
    mock.get = AsyncMock(side_effect=CacheBackendError("store unreachable"))
    mock.set = AsyncMock(side_effect=ConnectionError("store unreachable"))
    mock.info = AsyncMock(return_value={"backend": "mock", "connected": False})
    return mock


@pytest.fixture
def spy_backend() -> MagicMock:
    """Backend that always misses and records every call."""
    mock = MagicMock(spec=CacheBackend)
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=None)
    return mock


# ------------------------------------------------------------------ #
# Streams
# ------------------------------------------------------------------ #

async def _live_stream(
    parts: list[dict[str, Any]],
    error: Exception | None = None,
) -> AsyncIterator[dict[str, Any]]:
    for part in parts:
        yield part
    if error is not None:
        raise error


@pytest.fixture
def make_stream():
    """Factory: make_stream(parts, error=None) -> live async part stream."""
    return _live_stream


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def sample_parts() -> list[dict[str, Any]]:
    return [
        {"type": "response-metadata", "id": "resp-1", "model_id": "m1", "timestamp": T0},
        {"type": "text-delta", "text_delta": "Hel"},
        {"type": "text-delta", "text_delta": "lo"},
        {"type": "finish", "finish_reason": "stop", "usage": {"total_tokens": 7}},
    ]
