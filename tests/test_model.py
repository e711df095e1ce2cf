"""Tests for the drop-in CachedLanguageModel wrapper."""

from __future__ import annotations

from typing import Any

import pytest

from replay_cache.cache.backend import InMemoryCacheBackend
from replay_cache.cache.middleware import ResponseCacheMiddleware
from replay_cache.llm import LLMClient
from replay_cache.model import CachedLanguageModel, wrap_language_model
from replay_cache.types import LanguageModel


class FakeModel:
    """In-process LanguageModel that counts its calls."""

    def __init__(self, result: dict[str, Any], parts: list[dict[str, Any]]) -> None:
        self.result = result
        self.parts = parts
        self.generate_calls = 0
        self.stream_calls = 0

    async def generate(self, params: dict[str, Any]) -> dict[str, Any]:
        self.generate_calls += 1
        return self.result

    async def stream(self, params: dict[str, Any]):
        self.stream_calls += 1
        for part in self.parts:
            yield part


@pytest.fixture
def fake_model(t0, sample_parts) -> FakeModel:
    return FakeModel({"text": "hi", "response": {"timestamp": t0}}, sample_parts)


class TestCachedLanguageModel:
    """Wrapped models keep their interface and gain the cache."""

    def test_models_satisfy_protocol(self, fake_model, middleware, fake_settings):
        assert isinstance(fake_model, LanguageModel)
        assert isinstance(LLMClient(fake_settings), LanguageModel)
        assert isinstance(CachedLanguageModel(fake_model, middleware), LanguageModel)

    @pytest.mark.asyncio
    async def test_generate_is_cached(self, fake_model, middleware, t0):
        model = CachedLanguageModel(fake_model, middleware)
        params = {"model": "m1", "prompt": "hello"}

        first = await model.generate(params)
        await middleware.drain()
        second = await model.generate(params)

        assert fake_model.generate_calls == 1
        assert first == second == {"text": "hi", "response": {"timestamp": t0}}

    @pytest.mark.asyncio
    async def test_stream_is_replayed(self, fake_model, middleware, sample_parts):
        model = CachedLanguageModel(fake_model, middleware)
        params = {"model": "m1", "prompt": "hello"}

        live = [part async for part in model.stream(params)]
        await middleware.drain()
        replayed = [part async for part in model.stream(params)]

        assert fake_model.stream_calls == 1
        assert live == replayed == sample_parts

    @pytest.mark.asyncio
    async def test_abandoned_wrapped_stream_is_not_cached(
        self, fake_model, middleware, backend
    ):
        model = CachedLanguageModel(fake_model, middleware)
        params = {"model": "m1", "prompt": "hello"}

        stream = model.stream(params)
        await stream.__anext__()
        await stream.aclose()
        await middleware.drain()

        assert await backend.get(middleware.cache_key(params, "stream")) is None

    @pytest.mark.asyncio
    async def test_uncacheable_stream_passes_through(self, fake_model, sample_parts):
        backend = InMemoryCacheBackend()
        model = wrap_language_model(
            fake_model,
            middleware=ResponseCacheMiddleware(backend, max_key_bytes=8),
        )
        params = {"model": "m1", "prompt": "hello"}

        first = [part async for part in model.stream(params)]
        second = [part async for part in model.stream(params)]

        assert first == second == sample_parts
        assert fake_model.stream_calls == 2
        assert (await backend.info())["total_keys"] == 0


class TestWrapLanguageModel:
    """wrap_language_model() factory."""

    def test_builds_middleware_from_settings(self, fake_model, fake_settings):
        model = wrap_language_model(fake_model, settings=fake_settings)
        assert isinstance(model, CachedLanguageModel)
        assert isinstance(model.middleware._store.backend, InMemoryCacheBackend)
        assert model.middleware._ttl == fake_settings.cache_ttl_seconds

    def test_reuses_given_middleware(self, fake_model, middleware):
        model = wrap_language_model(fake_model, middleware=middleware)
        assert model.middleware is middleware
