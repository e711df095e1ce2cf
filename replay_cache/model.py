"""Drop-in cached language model.

CachedLanguageModel exposes the same generate / stream interface as the
model it wraps, so call sites swap one for the other without changes:

    client = LLMClient(settings)
    model = wrap_language_model(client, settings=settings)

    result = await model.generate({"model": "openai/gpt-4o-mini", "messages": [...]})
    async for part in model.stream({...}):
        ...
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from replay_cache.cache.middleware import ResponseCacheMiddleware
from replay_cache.config import Settings
from replay_cache.types import GenerateParams, GenerateResult, LanguageModel, StreamPart


class CachedLanguageModel:
    """LanguageModel that routes every call through a ResponseCacheMiddleware."""

    def __init__(self, model: LanguageModel, middleware: ResponseCacheMiddleware) -> None:
        self._model = model
        self._middleware = middleware

    @property
    def middleware(self) -> ResponseCacheMiddleware:
        return self._middleware

    async def generate(self, params: GenerateParams) -> GenerateResult:
        return await self._middleware.invoke_once(
            params, lambda: self._model.generate(params)
        )

    async def stream(self, params: GenerateParams) -> AsyncIterator[StreamPart]:
        parts = await self._middleware.invoke_streaming(
            params, lambda: self._model.stream(params)
        )
        if hasattr(parts, "aclose"):
            async with aclosing(parts) as closing:
                async for part in closing:
                    yield part
        else:
            async for part in parts:
                yield part


def wrap_language_model(
    model: LanguageModel,
    middleware: ResponseCacheMiddleware | None = None,
    settings: Settings | None = None,
) -> CachedLanguageModel:
    """Wrap ``model`` with the response cache.

    Args:
        model: Model to wrap (e.g. LLMClient)
        middleware: Existing middleware to share between models. Built
            from ``settings`` (or get_settings()) when omitted.
        settings: Settings used when building the middleware
    """
    if middleware is None:
        middleware = ResponseCacheMiddleware.from_settings(settings)
    return CachedLanguageModel(model, middleware)
