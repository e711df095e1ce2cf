"""Response replay cache for LLM generate and stream calls."""

from replay_cache.cache import ResponseCacheMiddleware
from replay_cache.model import CachedLanguageModel, wrap_language_model

__all__ = [
    "CachedLanguageModel",
    "ResponseCacheMiddleware",
    "wrap_language_model",
]
