"""Shared types for model invocation and caching.

Results and stream parts are plain JSON-like mappings so that any provider
adapter can sit behind the cache. A stream part always carries a ``type``
discriminator; ``response-metadata`` parts carry the generation timestamp.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

GenerateParams = dict[str, Any]
GenerateResult = dict[str, Any]
StreamPart = dict[str, Any]

GenerateCall = Callable[[], Awaitable[GenerateResult]]
# A stream call may return the iterator directly or an awaitable resolving to it
StreamCall = Callable[
    [], AsyncIterator[StreamPart] | Awaitable[AsyncIterator[StreamPart]]
]


class StreamPartType(StrEnum):
    """Discriminator values for stream parts."""
    RESPONSE_METADATA = "response-metadata"
    TEXT_DELTA = "text-delta"
    TOOL_CALL_DELTA = "tool-call-delta"
    FINISH = "finish"


@runtime_checkable
class LanguageModel(Protocol):
    """Anything that can generate a result or stream parts for a request."""

    async def generate(self, params: GenerateParams) -> GenerateResult: ...

    def stream(self, params: GenerateParams) -> AsyncIterator[StreamPart]: ...
