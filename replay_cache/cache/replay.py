"""Replay of a captured stream.

A cache hit for a streamed call has to look like a live stream to the
consumer: parts arrive one at a time through an async iterator, in the
order they were captured. A small delay between parts keeps consumers that
render incrementally from receiving everything in a single tick.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable

from replay_cache.types import StreamPart


async def replay_stream(
    parts: Iterable[StreamPart],
    *,
    initial_delay_ms: int = 0,
    chunk_delay_ms: int = 10,
) -> AsyncIterator[StreamPart]:
    """Yield ``parts`` in order with an optional delay before and between them."""
    if initial_delay_ms > 0:
        await asyncio.sleep(initial_delay_ms / 1000)
    for index, part in enumerate(parts):
        if index and chunk_delay_ms > 0:
            await asyncio.sleep(chunk_delay_ms / 1000)
        yield part
