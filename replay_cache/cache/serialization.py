"""Conversion between live model results and their stored JSON form.

The store holds plain JSON, which has no date type: a ``datetime`` written
into a cached result comes back as an ISO 8601 string. These helpers
convert results and stream parts into a JSON-safe shape on the way in and
put the response timestamps back on the way out, so a cache hit hands the
caller the same instant the live call produced.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel

from replay_cache.types import GenerateResult, StreamPart, StreamPartType

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class TimestampError(ValueError):
    """A stored timestamp could not be turned back into a datetime."""


def to_jsonable(value: Any) -> Any:
    """Return a JSON-safe deep copy of ``value``.

    datetimes become ISO 8601 strings (offset kept when present), tuples
    become lists, pydantic models and dataclasses become dicts.

    Raises:
        TypeError: ``value`` contains something with no JSON form
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    raise TypeError(f"{type(value).__name__} cannot be stored in the response cache")


def parse_timestamp(value: Any) -> datetime:
    """Materialize a stored timestamp.

    Strings are parsed as ISO 8601. Numbers are epoch milliseconds (UTC).
    datetimes pass through untouched.

    Raises:
        TimestampError: The value is not a recognisable timestamp
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        raise TimestampError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return _EPOCH + timedelta(milliseconds=value)
        except (OverflowError, ValueError) as exc:
            raise TimestampError(f"epoch value out of range: {value!r}") from exc
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise TimestampError(f"not an ISO 8601 timestamp: {value!r}") from exc
    raise TimestampError(f"not a timestamp: {value!r}")


def restore_result(cached: Mapping[str, Any]) -> GenerateResult:
    """Rebuild a generate result read from the store."""
    result = dict(cached)
    response = result.get("response")
    if isinstance(response, Mapping):
        response = dict(response)
        if response.get("timestamp") is not None:
            response["timestamp"] = parse_timestamp(response["timestamp"])
        result["response"] = response
    return result


def restore_part(part: Mapping[str, Any]) -> StreamPart:
    """Rebuild one stream part read from the store."""
    restored = dict(part)
    if (
        restored.get("type") == StreamPartType.RESPONSE_METADATA
        and restored.get("timestamp") is not None
    ):
        restored["timestamp"] = parse_timestamp(restored["timestamp"])
    return restored


def restore_parts(cached: Any) -> list[StreamPart]:
    """Rebuild a cached stream; the entry must be a list of part objects."""
    if not isinstance(cached, list):
        raise TypeError(f"cached stream is {type(cached).__name__}, expected list")
    parts: list[StreamPart] = []
    for part in cached:
        if not isinstance(part, Mapping):
            raise TypeError(f"cached stream part is {type(part).__name__}")
        parts.append(restore_part(part))
    return parts
