"""Request fingerprinting - the cache key for a model invocation.

A fingerprint is derived from a canonical JSON serialization of the
invocation parameters (model id, messages, sampling settings, tools...).
Canonical means: object keys sorted, compact separators, UTF-8 text kept
as-is, sets ordered by their own canonical form, integral floats written
as integers. Two requests that compare equal therefore always serialize to
the same string, no matter how their dicts were built: ``{"temperature": 1}``
and ``{"temperature": 1.0}`` share a key.

The serialized form is size-checked before hashing. A request above the
ceiling is uncacheable: the caller still runs it, just without the cache.

Cache keys use SHA-256 of the canonical form so raw prompts never appear in
the store key namespace and key length stays constant.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel

DEFAULT_MAX_KEY_BYTES = 32768


class UncacheableRequestError(ValueError):
    """The request cannot be used as a cache key."""


class UnserializableRequestError(UncacheableRequestError):
    """The request contains values with no canonical JSON form."""


class OversizeRequestError(UncacheableRequestError):
    """The canonical form of the request exceeds the key size ceiling."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(
            f"canonical request is {size_bytes} bytes, ceiling is {max_bytes}"
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


@dataclasses.dataclass(frozen=True, slots=True)
class Fingerprint:
    """Canonical serialization of a request plus its digest."""

    canonical: str
    digest: str
    size_bytes: int

    def key(self, namespace: str) -> str:
        """Return the store key for this fingerprint under ``namespace``."""
        return f"{namespace}:{self.digest}"


def _normalize(value: Any) -> Any:
    """Rewrite integral floats as ints throughout a JSON-like structure."""
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _canonical_default(value: Any) -> Any:
    """json.dumps hook for values without a native JSON form."""
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="json"))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _normalize(dataclasses.asdict(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        # Order-irrelevant: sort members by their canonical text
        return [_normalize(v) for v in sorted(value, key=canonical_json)]
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Serialize ``value`` deterministically.

    Raises:
        TypeError: A value has no canonical JSON form
        ValueError: A float is NaN or infinite
        RecursionError: The structure is circular
    """
    return json.dumps(
        _normalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_canonical_default,
    )


def fingerprint(
    params: Any,
    *,
    max_bytes: int = DEFAULT_MAX_KEY_BYTES,
) -> Fingerprint:
    """Compute the fingerprint of a request.

    Args:
        params: Invocation parameters (JSON-like mapping)
        max_bytes: Ceiling on the UTF-8 size of the canonical form

    Returns:
        Fingerprint with canonical text, SHA-256 hex digest and size.

    Raises:
        UnserializableRequestError: ``params`` has no canonical form
        OversizeRequestError: The canonical form is larger than ``max_bytes``
    """
    try:
        canonical = canonical_json(params)
    except (TypeError, ValueError, RecursionError) as exc:
        raise UnserializableRequestError(str(exc)) from exc

    encoded = canonical.encode("utf-8")
    if len(encoded) > max_bytes:
        raise OversizeRequestError(len(encoded), max_bytes)

    return Fingerprint(
        canonical=canonical,
        digest=hashlib.sha256(encoded).hexdigest(),
        size_bytes=len(encoded),
    )
