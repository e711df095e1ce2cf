"""LiteLLM wrapper for model-agnostic generate / stream calls.

LiteLLM provides a unified interface for 100+ LLM providers. We proxy
all calls through a LiteLLM proxy server to:
1. Keep API keys out of the application code
2. Enable model routing, fallbacks, and cost tracking at the proxy level
3. Support swapping models without code changes (just config)

This module:
- Wraps litellm.acompletion() for single-shot and streamed completions
- Normalizes provider responses into plain result / stream-part dicts,
  the shape the response cache stores and replays
- Handles retries with exponential backoff via tenacity
- Normalizes errors to our domain exceptions
- Logs token usage for billing/monitoring
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import litellm
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from replay_cache.config import Settings, get_settings
from replay_cache.types import GenerateParams, GenerateResult, StreamPart, StreamPartType

log = structlog.get_logger(__name__)


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable."""


# Types of errors worth retrying (transient network/rate-limit failures)
_RETRYABLE = (LLMRateLimitError, LLMUnavailableError)


def _translate_error(exc: Exception) -> LLMError:
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, litellm.exceptions.RateLimitError):
        return LLMRateLimitError(f"Rate limit from upstream LLM: {exc}")
    if isinstance(
        exc,
        (
            litellm.exceptions.ServiceUnavailableError,
            litellm.exceptions.Timeout,
            litellm.exceptions.APIConnectionError,
            ConnectionError,
        ),
    ):
        return LLMUnavailableError(f"LLM service unavailable: {exc}")
    return LLMError(f"LLM completion failed: {exc}")


def _timestamp(created: Any) -> datetime | None:
    if isinstance(created, (int, float)) and not isinstance(created, bool):
        return datetime.fromtimestamp(created, tz=UTC)
    return None


def _usage(usage: Any) -> dict[str, int | None]:
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", None),
        "completion_tokens": getattr(usage, "completion_tokens", None),
        "total_tokens": getattr(usage, "total_tokens", None),
    }


def _tool_call(call: Any) -> dict[str, Any]:
    function = getattr(call, "function", None)
    return {
        "id": getattr(call, "id", None),
        "name": getattr(function, "name", None),
        "arguments": getattr(function, "arguments", None),
    }


def normalize_response(response: Any) -> GenerateResult:
    """Turn a LiteLLM ModelResponse into a cacheable result dict."""
    try:
        choice = response.choices[0]
    except (AttributeError, IndexError, KeyError, TypeError):
        choice = None
    message = getattr(choice, "message", None)
    usage = getattr(response, "usage", None)

    return {
        "text": getattr(message, "content", None) or "",
        "tool_calls": [_tool_call(tc) for tc in (getattr(message, "tool_calls", None) or [])],
        "finish_reason": getattr(choice, "finish_reason", None),
        "usage": _usage(usage) if usage is not None else None,
        "response": {
            "id": getattr(response, "id", None),
            "model_id": getattr(response, "model", None),
            "timestamp": _timestamp(getattr(response, "created", None)),
        },
    }


def normalize_chunk(chunk: Any) -> list[StreamPart]:
    """Turn one LiteLLM stream chunk into zero or more content parts."""
    try:
        choice = chunk.choices[0]
    except (AttributeError, IndexError, KeyError, TypeError):
        return []
    delta = getattr(choice, "delta", None)
    parts: list[StreamPart] = []

    content = getattr(delta, "content", None)
    if content:
        parts.append({"type": StreamPartType.TEXT_DELTA.value, "text_delta": content})

    for tc in getattr(delta, "tool_calls", None) or []:
        part = _tool_call(tc)
        part["type"] = StreamPartType.TOOL_CALL_DELTA.value
        part["index"] = getattr(tc, "index", None)
        parts.append(part)

    return parts


class LLMClient:
    """Thin wrapper around LiteLLM with retry logic and structured logging.

    Credentials and proxy URL are passed per call instead of being set on
    the litellm module, so several clients can coexist in one process.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _request_kwargs(self, params: GenerateParams) -> dict[str, Any]:
        kwargs = dict(params)
        kwargs["model"] = kwargs.get("model") or self._settings.litellm_default_model
        kwargs.setdefault("api_base", self._settings.litellm_base_url)
        kwargs.setdefault("api_key", self._settings.litellm_api_key.get_secret_value())
        return kwargs

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def generate(self, params: GenerateParams) -> GenerateResult:
        """Send a chat completion request via LiteLLM.

        Args:
            params: ``model``, ``messages`` (OpenAI format) and any sampling
                settings accepted by litellm.acompletion()

        Returns:
            Normalized result dict (text, tool_calls, finish_reason, usage,
            response metadata with a UTC timestamp)

        Raises:
            LLMRateLimitError: Upstream rate limit after retries
            LLMUnavailableError: Service unavailable after retries
            LLMError: Any other LLM failure
        """
        kwargs = self._request_kwargs(params)
        kwargs.pop("stream", None)

        log.debug(
            "llm.completion_request",
            model=kwargs["model"],
            message_count=len(kwargs.get("messages") or []),
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as exc:
            raise _translate_error(exc) from exc

        result = normalize_response(response)
        usage = result["usage"]
        if usage:
            log.info("llm.completion_done", model=kwargs["model"], **usage)
        return result

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _open_stream(self, kwargs: dict[str, Any]) -> Any:
        try:
            return await litellm.acompletion(**kwargs)
        except Exception as exc:
            raise _translate_error(exc) from exc

    async def stream(self, params: GenerateParams) -> AsyncIterator[StreamPart]:
        """Stream a chat completion as normalized parts.

        Emits one ``response-metadata`` part (from the first chunk), then
        ``text-delta`` / ``tool-call-delta`` parts, then a single ``finish``
        part. Only opening the stream is retried; a failure mid-stream is
        raised as LLMError.
        """
        kwargs = self._request_kwargs(params)
        kwargs["stream"] = True

        log.debug("llm.stream_request", model=kwargs["model"])
        raw_stream = await self._open_stream(kwargs)

        metadata_sent = False
        finish_reason: str | None = None
        usage: Any = None
        try:
            async for chunk in raw_stream:
                if not metadata_sent:
                    metadata_sent = True
                    yield {
                        "type": StreamPartType.RESPONSE_METADATA.value,
                        "id": getattr(chunk, "id", None),
                        "model_id": getattr(chunk, "model", None),
                        "timestamp": _timestamp(getattr(chunk, "created", None)),
                    }
                for part in normalize_chunk(chunk):
                    yield part
                try:
                    finish_reason = chunk.choices[0].finish_reason or finish_reason
                except (AttributeError, IndexError, KeyError, TypeError):
                    pass
                usage = getattr(chunk, "usage", None) or usage
        except LLMError:
            raise
        except Exception as exc:
            raise _translate_error(exc) from exc

        yield {
            "type": StreamPartType.FINISH.value,
            "finish_reason": finish_reason,
            "usage": _usage(usage) if usage is not None else None,
        }
        log.debug("llm.stream_done", model=kwargs["model"], finish_reason=finish_reason)
