"""Chat Completions streaming client for OpenRouter.

``ChatCompletionsClient.stream`` is a stream function in the shape the
reasoning tap wraps: ``stream(model, context, options=None)`` returns an async
generator of decoded chunks and calls ``options.on_payload(chunk)`` for every
chunk, synchronously, just before yielding it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Mapping, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import (
    EncryptedStr,
    Valves,
    _OPENROUTER_TITLE,
    _SECRET_KEY_ENV,
    _select_openrouter_http_referer,
)
from ..core.errors import (
    OpenRouterAPIError,
    _RetryWait,
    _RetryableHTTPStatusError,
    _build_openrouter_api_error,
    _classify_retryable_status,
    _extract_streaming_error,
)
from ..core.timing_logger import timed, timing_mark
from ..core.utils import _retry_after_seconds
from ..streaming.reasoning_tap import PayloadCallback, StreamContext, StreamOptions
from ..streaming.sse_parser import SSEDecoder

LOGGER = logging.getLogger(__name__)

_RETRYABLE_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, _RetryableHTTPStatusError)


def _coerce_context(context: Any) -> StreamContext:
    if isinstance(context, StreamContext):
        return context
    if context is None:
        return StreamContext()
    if isinstance(context, Mapping):
        return StreamContext.model_validate(dict(context))
    raise TypeError(f"Unsupported stream context type: {type(context).__name__}")


def _coerce_options(options: Any) -> StreamOptions:
    if isinstance(options, StreamOptions):
        return options
    if options is None:
        return StreamOptions()
    if isinstance(options, Mapping):
        return StreamOptions.model_validate(dict(options))
    raise TypeError(f"Unsupported stream options type: {type(options).__name__}")


def build_chat_payload(model: str, context: Any, options: Any = None) -> dict[str, Any]:
    """Build the /chat/completions request body for a streaming call."""
    ctx = _coerce_context(context)
    opts = _coerce_options(options)

    messages: list[dict[str, Any]] = []
    if ctx.system_prompt:
        messages.append({"role": "system", "content": ctx.system_prompt})
    messages.extend(dict(message) for message in ctx.messages)

    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "stream": True,
    }
    if ctx.tools:
        payload["tools"] = [dict(tool) for tool in ctx.tools]
    if opts.temperature is not None:
        payload["temperature"] = opts.temperature
    if opts.max_tokens is not None:
        payload["max_tokens"] = opts.max_tokens
    if opts.reasoning:
        payload["reasoning"] = dict(opts.reasoning)
    if opts.include_reasoning is not None:
        payload["include_reasoning"] = opts.include_reasoning
    for key, value in (opts.extra_body or {}).items():
        payload.setdefault(key, value)
    return payload


class ChatCompletionsClient:
    """Client for the OpenRouter /chat/completions streaming endpoint."""

    @timed
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        valves: Optional[Valves] = None,
        api_key: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the client.

        Args:
            session: aiohttp session used for every request
            valves: Configuration; defaults to a fresh ``Valves()``
            api_key: Plain-text key overriding ``valves.API_KEY``
            logger: Logger for request and payload diagnostics
        """
        self._session = session
        self.valves = valves or Valves()
        self._api_key = api_key
        self.logger = logger or LOGGER

    def _resolve_api_key(self) -> str:
        if self._api_key is not None:
            return self._api_key
        raw_value = str(self.valves.API_KEY or "").strip()
        if EncryptedStr.is_undecryptable(raw_value):
            # Sending "Bearer encrypted:..." upstream only produces a confusing 401.
            raise OpenRouterAPIError(
                status=401,
                reason="Unauthorized",
                openrouter_message=(
                    "OpenRouter API key is encrypted but cannot be decrypted. "
                    f"Check {_SECRET_KEY_ENV} or re-enter the API key."
                ),
            )
        return EncryptedStr.decrypt(raw_value)

    def _build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._resolve_api_key()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "X-Title": _OPENROUTER_TITLE,
            "HTTP-Referer": _select_openrouter_http_referer(self.valves),
        }

    @property
    def url(self) -> str:
        return self.valves.BASE_URL.rstrip("/") + "/chat/completions"

    def stream(
        self,
        model: str,
        context: Any,
        options: Any = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Start a streaming chat completion.

        The request is sent when iteration begins. Connection failures and
        retryable statuses (408, 425, 429, 5xx) are retried up to
        ``MAX_RETRIES`` attempts before any chunk is delivered; once the body
        starts streaming, errors propagate as-is.
        """
        return self._stream(model, _coerce_context(context), _coerce_options(options))

    @timed
    async def _open(self, payload: dict[str, Any]) -> aiohttp.ClientResponse:
        """POST the request and return a response whose status is below 400."""
        headers = self._build_headers()
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.valves.MAX_RETRIES),
            wait=_RetryWait(wait_exponential(multiplier=0.5, min=0.5, max=4)),
            retry=retry_if_exception_type(_RETRYABLE_TRANSPORT_ERRORS),
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    timing_mark("chat_http_request_start")
                    resp = await self._session.post(self.url, json=payload, headers=headers)
                    timing_mark("chat_http_headers_received")
                    if resp.status < 400:
                        return resp
                    try:
                        error_body = await resp.text()
                    finally:
                        resp.release()
                    extra_meta: dict[str, Any] = {}
                    retry_after = resp.headers.get("Retry-After")
                    if retry_after:
                        extra_meta["retry_after"] = retry_after
                    error = _build_openrouter_api_error(
                        resp.status,
                        resp.reason or "HTTP error",
                        error_body,
                        requested_model=payload.get("model"),
                        extra_metadata=extra_meta or None,
                    )
                    self.logger.warning(
                        "OpenRouter request failed (%s %s): %s",
                        resp.status,
                        resp.reason,
                        error,
                    )
                    if _classify_retryable_status(resp.status):
                        raise _RetryableHTTPStatusError(error, _retry_after_seconds(retry_after))
                    raise error
        except _RetryableHTTPStatusError as exc:
            raise exc.original from None
        raise RuntimeError("OpenRouter request was not attempted")  # pragma: no cover

    async def _stream(
        self,
        model: str,
        context: StreamContext,
        options: StreamOptions,
    ) -> AsyncGenerator[dict[str, Any], None]:
        payload = build_chat_payload(model, context, options)
        self.logger.debug("OpenRouter request payload: %s", json.dumps(payload, ensure_ascii=False))
        on_payload = options.on_payload

        resp = await self._open(payload)
        decoder = SSEDecoder(logger=self.logger)
        first_chunk_received = False
        try:
            async for raw in resp.content.iter_any():
                if not raw:
                    continue
                if not first_chunk_received:
                    first_chunk_received = True
                    timing_mark("chat_first_chunk")
                for chunk in decoder.feed(raw):
                    self._deliver(chunk, on_payload, model)
                    yield chunk
                if decoder.done:
                    break
            for chunk in decoder.flush():
                self._deliver(chunk, on_payload, model)
                yield chunk
            timing_mark("chat_stream_done")
        finally:
            resp.release()

    def _deliver(self, chunk: Any, on_payload: Optional[PayloadCallback], model: str) -> None:
        """Hand ``chunk`` to ``on_payload``, then raise if it is an in-band error."""
        self.logger.debug("OpenRouter payload: %s", chunk)
        if on_payload is not None:
            on_payload(chunk)
        error = _extract_streaming_error(chunk, requested_model=model)
        if error is not None:
            raise error


async def collect_stream(stream: AsyncGenerator[dict[str, Any], None]) -> tuple[str, list[dict[str, Any]]]:
    """Drain a chunk stream and return the concatenated content plus every chunk."""
    parts: list[str] = []
    chunks: list[dict[str, Any]] = []
    async for chunk in stream:
        chunks.append(chunk)
        content = delta_content(chunk)
        if content:
            parts.append(content)
    return "".join(parts), chunks


def delta_content(chunk: Any) -> Optional[str]:
    """Return the assistant text in ``choices[0].delta.content``, or None."""
    if not isinstance(chunk, Mapping):
        return None
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, Mapping):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


__all__ = [
    "ChatCompletionsClient",
    "OpenRouterAPIError",
    "build_chat_payload",
    "collect_stream",
    "delta_content",
]
