"""Chat streaming orchestrator.

``Pipe`` wires the pieces together for a single streamed chat request:
- SessionLogger and timing context for the request
- aiohttp session with the configured timeouts
- ChatCompletionsClient as the stream function
- ReasoningStreamTap around it whenever someone is listening for reasoning
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Iterable, Optional

import aiohttp

from .api.chat_completions import ChatCompletionsClient, delta_content
from .core.config import Valves
from .core.logging_system import SessionLogger
from .core.timing_logger import (
    clear_timing_context,
    ensure_timing_file_configured,
    set_timing_context,
    timed,
)
from .streaming.reasoning_log import ReasoningTraceLogger, ReasoningTraceThrottle
from .streaming.reasoning_tap import (
    PayloadCallback,
    ReasoningEvent,
    ReasoningObserver,
    StreamContext,
    StreamOptions,
    create_reasoning_stream_logger,
    maybe_wrap_stream_fn,
)


@dataclass(slots=True)
class ChatResult:
    """Outcome of :meth:`Pipe.complete_chat`."""

    content: str
    reasoning: str
    chunks: list[dict[str, Any]] = field(default_factory=list)


class Pipe:
    """Streams chat completions from OpenRouter and taps their reasoning."""

    Valves = Valves

    def __init__(self, valves: Optional[Valves] = None) -> None:
        self.valves = valves or Valves()
        self.logger = SessionLogger.get_logger(__name__)

    @timed
    def _create_http_session(self, valves: Optional[Valves] = None) -> aiohttp.ClientSession:
        """Return a fresh ClientSession with sane defaults for per-request use."""
        valves = valves or self.valves
        connector = aiohttp.TCPConnector(
            limit=50,
            limit_per_host=10,
            keepalive_timeout=75,
            ttl_dns_cache=300,
        )
        connect_timeout = float(valves.HTTP_CONNECT_TIMEOUT_SECONDS)
        total_timeout_value = valves.HTTP_TOTAL_TIMEOUT_SECONDS
        total_timeout = float(total_timeout_value) if total_timeout_value else None
        sock_read = float(valves.HTTP_SOCK_READ_SECONDS) if total_timeout is None else None
        timeout = aiohttp.ClientTimeout(total=total_timeout, connect=connect_timeout, sock_read=sock_read)
        self.logger.debug(
            "HTTP timeouts: connect=%ss total=%s sock_read=%s",
            connect_timeout,
            total_timeout if total_timeout is not None else "disabled",
            sock_read if sock_read is not None else "disabled",
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            json_serialize=json.dumps,
        )

    @timed
    def _apply_logging_context(
        self,
        valves: Valves,
        *,
        request_id: str,
        session_id: Optional[str],
        user_id: Optional[str],
    ) -> list[tuple[ContextVar[Any], contextvars.Token[Any]]]:
        """Set SessionLogger contextvars for the incoming request."""
        log_level = getattr(logging, valves.LOG_LEVEL)
        tokens: list[tuple[ContextVar[Any], contextvars.Token[Any]]] = []
        tokens.append((SessionLogger.session_id, SessionLogger.session_id.set(session_id)))
        tokens.append((SessionLogger.request_id, SessionLogger.request_id.set(request_id)))
        tokens.append((SessionLogger.user_id, SessionLogger.user_id.set(user_id)))
        tokens.append((SessionLogger.log_level, SessionLogger.log_level.set(log_level)))

        if valves.ENABLE_TIMING_LOG:
            if not ensure_timing_file_configured(valves.TIMING_LOG_FILE):
                self.logger.warning("Timing log file %s could not be opened", valves.TIMING_LOG_FILE)
        set_timing_context(request_id=request_id, enabled=bool(valves.ENABLE_TIMING_LOG))
        return tokens

    @staticmethod
    def _reset_logging_context(tokens: list[tuple[ContextVar[Any], contextvars.Token[Any]]]) -> None:
        for var, token in reversed(tokens):
            # Tokens from another context (generator closed elsewhere) cannot be reset.
            with contextlib.suppress(ValueError):
                var.reset(token)
        clear_timing_context()

    def _resolve_observer(
        self,
        valves: Valves,
        on_reasoning_stream: Optional[ReasoningObserver],
    ) -> tuple[Optional[ReasoningObserver], Optional[ReasoningTraceLogger]]:
        """Pick the reasoning observer: the caller's, the trace logger, or none."""
        if on_reasoning_stream is not None:
            return on_reasoning_stream, None
        if not valves.REASONING_STREAM_ENABLED:
            return None, None
        trace = ReasoningTraceLogger(
            self.logger,
            level=getattr(logging, valves.REASONING_LOG_LEVEL),
            throttle=ReasoningTraceThrottle(
                min_chars=valves.REASONING_LOG_MIN_CHARS,
                max_chars=valves.REASONING_LOG_MAX_CHARS,
                idle_seconds=valves.REASONING_LOG_IDLE_SECONDS,
            ),
        )
        return trace, trace

    async def stream_chat(
        self,
        model: str,
        messages: Iterable[dict[str, Any]],
        *,
        system_prompt: Optional[str] = None,
        tools: Optional[Iterable[dict[str, Any]]] = None,
        on_reasoning_stream: Optional[ReasoningObserver] = None,
        on_payload: Optional[PayloadCallback] = None,
        options: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        valves: Optional[Valves] = None,
    ) -> AsyncGenerator[str, None]:
        """Stream a chat completion, yielding assistant content deltas.

        Args:
            model: OpenRouter model id, e.g. ``deepseek/deepseek-r1``.
            messages: Chat messages in OpenAI format.
            system_prompt: Optional system message prepended to ``messages``.
            tools: Optional tool definitions.
            on_reasoning_stream: Observer receiving a ReasoningEvent per chunk that
                carries reasoning text. When omitted and ``REASONING_STREAM_ENABLED``
                is set, reasoning is written to the log instead.
            on_payload: Callback receiving every raw chunk, untouched.
            options: Extra StreamOptions fields (temperature, max_tokens, reasoning, extra_body).
            request_id: Log/timing correlation id; generated when omitted.
            session_id: Caller session id recorded on log lines.
            user_id: End-user id recorded on log lines.
            session: Existing aiohttp session; a private one is created and closed otherwise.
            valves: Per-call configuration overriding ``self.valves``.
        """
        valves = valves or self.valves
        request_id = request_id or uuid.uuid4().hex
        tokens: list[tuple[ContextVar[Any], contextvars.Token[Any]]] = []
        owns_session = session is None
        http_session = session
        trace: Optional[ReasoningTraceLogger] = None
        try:
            tokens = self._apply_logging_context(
                valves,
                request_id=request_id,
                session_id=session_id,
                user_id=user_id,
            )
            if http_session is None:
                http_session = self._create_http_session(valves)
            client = ChatCompletionsClient(http_session, valves=valves, logger=self.logger)
            observer, trace = self._resolve_observer(valves, on_reasoning_stream)
            tap = create_reasoning_stream_logger(observer, logger=self.logger)
            stream_fn = maybe_wrap_stream_fn(tap, client.stream)

            context = StreamContext(
                system_prompt=system_prompt,
                messages=list(messages),
                tools=list(tools or []),
            )
            stream_options = StreamOptions(**{**(options or {}), "on_payload": on_payload})

            self.logger.info("Streaming %s (reasoning tap %s)", model, "on" if tap else "off")
            # An early exit by the consumer must still release the response.
            async with contextlib.aclosing(stream_fn(model, context, stream_options)) as chunks:
                async for chunk in chunks:
                    content = delta_content(chunk)
                    if content:
                        yield content
        finally:
            if trace is not None:
                trace.flush()
            if owns_session and http_session is not None:
                await http_session.close()
            self._reset_logging_context(tokens)
            SessionLogger.cleanup()

    async def complete_chat(
        self,
        model: str,
        messages: Iterable[dict[str, Any]],
        *,
        on_reasoning_stream: Optional[ReasoningObserver] = None,
        on_payload: Optional[PayloadCallback] = None,
        **kwargs: Any,
    ) -> ChatResult:
        """Run :meth:`stream_chat` to completion and collect content, reasoning and chunks."""
        reasoning_parts: list[str] = []
        chunks: list[dict[str, Any]] = []

        def _collect_reasoning(event: ReasoningEvent) -> None:
            reasoning_parts.append(event.text)
            if on_reasoning_stream is not None:
                on_reasoning_stream(event)

        def _collect_payload(payload: Any) -> None:
            chunks.append(payload)
            if on_payload is not None:
                on_payload(payload)

        content_parts: list[str] = []
        async for delta in self.stream_chat(
            model,
            messages,
            on_reasoning_stream=_collect_reasoning,
            on_payload=_collect_payload,
            **kwargs,
        ):
            content_parts.append(delta)
        return ChatResult(
            content="".join(content_parts),
            reasoning="".join(reasoning_parts),
            chunks=chunks,
        )


__all__ = ["ChatResult", "Pipe"]
