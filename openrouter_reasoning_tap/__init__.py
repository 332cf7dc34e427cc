"""OpenRouter reasoning stream tap.

Taps reasoning/thinking text out of streamed chat-completion chunks and hands
it to an observer without disturbing the stream's own payload callbacks:
- streaming: reasoning extraction, the stream-function wrapper, SSE decoding
- api: OpenRouter /chat/completions streaming client
- core: config, errors, session logging, timing
- pipe: Pipe orchestrator tying the above together

Attributes are loaded lazily so ``import openrouter_reasoning_tap`` does not
pull in aiohttp until the client or Pipe is actually used.
"""

from typing import TYPE_CHECKING

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("openrouter-reasoning-tap")
except Exception:
    __version__ = "0.1.0"  # Fallback if not installed as package

if TYPE_CHECKING:
    from .pipe import Pipe, ChatResult
    from .api.chat_completions import ChatCompletionsClient, build_chat_payload, collect_stream, delta_content
    from .core.config import Valves, EncryptedStr
    from .core.errors import OpenRouterAPIError
    from .core.logging_system import SessionLogger
    from .streaming.reasoning_tap import (
        ReasoningEvent,
        ReasoningStreamTap,
        StreamContext,
        StreamOptions,
        create_reasoning_stream_logger,
        extract_reasoning_text,
        maybe_wrap_stream_fn,
    )
    from .streaming.reasoning_log import ReasoningTraceLogger, ReasoningTraceThrottle
    from .streaming.sse_parser import SSEDecoder

_cache: dict[str, object] = {}

_LAZY_IMPORTS = {
    # Reasoning tap
    "ReasoningEvent": (".streaming.reasoning_tap", "ReasoningEvent"),
    "ReasoningStreamTap": (".streaming.reasoning_tap", "ReasoningStreamTap"),
    "StreamContext": (".streaming.reasoning_tap", "StreamContext"),
    "StreamOptions": (".streaming.reasoning_tap", "StreamOptions"),
    "create_reasoning_stream_logger": (".streaming.reasoning_tap", "create_reasoning_stream_logger"),
    "extract_reasoning_text": (".streaming.reasoning_tap", "extract_reasoning_text"),
    "maybe_wrap_stream_fn": (".streaming.reasoning_tap", "maybe_wrap_stream_fn"),
    "ReasoningTraceLogger": (".streaming.reasoning_log", "ReasoningTraceLogger"),
    "ReasoningTraceThrottle": (".streaming.reasoning_log", "ReasoningTraceThrottle"),
    "SSEDecoder": (".streaming.sse_parser", "SSEDecoder"),

    # Core
    "Valves": (".core.config", "Valves"),
    "EncryptedStr": (".core.config", "EncryptedStr"),
    "OpenRouterAPIError": (".core.errors", "OpenRouterAPIError"),
    "SessionLogger": (".core.logging_system", "SessionLogger"),

    # API
    "ChatCompletionsClient": (".api.chat_completions", "ChatCompletionsClient"),
    "build_chat_payload": (".api.chat_completions", "build_chat_payload"),
    "collect_stream": (".api.chat_completions", "collect_stream"),
    "delta_content": (".api.chat_completions", "delta_content"),

    # Orchestrator
    "Pipe": (".pipe", "Pipe"),
    "ChatResult": (".pipe", "ChatResult"),
}

__all__ = ["__version__", *_LAZY_IMPORTS]


def __getattr__(name: str):
    """Lazy-load public attributes on first access."""
    if name in _cache:
        return _cache[name]

    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib
        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        _cache[name] = value
        globals()[name] = value
        return value

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
