"""Streaming subsystem.

This package contains:
- reasoning_tap: Reasoning extraction and the stream-function wrapper
- reasoning_log: Throttled reasoning trace logger observer
- sse_parser: Server-Sent Events decoding
"""

from .reasoning_tap import (
    ReasoningEvent,
    ReasoningStreamTap,
    StreamContext,
    StreamOptions,
    create_reasoning_stream_logger,
    extract_reasoning_text,
    maybe_wrap_stream_fn,
)
from .reasoning_log import ReasoningTraceLogger, ReasoningTraceThrottle
from .sse_parser import SSEDecoder

__all__ = [
    "ReasoningEvent",
    "ReasoningStreamTap",
    "StreamContext",
    "StreamOptions",
    "create_reasoning_stream_logger",
    "extract_reasoning_text",
    "maybe_wrap_stream_fn",
    "ReasoningTraceLogger",
    "ReasoningTraceThrottle",
    "SSEDecoder",
]
