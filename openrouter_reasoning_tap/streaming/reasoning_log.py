"""Reasoning trace logger.

An observer for :class:`~.reasoning_tap.ReasoningStreamTap` that writes the
model's reasoning to a ``logging.Logger``. Reasoning arrives a few tokens at a
time, so deltas are buffered and written as readable lines once punctuation,
a length cap or an idle gap says a line is ready.
"""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Callable, Optional

from .constants import (
    REASONING_TRACE_IDLE_SECONDS,
    REASONING_TRACE_MAX_CHARS,
    REASONING_TRACE_MIN_CHARS,
    REASONING_TRACE_PUNCTUATION,
)
from .reasoning_tap import ReasoningEvent

LOGGER = logging.getLogger(__name__)


class ReasoningTraceThrottle:
    """Buffers reasoning deltas and decides when a trace line should be written.

    Callers feed deltas via :meth:`feed` and receive back the text to write
    (or ``None`` while the line is still being assembled). Writing is left to
    the caller.
    """

    __slots__ = ("_buffer", "_last_emit", "_clock", "min_chars", "max_chars", "idle_seconds")

    def __init__(
        self,
        *,
        min_chars: int = REASONING_TRACE_MIN_CHARS,
        max_chars: int = REASONING_TRACE_MAX_CHARS,
        idle_seconds: float = REASONING_TRACE_IDLE_SECONDS,
        clock: Callable[[], float] = perf_counter,
    ) -> None:
        self._buffer: str = ""
        self._last_emit: float | None = None
        self._clock = clock
        self.min_chars = min_chars
        self.max_chars = max_chars
        self.idle_seconds = idle_seconds

    def feed(self, delta: str, *, force: bool = False) -> Optional[str]:
        """Append *delta* to the buffer and return text to write, or ``None``."""
        if not isinstance(delta, str):
            return None
        self._buffer += delta
        text = self._buffer.strip()
        if not text:
            return None
        now = self._clock()
        should_emit = force
        if not should_emit:
            if delta.rstrip(" ").endswith(REASONING_TRACE_PUNCTUATION):
                should_emit = True
            elif len(text) >= self.max_chars:
                should_emit = True
            elif len(text) >= self.min_chars:
                elapsed = None if self._last_emit is None else (now - self._last_emit)
                should_emit = elapsed is None or elapsed >= self.idle_seconds
        if not should_emit:
            return None
        self._buffer = ""
        self._last_emit = now
        return text

    @property
    def pending(self) -> str:
        """Buffered text that hasn't been written yet."""
        return self._buffer


class ReasoningTraceLogger:
    """Callable reasoning observer that logs the trace line by line.

    The full trace is kept in :attr:`text` so callers can store or display it
    once the stream completes. Call :meth:`flush` at the end of a stream to
    write the last partial line.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        *,
        level: int = logging.DEBUG,
        throttle: Optional[ReasoningTraceThrottle] = None,
    ) -> None:
        self.logger = logger or LOGGER
        self.level = level
        self._throttle = throttle or ReasoningTraceThrottle()
        self._parts: list[str] = []
        self.lines_written = 0

    def __call__(self, event: ReasoningEvent) -> None:
        self._parts.append(event.text)
        line = self._throttle.feed(event.text)
        if line:
            self._write(line)

    def _write(self, line: str) -> None:
        self.lines_written += 1
        self.logger.log(self.level, "Reasoning: %s", line)

    def flush(self) -> None:
        line = self._throttle.feed("", force=True)
        if line:
            self._write(line)

    @property
    def text(self) -> str:
        return "".join(self._parts)
