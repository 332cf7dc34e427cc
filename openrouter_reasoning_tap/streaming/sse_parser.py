"""Server-Sent Events decoding for chat-completion streams.

Turns raw response bytes into decoded JSON chunks:
- Line splitting across arbitrary network chunk boundaries
- Multi-line ``data:`` accumulation, dispatched on blank lines
- ``[DONE]`` detection
- Comment, ``event:``, ``id:`` and ``retry:`` lines are ignored
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

_DONE_SENTINEL = b"[DONE]"


class SSEDecoder:
    """Incremental SSE decoder.

    Feed response bytes as they arrive; each call returns the JSON chunks
    completed by those bytes, in stream order. Once ``[DONE]`` is seen,
    :attr:`done` is True and further input is ignored.
    """

    __slots__ = ("_buf", "_data_parts", "done", "logger")

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._buf = bytearray()
        self._data_parts: list[bytes] = []
        self.done = False
        self.logger = logger or LOGGER

    def feed(self, data: bytes) -> list[Any]:
        """Consume ``data`` and return any chunks it completed."""
        if self.done or not data:
            return []
        self._buf.extend(data)
        events: list[Any] = []
        start_idx = 0
        while not self.done:
            newline_idx = self._buf.find(b"\n", start_idx)
            if newline_idx == -1:
                break
            line = bytes(self._buf[start_idx:newline_idx]).rstrip(b"\r")
            start_idx = newline_idx + 1
            self._handle_line(line, events)
        del self._buf[:start_idx]
        return events

    def flush(self) -> list[Any]:
        """Dispatch whatever is buffered when the connection closes without a trailing blank line."""
        events: list[Any] = []
        if self.done:
            return events
        if self._buf:
            self._handle_line(bytes(self._buf).rstrip(b"\r"), events)
            self._buf.clear()
        if not self.done:
            self._dispatch(events)
        return events

    def _handle_line(self, line: bytes, events: list[Any]) -> None:
        if not line.strip():
            self._dispatch(events)
            return
        if line.startswith(b":"):
            return
        field, _, value = line.partition(b":")
        if value.startswith(b" "):
            value = value[1:]
        if field == b"data":
            self._data_parts.append(value)

    def _dispatch(self, events: list[Any]) -> None:
        if not self._data_parts:
            return
        data_blob = b"\n".join(self._data_parts).strip()
        self._data_parts.clear()
        if not data_blob:
            return
        if data_blob == _DONE_SENTINEL:
            self.done = True
            return
        try:
            events.append(json.loads(data_blob.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError):
            self.logger.debug("Skipping undecodable SSE data: %r", data_blob[:200])
