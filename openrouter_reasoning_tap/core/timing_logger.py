"""Function timing instrumentation with JSONL file output.

Provides:
- @timed decorator recording enter/exit events for sync and async callables
- timing_scope() context manager for code blocks
- timing_mark() for point-in-time events (first chunk, stream done, ...)

Timing is off unless ``set_timing_context(request_id, enabled=True)`` was called
for the current context, so instrumented code pays a single ContextVar lookup.
"""

from __future__ import annotations

import asyncio
import datetime
import functools
import json
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar

_PACKAGE_PREFIX = "openrouter_reasoning_tap."

_timing_file_lock = threading.Lock()
_timing_file_path: Optional[Path] = None
_timing_file_handle: Optional[Any] = None

_timing_events: Dict[str, Deque[Dict[str, Any]]] = {}
_timing_lock = threading.Lock()

_timing_enabled: ContextVar[bool] = ContextVar("timing_enabled", default=False)
_timing_request_id: ContextVar[Optional[str]] = ContextVar("timing_request_id", default=None)

MAX_TIMING_EVENTS = 10000


@dataclass(slots=True)
class TimingEvent:
    """Single timing record."""

    ts: float  # perf_counter
    wall_ts: float  # time.time
    event: str  # "enter", "exit" or "mark"
    label: str
    elapsed_ms: Optional[float] = None


def _format_iso_utc(wall_ts: float) -> str:
    try:
        dt = datetime.datetime.fromtimestamp(wall_ts, tz=datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
        dt = datetime.datetime.now(datetime.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _record_event(event: TimingEvent) -> None:
    if not _timing_enabled.get():
        return
    request_id = _timing_request_id.get()
    if not request_id:
        return

    record: Dict[str, Any] = {
        "ts": _format_iso_utc(event.wall_ts),
        "perf_ts": round(event.ts, 6),
        "event": event.event,
        "label": event.label,
        "request_id": request_id,
    }
    if event.elapsed_ms is not None:
        record["elapsed_ms"] = round(event.elapsed_ms, 3)

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
                _timing_file_handle.flush()
            except (OSError, ValueError):
                # Timing output must not interrupt the stream being measured.
                pass

    with _timing_lock:
        buffer = _timing_events.get(request_id)
        if buffer is None:
            buffer = deque(maxlen=MAX_TIMING_EVENTS)
            _timing_events[request_id] = buffer
        buffer.append(record)


def configure_timing_file(file_path: str) -> bool:
    """Open ``file_path`` in append mode as the timing sink.

    Returns:
        True when the file is open and ready, False otherwise.
    """
    global _timing_file_path, _timing_file_handle

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
            _timing_file_handle = None
        try:
            path = Path(file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            _timing_file_handle = open(path, "a", encoding="utf-8")
            _timing_file_path = path
            return True
        except OSError:
            _timing_file_path = None
            _timing_file_handle = None
            return False


def ensure_timing_file_configured(file_path: str) -> bool:
    """Open the timing file lazily; no-op when it is already open at the same path."""
    with _timing_file_lock:
        if _timing_file_handle is not None and _timing_file_path is not None:
            if str(_timing_file_path) == str(Path(file_path)):
                return True
    return configure_timing_file(file_path)


def close_timing_file() -> None:
    """Close the timing file. Safe to call repeatedly."""
    global _timing_file_handle, _timing_file_path

    with _timing_file_lock:
        if _timing_file_handle is not None:
            try:
                _timing_file_handle.close()
            except OSError:
                pass
        _timing_file_handle = None
        _timing_file_path = None


def set_timing_context(request_id: str, enabled: bool) -> None:
    """Enable or disable timing for the current context."""
    _timing_request_id.set(request_id)
    _timing_enabled.set(enabled)


def clear_timing_context() -> None:
    _timing_request_id.set(None)
    _timing_enabled.set(False)


def get_timing_events(request_id: str) -> List[Dict[str, Any]]:
    """Return a copy of the buffered timing records for ``request_id``."""
    with _timing_lock:
        buffer = _timing_events.get(request_id)
        return list(buffer) if buffer else []


def clear_timing_events(request_id: str) -> None:
    with _timing_lock:
        _timing_events.pop(request_id, None)


def timing_mark(label: str) -> None:
    """Record a point-in-time event such as ``chat_first_chunk``."""
    if not _timing_enabled.get():
        return
    _record_event(TimingEvent(ts=time.perf_counter(), wall_ts=time.time(), event="mark", label=label))


@contextmanager
def timing_scope(label: str):
    """Record enter/exit events around a block."""
    if not _timing_enabled.get():
        yield
        return
    start = time.perf_counter()
    _record_event(TimingEvent(ts=start, wall_ts=time.time(), event="enter", label=label))
    try:
        yield
    finally:
        end = time.perf_counter()
        _record_event(
            TimingEvent(
                ts=end,
                wall_ts=time.time(),
                event="exit",
                label=label,
                elapsed_ms=(end - start) * 1000,
            )
        )


F = TypeVar("F", bound=Callable[..., Any])


def _label_for(func: Callable[..., Any]) -> str:
    module = getattr(func, "__module__", "") or ""
    qualname = getattr(func, "__qualname__", "") or getattr(func, "__name__", "unknown")
    if module.startswith(_PACKAGE_PREFIX):
        module = module[len(_PACKAGE_PREFIX) :]
    return f"{module}.{qualname}" if module else qualname


def timed(func: F) -> F:
    """Decorator recording enter/exit timing events for ``func``.

    Works with plain and ``async def`` functions. Async generators are returned
    untouched; instrument their bodies with :func:`timing_mark` instead.
    """
    label = _label_for(func)

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _timing_enabled.get():
                return await func(*args, **kwargs)
            with timing_scope(label):
                return await func(*args, **kwargs)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _timing_enabled.get():
            return func(*args, **kwargs)
        with timing_scope(label):
            return func(*args, **kwargs)

    return sync_wrapper  # type: ignore[return-value]
