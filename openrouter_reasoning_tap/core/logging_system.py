"""Session-scoped logging.

This module provides SessionLogger: a per-request logger that writes console
lines and keeps a bounded in-memory buffer of structured events keyed by
request id. Request, session and user identifiers travel in contextvars so
concurrent streams keep their log lines apart.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
import traceback
from collections import deque
from contextvars import ContextVar
from typing import Any, Dict, Optional

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)


class SessionLogger:
    """Per-request logger that captures console output and an in-memory log buffer.

    The logger tracks identifiers via contextvars:
    - session_id: caller-provided conversation/session identifier.
    - request_id: per-stream unique id used to key the in-memory log buffer.
    - user_id: optional end-user identifier.
    - log_level: minimum level written to the console for this request.

    Cleanup is explicit: callers invoke ``cleanup`` once a stream finishes so
    no background task prunes buffers behind their back.
    """

    session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
    request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
    user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
    log_level: ContextVar[int] = ContextVar("log_level", default=logging.INFO)
    max_lines: int = 2000
    logs: Dict[str, deque[dict[str, Any]]] = {}
    _session_last_seen: Dict[str, float] = {}
    _state_lock = threading.Lock()
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @staticmethod
    def _classify_event_type(message: str) -> str:
        msg = (message or "").lstrip()
        if msg.startswith("OpenRouter request payload:"):
            return "openrouter.request.payload"
        if msg.startswith("OpenRouter payload:"):
            return "openrouter.sse.payload"
        if msg.startswith("Reasoning:"):
            return "reasoning.stream"
        return "pipe"

    @classmethod
    def _build_event(cls, record: logging.LogRecord) -> dict[str, Any]:
        """Return a structured session log event extracted from a LogRecord."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(getattr(record, "msg", "") or "")

        event: dict[str, Any] = {
            "created": float(getattr(record, "created", time.time())),
            "level": str(getattr(record, "levelname", "INFO") or "INFO"),
            "logger": str(getattr(record, "name", "") or ""),
            "request_id": getattr(record, "request_id", None),
            "session_id": getattr(record, "session_id", None),
            "user_id": getattr(record, "user_id", None),
            "event_type": cls._classify_event_type(message),
            "module": str(getattr(record, "module", "") or ""),
            "func": str(getattr(record, "funcName", "") or ""),
            "lineno": int(getattr(record, "lineno", 0) or 0),
        }

        exc_text = getattr(record, "exc_text", None)
        exc_info = getattr(record, "exc_info", None)
        if exc_text:
            event["exception"] = {"text": str(exc_text)}
        elif exc_info and exc_info[0] is not None:
            event["exception"] = {"text": "".join(traceback.format_exception(*exc_info))}

        event["message"] = message
        return event

    @classmethod
    def format_event_as_text(cls, event: dict[str, Any]) -> str:
        """Best-effort text rendering for debug dumps."""
        created_raw = event.get("created")
        try:
            created = float(created_raw) if created_raw is not None else time.time()
        except (TypeError, ValueError):
            created = time.time()
        base = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(created))
        msecs = int((created - int(created)) * 1000)
        level = str(event.get("level") or "INFO")
        uid = str(event.get("user_id") or "-")
        message = event.get("message")
        return f"{base},{msecs:03d} [{level}] [user={uid}] {message if message is not None else ''}"

    @classmethod
    def get_logger(cls, name=__name__):
        """Create a logger wired to the current SessionLogger context.

        Args:
            name: Logger name; defaults to the current module name.

        Returns:
            logging.Logger: A logger that writes both to stdout and the
            in-memory ``SessionLogger.logs`` buffer keyed by the current
            ``SessionLogger.request_id``.
        """
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.filters.clear()
        logger.setLevel(logging.DEBUG)
        root_logger = logging.getLogger()
        if not any(isinstance(handler, logging.NullHandler) for handler in root_logger.handlers):
            root_logger.addHandler(logging.NullHandler())
        logger.propagate = True

        def filter(record):
            """Attach session metadata and the per-request console log level."""
            rid = cls.request_id.get()
            record.session_id = cls.session_id.get()
            record.request_id = rid
            record.user_id = cls.user_id.get() or "-"
            record.session_log_level = cls.log_level.get()
            if rid:
                with cls._state_lock:
                    cls._session_last_seen[rid] = time.time()
            return True

        logger.addFilter(filter)

        handler = logging.Handler()
        handler.emit = cls.process_record  # type: ignore[assignment]
        logger.addHandler(handler)
        return logger

    @classmethod
    def set_max_lines(cls, value: int) -> None:
        """Set the maximum in-memory lines retained per request (best effort)."""
        try:
            value_int = int(value)
        except (TypeError, ValueError):
            return
        cls.max_lines = max(100, min(200000, value_int))

    @classmethod
    def process_record(cls, record: logging.LogRecord) -> None:
        try:
            session_log_level = getattr(record, "session_log_level", logging.INFO)
            if record.levelno >= int(session_log_level):
                sys.stdout.write(cls._console_formatter.format(record) + "\n")
                sys.stdout.flush()
            request_id = getattr(record, "request_id", None)
            if not request_id:
                return
            event = cls._build_event(record)
            with cls._state_lock:
                buffer = cls.logs.get(request_id)
                if buffer is None or buffer.maxlen != cls.max_lines:
                    buffer = deque(buffer or (), maxlen=cls.max_lines)
                    cls.logs[request_id] = buffer
                buffer.append(event)
                cls._session_last_seen[request_id] = time.time()
        except Exception:
            # Never raise from logging hooks.
            return

    @classmethod
    def get_events(cls, request_id: str) -> list[dict[str, Any]]:
        """Return a copy of the buffered events for ``request_id``."""
        with cls._state_lock:
            buffer = cls.logs.get(request_id)
            return list(buffer) if buffer else []

    @classmethod
    @timed
    def cleanup(cls, max_age_seconds: float = 3600) -> None:
        """Remove stale request buffers to avoid unbounded growth."""
        cutoff = time.time() - max_age_seconds
        with cls._state_lock:
            stale = [rid for rid, ts in cls._session_last_seen.items() if ts < cutoff]
            for rid in stale:
                cls.logs.pop(rid, None)
                cls._session_last_seen.pop(rid, None)
