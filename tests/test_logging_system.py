from __future__ import annotations

import logging
import time

import pytest

from openrouter_reasoning_tap.core.logging_system import SessionLogger


@pytest.fixture
def session_logger():
    logger = SessionLogger.get_logger("tests.session_logger")
    tokens = [
        (SessionLogger.request_id, SessionLogger.request_id.set("req-1")),
        (SessionLogger.session_id, SessionLogger.session_id.set("sess-1")),
        (SessionLogger.user_id, SessionLogger.user_id.set("user-1")),
        (SessionLogger.log_level, SessionLogger.log_level.set(logging.WARNING)),
    ]
    yield logger
    for var, token in reversed(tokens):
        var.reset(token)


def test_events_are_buffered_per_request_with_ids(session_logger):
    session_logger.debug("OpenRouter request payload: %s", "{}")
    session_logger.debug("OpenRouter payload: %s", {"id": "x"})
    session_logger.info("Reasoning: %s", "thinking")
    session_logger.info("Streaming started")

    events = SessionLogger.get_events("req-1")
    assert [event["event_type"] for event in events] == [
        "openrouter.request.payload",
        "openrouter.sse.payload",
        "reasoning.stream",
        "pipe",
    ]
    assert events[2]["message"] == "Reasoning: thinking"
    assert {event["session_id"] for event in events} == {"sess-1"}
    assert {event["user_id"] for event in events} == {"user-1"}


def test_console_respects_request_log_level(session_logger, capsys):
    session_logger.info("quiet line")
    session_logger.warning("loud line")
    out = capsys.readouterr().out
    assert "quiet line" not in out
    assert "loud line" in out
    # Both lines are still buffered.
    assert len(SessionLogger.get_events("req-1")) == 2


def test_records_without_request_id_are_not_buffered():
    logger = SessionLogger.get_logger("tests.session_logger.anonymous")
    logger.warning("no request here")
    assert SessionLogger.logs == {}


def test_exceptions_are_captured(session_logger):
    try:
        raise ValueError("bad chunk")
    except ValueError:
        session_logger.exception("Stream failed")
    event = SessionLogger.get_events("req-1")[0]
    assert "ValueError: bad chunk" in event["exception"]["text"]


def test_max_lines_bounds_the_buffer(session_logger, monkeypatch):
    monkeypatch.setattr(SessionLogger, "max_lines", SessionLogger.max_lines)
    SessionLogger.set_max_lines(5)
    assert SessionLogger.max_lines == 100
    SessionLogger.set_max_lines("not a number")
    assert SessionLogger.max_lines == 100
    for i in range(150):
        session_logger.info("line %d", i)
    events = SessionLogger.get_events("req-1")
    assert len(events) == 100
    assert events[-1]["message"] == "line 149"


def test_cleanup_drops_stale_requests(session_logger):
    session_logger.info("old")
    SessionLogger._session_last_seen["req-1"] = time.time() - 7200
    SessionLogger.cleanup()
    assert SessionLogger.get_events("req-1") == []


def test_format_event_as_text():
    event = {"created": 0.25, "level": "INFO", "user_id": "u", "message": "hello"}
    text = SessionLogger.format_event_as_text(event)
    assert text.endswith(",250 [INFO] [user=u] hello")
