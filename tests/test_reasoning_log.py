"""Tests for the reasoning trace throttle and logger observer."""

from __future__ import annotations

import logging

import pytest

from openrouter_reasoning_tap.streaming.reasoning_log import (
    ReasoningTraceLogger,
    ReasoningTraceThrottle,
)
from openrouter_reasoning_tap.streaming.reasoning_tap import ReasoningEvent


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_throttle_emits_on_punctuation():
    throttle = ReasoningTraceThrottle(clock=_Clock())
    assert throttle.feed("I should") is None
    assert throttle.feed(" check.") == "I should check."
    assert throttle.pending == ""


def test_throttle_emits_at_max_chars():
    throttle = ReasoningTraceThrottle(min_chars=5, max_chars=10, clock=_Clock())
    throttle.feed("abcd")
    # Reaching min_chars on the first line emits straight away.
    assert throttle.feed("efgh") == "abcdefgh"
    assert throttle.feed("x" * 10) == "x" * 10


def test_throttle_waits_for_idle_gap_after_first_line():
    clock = _Clock()
    throttle = ReasoningTraceThrottle(min_chars=3, max_chars=100, idle_seconds=1.0, clock=clock)
    assert throttle.feed("first line") == "first line"
    assert throttle.feed("second") is None
    clock.now = 2.0
    assert throttle.feed(" more") == "second more"


def test_throttle_ignores_whitespace_and_non_strings():
    throttle = ReasoningTraceThrottle(clock=_Clock())
    assert throttle.feed("   ") is None
    assert throttle.feed(None) is None  # type: ignore[arg-type]


def test_throttle_force_flushes_buffer():
    throttle = ReasoningTraceThrottle(min_chars=50, clock=_Clock())
    throttle.feed("partial")
    assert throttle.feed("", force=True) == "partial"
    assert throttle.feed("", force=True) is None


def test_trace_logger_logs_lines_and_keeps_full_text(caplog: pytest.LogCaptureFixture):
    logger = logging.getLogger("test.reasoning_trace")
    trace = ReasoningTraceLogger(
        logger,
        level=logging.INFO,
        throttle=ReasoningTraceThrottle(min_chars=100, clock=_Clock()),
    )

    with caplog.at_level(logging.INFO, logger="test.reasoning_trace"):
        trace(ReasoningEvent(text="Look at the"))
        trace(ReasoningEvent(text=" question."))
        trace(ReasoningEvent(text=" Then answer"))
        trace.flush()

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["Reasoning: Look at the question.", "Reasoning: Then answer"]
    assert trace.text == "Look at the question. Then answer"
    assert trace.lines_written == 2


def test_trace_logger_flush_without_pending_text_is_silent(caplog: pytest.LogCaptureFixture):
    logger = logging.getLogger("test.reasoning_trace.empty")
    trace = ReasoningTraceLogger(logger, level=logging.INFO)
    with caplog.at_level(logging.INFO, logger="test.reasoning_trace.empty"):
        trace.flush()
    assert caplog.records == []
    assert trace.text == ""
