from __future__ import annotations

import json

import pytest

from openrouter_reasoning_tap.core import timing_logger
from openrouter_reasoning_tap.core.timing_logger import (
    clear_timing_context,
    clear_timing_events,
    close_timing_file,
    configure_timing_file,
    ensure_timing_file_configured,
    get_timing_events,
    set_timing_context,
    timed,
    timing_mark,
    timing_scope,
)


@pytest.fixture
def timing_request():
    set_timing_context("timing-req", enabled=True)
    yield "timing-req"
    clear_timing_context()
    clear_timing_events("timing-req")
    close_timing_file()


@timed
def _sync_work(value):
    return value * 2


@timed
async def _async_work(value):
    return value + 1


def test_disabled_context_records_nothing():
    clear_timing_context()
    timing_mark("ignored")
    assert _sync_work(2) == 4
    assert get_timing_events("timing-req") == []


def test_mark_and_scope_are_recorded(timing_request):
    timing_mark("chat_first_chunk")
    with timing_scope("block"):
        pass

    events = get_timing_events(timing_request)
    assert [(e["event"], e["label"]) for e in events] == [
        ("mark", "chat_first_chunk"),
        ("enter", "block"),
        ("exit", "block"),
    ]
    assert events[-1]["elapsed_ms"] >= 0
    assert all(e["request_id"] == timing_request for e in events)


def test_timed_sync_function_label(timing_request):
    assert _sync_work(3) == 6
    labels = {e["label"] for e in get_timing_events(timing_request)}
    assert labels == {f"{__name__}._sync_work"}


@pytest.mark.asyncio
async def test_timed_async_function(timing_request):
    assert await _async_work(1) == 2
    events = get_timing_events(timing_request)
    assert [e["event"] for e in events] == ["enter", "exit"]


def test_package_prefix_is_stripped_from_labels():
    def func():
        pass

    func.__module__ = "openrouter_reasoning_tap.api.chat_completions"
    func.__qualname__ = "ChatCompletionsClient._open"
    assert timing_logger._label_for(func) == "api.chat_completions.ChatCompletionsClient._open"


def test_events_are_written_to_jsonl_file(timing_request, tmp_path):
    path = tmp_path / "nested" / "timing.jsonl"
    assert configure_timing_file(str(path)) is True
    assert ensure_timing_file_configured(str(path)) is True

    timing_mark("chat_stream_done")
    close_timing_file()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["label"] == "chat_stream_done"
    assert record["request_id"] == timing_request
    assert record["ts"].endswith("Z")
