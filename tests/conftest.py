"""Shared fixtures for the reasoning tap test-suite."""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable

import pytest

from openrouter_reasoning_tap.core.config import Valves
from openrouter_reasoning_tap.core.logging_system import SessionLogger

BASE_URL = "https://openrouter.test/api/v1"
CHAT_URL = f"{BASE_URL}/chat/completions"


def make_chunk(
    *,
    content: str | None = None,
    reasoning: Any = None,
    reasoning_details: Any = None,
    thinking: Any = None,
) -> dict[str, Any]:
    """Build a chat.completion.chunk with only the given delta fields set."""
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning"] = reasoning
    if reasoning_details is not None:
        delta["reasoning_details"] = reasoning_details
    if thinking is not None:
        delta["thinking"] = thinking
    return {
        "id": "gen-test",
        "object": "chat.completion.chunk",
        "model": "test/model",
        "choices": [{"index": 0, "delta": delta, "finish_reason": None}],
    }


def sse_body(chunks: Iterable[Any], *, done: bool = True) -> bytes:
    """Encode chunks as an SSE response body."""
    parts = [": OPENROUTER PROCESSING\n\n"]
    for chunk in chunks:
        parts.append(f"data: {json.dumps(chunk)}\n\n")
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


@pytest.fixture
def chunk_factory() -> Callable[..., dict[str, Any]]:
    return make_chunk


@pytest.fixture
def sse_encoder() -> Callable[..., bytes]:
    return sse_body


@pytest.fixture
def valves(monkeypatch) -> Valves:
    """Valves pointed at a fake endpoint with a plain-text key and fast retries."""
    monkeypatch.delenv("REASONING_TAP_SECRET_KEY", raising=False)
    return Valves(BASE_URL=BASE_URL, API_KEY="sk-test", MAX_RETRIES=2, LOG_LEVEL="DEBUG")


@pytest.fixture(autouse=True)
def _reset_session_logs():
    """Keep SessionLogger class-level buffers isolated between tests."""
    SessionLogger.logs.clear()
    SessionLogger._session_last_seen.clear()
    yield
    SessionLogger.logs.clear()
    SessionLogger._session_last_seen.clear()


@pytest.fixture
def chat_url() -> str:
    return CHAT_URL
