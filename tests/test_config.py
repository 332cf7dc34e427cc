from __future__ import annotations

import pydantic
import pytest

from openrouter_reasoning_tap.api.chat_completions import ChatCompletionsClient
from openrouter_reasoning_tap.core.config import (
    EncryptedStr,
    Valves,
    _OPENROUTER_REFERER,
    _select_openrouter_http_referer,
)
from openrouter_reasoning_tap.core.errors import OpenRouterAPIError


def test_api_key_is_encrypted_when_secret_is_set(monkeypatch):
    monkeypatch.setenv("REASONING_TAP_SECRET_KEY", "unit-test-secret")
    valves = Valves(API_KEY="sk-or-v1-abc")

    stored = str(valves.API_KEY)
    assert stored.startswith("encrypted:")
    assert EncryptedStr.decrypt(stored) == "sk-or-v1-abc"
    assert EncryptedStr.is_undecryptable(stored) is False


def test_api_key_stays_plain_without_secret(monkeypatch):
    monkeypatch.delenv("REASONING_TAP_SECRET_KEY", raising=False)
    valves = Valves(API_KEY="sk-plain")
    assert str(valves.API_KEY) == "sk-plain"
    assert EncryptedStr.decrypt(valves.API_KEY) == "sk-plain"


def test_encrypt_is_idempotent(monkeypatch):
    monkeypatch.setenv("REASONING_TAP_SECRET_KEY", "unit-test-secret")
    once = EncryptedStr.encrypt("value")
    assert EncryptedStr.encrypt(once) == once


def test_key_rotation_makes_value_undecryptable_and_client_refuses_it(monkeypatch):
    monkeypatch.setenv("REASONING_TAP_SECRET_KEY", "old-secret")
    valves = Valves(API_KEY="sk-or-v1-abc")
    monkeypatch.setenv("REASONING_TAP_SECRET_KEY", "new-secret")

    assert EncryptedStr.is_undecryptable(str(valves.API_KEY)) is True
    client = ChatCompletionsClient(session=None, valves=valves)  # type: ignore[arg-type]
    with pytest.raises(OpenRouterAPIError) as excinfo:
        client._build_headers()
    assert excinfo.value.status == 401
    assert "REASONING_TAP_SECRET_KEY" in str(excinfo.value)


def test_api_key_defaults_to_environment(monkeypatch):
    monkeypatch.delenv("REASONING_TAP_SECRET_KEY", raising=False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "  sk-from-env  ")
    assert str(Valves().API_KEY) == "sk-from-env"


@pytest.mark.parametrize(
    ("env_value", "expected"),
    [("warning", "WARNING"), ("DEBUG", "DEBUG"), ("verbose", "INFO")],
)
def test_log_level_default_follows_global_log_level(monkeypatch, env_value, expected):
    monkeypatch.setenv("GLOBAL_LOG_LEVEL", env_value)
    assert Valves().LOG_LEVEL == expected


def test_reasoning_thresholds_must_be_ordered():
    with pytest.raises(pydantic.ValidationError):
        Valves(REASONING_LOG_MIN_CHARS=50, REASONING_LOG_MAX_CHARS=10)


def test_invalid_log_level_rejected():
    with pytest.raises(pydantic.ValidationError):
        Valves(REASONING_LOG_LEVEL="LOUD")


def test_max_retries_bounds():
    with pytest.raises(pydantic.ValidationError):
        Valves(MAX_RETRIES=0)
    assert Valves(MAX_RETRIES=10).MAX_RETRIES == 10


def test_http_referer_override_requires_full_url():
    assert _select_openrouter_http_referer(Valves(HTTP_REFERER_OVERRIDE="https://example.org/app")) == (
        "https://example.org/app"
    )
    assert _select_openrouter_http_referer(Valves(HTTP_REFERER_OVERRIDE="example.org")) == _OPENROUTER_REFERER
    assert _select_openrouter_http_referer(None) == _OPENROUTER_REFERER
