"""Configuration for the OpenRouter reasoning tap.

This module contains configuration schemas and constants:
- Valves: Global configuration (API key, endpoint, timeouts, logging, reasoning trace)
- EncryptedStr: Secret value encryption wrapper
- HTTP attribution constants and helpers
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Any, Literal, Optional, cast

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, GetCoreSchemaHandler, model_validator
from pydantic_core import core_schema

from .timing_logger import timed

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

_OPENROUTER_TITLE = "OpenRouter reasoning stream tap"
_OPENROUTER_REFERER = "https://github.com/openrouter-reasoning-tap/openrouter-reasoning-tap/"
_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
_SECRET_KEY_ENV = "REASONING_TAP_SECRET_KEY"

_ALLOWED_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# -----------------------------------------------------------------------------
# EncryptedStr and Helper Functions
# -----------------------------------------------------------------------------

class EncryptedStr(str):
    """String wrapper that automatically encrypts/decrypts valve values."""

    _ENCRYPTION_PREFIX = "encrypted:"

    @classmethod
    def _get_encryption_key(cls) -> Optional[bytes]:
        """Return the Fernet key derived from ``REASONING_TAP_SECRET_KEY`` or None when unset."""
        secret = os.getenv(_SECRET_KEY_ENV)
        if not secret:
            return None
        hashed_key = hashlib.sha256(secret.encode()).digest()
        return base64.urlsafe_b64encode(hashed_key)

    @classmethod
    def encrypt(cls, value: str) -> str:
        """Encrypt ``value`` when a secret is configured.

        Args:
            value: Plain-text string supplied by the user.

        Returns:
            str: Ciphertext prefixed with ``encrypted:`` or the original value.
        """
        if not value or value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value
        encrypted = Fernet(key).encrypt(value.encode())
        return f"{cls._ENCRYPTION_PREFIX}{encrypted.decode()}"

    @classmethod
    def decrypt(cls, value: str) -> str:
        """Decrypt values produced by :meth:`encrypt`.

        Returns the original value when the token cannot be decrypted so callers
        can detect the failure with :meth:`is_undecryptable`.
        """
        if not value or not value.startswith(cls._ENCRYPTION_PREFIX):
            return value
        key = cls._get_encryption_key()
        if not key:
            return value[len(cls._ENCRYPTION_PREFIX) :]
        try:
            encrypted_part = value[len(cls._ENCRYPTION_PREFIX) :]
            return Fernet(key).decrypt(encrypted_part.encode()).decode()
        except InvalidToken:
            LOGGER.warning("Failed to decrypt value: invalid token or key mismatch")
            return value
        except (ValueError, UnicodeDecodeError) as exc:
            LOGGER.warning(f"Failed to decrypt value: {type(exc).__name__}: {exc}")
            return value

    @classmethod
    def is_undecryptable(cls, value: str) -> bool:
        """Return True when ``value`` is ciphertext that the current key cannot open."""
        if not value or not value.startswith(cls._ENCRYPTION_PREFIX):
            return False
        if not cls._get_encryption_key():
            return False
        return cls.decrypt(value) == value

    @classmethod
    def __get_pydantic_core_schema__(
        cls, _source_type: Any, _handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        """Expose a union schema so plain strings auto-wrap as EncryptedStr."""
        return core_schema.union_schema(
            [
                core_schema.is_instance_schema(cls),
                core_schema.chain_schema(
                    [
                        core_schema.str_schema(),
                        core_schema.no_info_plain_validator_function(
                            lambda value: cls(cls.encrypt(value) if value else value)
                        ),
                    ]
                ),
            ],
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda instance: str(instance)
            ),
        )


@timed
def _default_api_key() -> EncryptedStr:
    """Return the API key env default as EncryptedStr."""
    return EncryptedStr((os.getenv("OPENROUTER_API_KEY") or "").strip())


@timed
def _resolve_log_level_default() -> LogLevel:
    """Normalize env-provided log level to the allowed literal set."""
    value = (os.getenv("GLOBAL_LOG_LEVEL") or "INFO").strip().upper()
    if value not in _ALLOWED_LOG_LEVELS:
        value = "INFO"
    return cast(LogLevel, value)


def _select_openrouter_http_referer(valves: Any | None) -> str:
    """Select HTTP referer for OpenRouter requests, with optional valve override."""
    override = (getattr(valves, "HTTP_REFERER_OVERRIDE", "") or "").strip()
    if override and override.startswith(("http://", "https://")):
        return override
    return _OPENROUTER_REFERER


# -----------------------------------------------------------------------------
# Valves
# -----------------------------------------------------------------------------

class Valves(BaseModel):
    """Global configuration for chat streaming and the reasoning trace."""

    # Connection & Auth
    BASE_URL: str = Field(
        default=((os.getenv("OPENROUTER_API_BASE_URL") or "").strip() or _DEFAULT_BASE_URL),
        description="OpenRouter API base URL. Override this if you are using a gateway or proxy.",
    )
    API_KEY: EncryptedStr = Field(
        default_factory=_default_api_key,
        description="Your OpenRouter API key. Defaults to the OPENROUTER_API_KEY environment variable.",
    )
    HTTP_REFERER_OVERRIDE: str = Field(
        default="",
        description=(
            "Override the `HTTP-Referer` header sent to OpenRouter for app attribution. "
            "Must be a full URL including scheme."
        ),
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection before failing.",
    )
    HTTP_TOTAL_TIMEOUT_SECONDS: Optional[int] = Field(
        default=None,
        ge=1,
        description="Overall HTTP timeout in seconds. Null disables it so long streams are not interrupted.",
    )
    HTTP_SOCK_READ_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Idle read timeout in seconds between streamed chunks.",
    )
    MAX_RETRIES: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before a stream fails. Retries stop once the first chunk arrives.",
    )

    # Reasoning trace
    REASONING_STREAM_ENABLED: bool = Field(
        default=False,
        description=(
            "When True and no explicit observer is supplied, reasoning text tapped from the stream "
            "is written to the log at REASONING_LOG_LEVEL."
        ),
    )
    REASONING_LOG_LEVEL: LogLevel = Field(
        default="DEBUG",
        description="Level used when writing reasoning trace lines.",
    )
    REASONING_LOG_MIN_CHARS: int = Field(
        default=12,
        ge=1,
        description="Buffered reasoning shorter than this is held until punctuation or idle time.",
    )
    REASONING_LOG_MAX_CHARS: int = Field(
        default=160,
        ge=1,
        description="Buffered reasoning is written out once it reaches this many characters.",
    )
    REASONING_LOG_IDLE_SECONDS: float = Field(
        default=0.75,
        ge=0,
        description="Seconds since the last trace line after which a buffer above the minimum is written.",
    )

    # Logging
    LOG_LEVEL: LogLevel = Field(
        default_factory=_resolve_log_level_default,
        description="Select logging level. DEBUG is useful for development and debugging.",
    )
    ENABLE_TIMING_LOG: bool = Field(
        default=False,
        description="When True, capture function entrance/exit timing data to TIMING_LOG_FILE.",
    )
    TIMING_LOG_FILE: str = Field(
        default="logs/timing.jsonl",
        description="JSONL file for timing output. Parent directories are created automatically.",
    )

    @model_validator(mode="after")
    def _check_reasoning_thresholds(self) -> "Valves":
        if self.REASONING_LOG_MAX_CHARS < self.REASONING_LOG_MIN_CHARS:
            raise ValueError("REASONING_LOG_MAX_CHARS must be >= REASONING_LOG_MIN_CHARS")
        return self
