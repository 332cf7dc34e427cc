"""Pure helper functions shared by the config, error and streaming modules."""

from __future__ import annotations

import datetime
import email.utils
import json
from typing import Any, Optional


# -----------------------------------------------------------------------------
# JSON Helpers
# -----------------------------------------------------------------------------

def _pretty_json(value: Any) -> str:
    """Return a human-readable JSON string or an empty string when not applicable."""
    if value is None:
        return ""
    if isinstance(value, (str, bytes)):
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        return text.strip()
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _safe_json_loads(payload: Optional[str | bytes]) -> Any:
    """Return parsed JSON or None without raising."""
    if not payload:
        return None
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return None


# -----------------------------------------------------------------------------
# String Normalization
# -----------------------------------------------------------------------------

def _normalize_optional_str(value: Any) -> Optional[str]:
    """Convert arbitrary input into a trimmed string or None."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def _normalize_string_list(value: Any) -> list[str]:
    """Return a list of trimmed, non-empty strings."""
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for entry in value:
        text = _normalize_optional_str(entry)
        if text:
            items.append(text)
    return items


# -----------------------------------------------------------------------------
# HTTP Utilities
# -----------------------------------------------------------------------------

def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header (seconds or HTTP date) into seconds."""
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        return max(0.0, float(trimmed))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(trimmed)
    except (TypeError, ValueError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    now = datetime.datetime.now(datetime.timezone.utc)
    return max(0.0, (dt - now).total_seconds())
