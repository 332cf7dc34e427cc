"""Error types raised by the chat streaming client.

This module handles:
- OpenRouterAPIError: Rich error class with markdown formatting
- Error body parsing (OpenRouter envelope plus the upstream provider's raw error)
- Retry classification and a Tenacity wait strategy honouring Retry-After

Failures inside the reasoning tap itself never reach these types: the tap
absorbs them. Everything here describes failures of the underlying stream,
which propagate to the caller unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .utils import (
    _normalize_optional_str,
    _normalize_string_list,
    _pretty_json,
    _retry_after_seconds,
    _safe_json_loads,
)

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUSES = frozenset({408, 425, 429})


# -----------------------------------------------------------------------------
# Supporting Classes
# -----------------------------------------------------------------------------

class _RetryableHTTPStatusError(Exception):
    """Marks an HTTP failure that happened before any chunk was delivered as retryable."""

    def __init__(self, original: "OpenRouterAPIError", retry_after: Optional[float] = None):
        self.original = original
        self.retry_after = retry_after
        super().__init__(f"Retryable HTTP error ({original.status} {original.reason})")


class _RetryWait:
    """Custom Tenacity wait strategy honoring Retry-After headers."""

    def __init__(self, base_wait):
        self._base_wait = base_wait

    def __call__(self, retry_state):
        """Return the greater of base delay or Retry-After header guidance."""
        base_delay = self._base_wait(retry_state) if self._base_wait else 0
        exc = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            exc = retry_state.outcome.exception()
        if isinstance(exc, _RetryableHTTPStatusError):
            retry_after = exc.retry_after
            if isinstance(retry_after, (int, float)) and retry_after > 0:
                return max(base_delay, retry_after)
        return base_delay


# -----------------------------------------------------------------------------
# OpenRouterAPIError Class
# -----------------------------------------------------------------------------

class OpenRouterAPIError(RuntimeError):
    """User-facing error raised when OpenRouter rejects or aborts a chat stream."""

    def __init__(
        self,
        *,
        status: int,
        reason: str,
        provider: Optional[str] = None,
        openrouter_message: Optional[str] = None,
        openrouter_code: Optional[Any] = None,
        upstream_message: Optional[str] = None,
        upstream_type: Optional[str] = None,
        request_id: Optional[str] = None,
        raw_body: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        moderation_reasons: Optional[list[str]] = None,
        model_slug: Optional[str] = None,
        requested_model: Optional[str] = None,
        provider_raw: Optional[Any] = None,
        chunk_id: Optional[str] = None,
        is_streaming_error: bool = False,
    ) -> None:
        """Normalize raw OpenRouter metadata into convenient attributes."""
        self.status = status
        self.reason = reason
        self.provider = provider
        self.openrouter_message = (openrouter_message or "").strip() or None
        self.openrouter_code = openrouter_code
        self.upstream_message = (upstream_message or "").strip() or None
        self.upstream_type = (upstream_type or "").strip() or None
        self.request_id = (request_id or "").strip() or None
        self.raw_body = raw_body or ""
        self.metadata = metadata or {}
        self.moderation_reasons = moderation_reasons or []
        self.model_slug = (model_slug or "").strip() or None
        self.requested_model = (requested_model or "").strip() or None
        self.provider_raw = provider_raw
        self.chunk_id = chunk_id
        self.is_streaming_error = is_streaming_error
        summary = (
            self.upstream_message
            or self.openrouter_message
            or f"OpenRouter request failed ({self.status} {self.reason})"
        )
        super().__init__(summary)

    @property
    def retry_after_seconds(self) -> Optional[float]:
        value = self.metadata.get("retry_after")
        return _retry_after_seconds(str(value)) if value is not None else None

    def to_markdown(self, *, model_label: Optional[str] = None) -> str:
        """Return a short markdown block describing the failure."""
        provider_label = (self.provider or "").strip()
        effective_model = model_label or self.model_slug or self.requested_model
        if provider_label and effective_model:
            heading = f"{provider_label}: {effective_model}"
        else:
            heading = effective_model or provider_label or "OpenRouter"

        lines = [f"### 🚫 {heading} could not process your request.", ""]
        lines.append(f"- **Status**: `{self.status} {self.reason}`")
        if self.openrouter_message:
            lines.append(f"- **OpenRouter message**: `{self.openrouter_message}`")
        if self.upstream_message:
            lines.append(f"- **Provider message**: `{self.upstream_message}`")
        if self.upstream_type:
            lines.append(f"- **Provider error**: `{self.upstream_type}`")
        if self.openrouter_code is not None:
            lines.append(f"- **OpenRouter code**: `{self.openrouter_code}`")
        if self.request_id:
            lines.append(f"- **Request ID**: `{self.request_id}`")
        if self.chunk_id:
            lines.append(f"- **Chunk ID**: `{self.chunk_id}`")
        if self.moderation_reasons:
            lines.append("")
            lines.append("**Moderation reasons:**")
            lines.extend(f"- {reason}" for reason in self.moderation_reasons)
        return "\n".join(lines) + "\n"


# -----------------------------------------------------------------------------
# Error Helper Functions
# -----------------------------------------------------------------------------

def _classify_retryable_status(status: int) -> bool:
    """Return True for statuses worth retrying before the stream has started."""
    return status >= 500 or status in _RETRYABLE_STATUSES


def _extract_error_section_details(parsed: Any, body_text: str) -> dict[str, Any]:
    error_section = parsed.get("error", {}) if isinstance(parsed, dict) else {}
    if not isinstance(error_section, dict):
        error_section = {"message": str(error_section)}
    metadata = error_section.get("metadata", {})
    metadata_dict = metadata if isinstance(metadata, dict) else {}

    raw_meta = metadata_dict.get("raw")
    if isinstance(raw_meta, str):
        raw_details = _safe_json_loads(raw_meta)
    elif isinstance(raw_meta, dict):
        raw_details = raw_meta
    else:
        raw_details = None

    upstream_error = raw_details.get("error", {}) if isinstance(raw_details, dict) else {}
    upstream_message = (
        upstream_error.get("message") if isinstance(upstream_error, dict) else None
    ) or (raw_details.get("message") if isinstance(raw_details, dict) else None)
    upstream_type = upstream_error.get("type") if isinstance(upstream_error, dict) else None

    request_id = (
        metadata_dict.get("request_id")
        or (raw_details.get("request_id") if isinstance(raw_details, dict) else None)
        or (parsed.get("request_id") if isinstance(parsed, dict) else None)
    )

    return {
        "provider": metadata_dict.get("provider_name") or metadata_dict.get("provider"),
        "openrouter_message": error_section.get("message"),
        "openrouter_code": error_section.get("code"),
        "upstream_message": upstream_message,
        "upstream_type": upstream_type,
        "request_id": request_id,
        "raw_body": body_text,
        "metadata": metadata_dict,
        "moderation_reasons": _normalize_string_list(metadata_dict.get("reasons")),
        "model_slug": _normalize_optional_str(metadata_dict.get("model_slug")),
        "provider_raw": raw_details,
    }


def _extract_openrouter_error_details(body_text: Optional[str]) -> dict[str, Any]:
    """Normalize OpenRouter error payloads into structured metadata."""
    parsed = _safe_json_loads(body_text) if body_text else None
    return _extract_error_section_details(parsed, body_text or "")


def _build_openrouter_api_error(
    status: int,
    reason: str,
    body_text: Optional[str],
    *,
    requested_model: Optional[str] = None,
    extra_metadata: Optional[dict[str, Any]] = None,
) -> OpenRouterAPIError:
    """Create a structured error wrapper for a failed OpenRouter HTTP response."""
    details = _extract_openrouter_error_details(body_text)
    metadata_block = details.get("metadata") or {}
    if extra_metadata:
        metadata_block = {**metadata_block, **extra_metadata}
    return OpenRouterAPIError(
        status=status,
        reason=reason,
        provider=details.get("provider"),
        openrouter_message=details.get("openrouter_message"),
        openrouter_code=details.get("openrouter_code"),
        upstream_message=details.get("upstream_message"),
        upstream_type=details.get("upstream_type"),
        request_id=details.get("request_id"),
        raw_body=details.get("raw_body"),
        metadata=metadata_block,
        moderation_reasons=details.get("moderation_reasons") or [],
        model_slug=details.get("model_slug"),
        requested_model=requested_model,
        provider_raw=details.get("provider_raw"),
    )


def _extract_streaming_error(
    chunk: Any,
    *,
    requested_model: Optional[str] = None,
) -> Optional[OpenRouterAPIError]:
    """Return an error for an in-band ``{"error": {...}}`` chunk, or None for normal chunks."""
    if not isinstance(chunk, Mapping):
        return None
    error_section = chunk.get("error")
    if not error_section:
        return None
    details = _extract_error_section_details(dict(chunk), _pretty_json(dict(chunk)))
    code = details.get("openrouter_code")
    status = code if isinstance(code, int) and 100 <= code <= 599 else 500
    return OpenRouterAPIError(
        status=status,
        reason="Streaming error",
        provider=details.get("provider") or _normalize_optional_str(chunk.get("provider")),
        openrouter_message=details.get("openrouter_message"),
        openrouter_code=code,
        upstream_message=details.get("upstream_message"),
        upstream_type=details.get("upstream_type"),
        request_id=details.get("request_id"),
        raw_body=details.get("raw_body"),
        metadata=details.get("metadata") or {},
        moderation_reasons=details.get("moderation_reasons") or [],
        model_slug=details.get("model_slug") or _normalize_optional_str(chunk.get("model")),
        requested_model=requested_model,
        provider_raw=details.get("provider_raw"),
        chunk_id=_normalize_optional_str(chunk.get("id")),
        is_streaming_error=True,
    )
