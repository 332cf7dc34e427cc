"""Reasoning stream tap.

Wraps a streaming function so that reasoning/thinking text found in streamed
chat-completion chunks is forwarded to an observer, while every chunk still
reaches the caller's own ``on_payload`` callback exactly once, unchanged and in
order.

A stream function has the shape ``stream_fn(model, context, options=None)``;
``options`` is a :class:`StreamOptions`, a mapping, a dataclass, any other
attribute bag, or None, and may carry an ``on_payload(payload)`` callback. The
wrapper passes on a copy with that callback swapped for its own and leaves
every other option untouched.

The observer runs before the original callback for each chunk. Observer and
extraction failures are discarded; failures of the stream function itself, or
of the caller's callback, propagate unchanged.
"""

from __future__ import annotations

import copy
import dataclasses
import functools
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

LOGGER = logging.getLogger(__name__)

# Checked in order; the first truthy value wins.
REASONING_FIELDS: tuple[str, ...] = ("reasoning", "reasoning_details", "thinking")

PayloadCallback = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class ReasoningEvent:
    """Reasoning text carried by a single streamed chunk."""

    text: str


ReasoningObserver = Callable[[ReasoningEvent], None]


class StreamContext(BaseModel):
    """Conversation handed to a stream function."""

    model_config = ConfigDict(extra="allow")

    system_prompt: Optional[str] = None
    messages: list[dict[str, Any]] = Field(default_factory=list)
    tools: list[dict[str, Any]] = Field(default_factory=list)


class StreamOptions(BaseModel):
    """Per-call options for a stream function.

    Unknown keyword arguments are kept as extra fields so wrappers can pass
    them through without knowing about them.
    """

    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    on_payload: Optional[PayloadCallback] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    reasoning: Optional[dict[str, Any]] = None
    include_reasoning: Optional[bool] = None
    extra_body: Optional[dict[str, Any]] = None


StreamFn = Callable[..., Any]
_T = TypeVar("_T")


def extract_reasoning_text(payload: Any) -> Optional[str]:
    """Return the reasoning text in ``choices[0].delta``, or None.

    Any shape mismatch yields None. A truthy non-string in a higher-priority
    field also yields None rather than falling through to the next field.
    """
    if not isinstance(payload, Mapping):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, Sequence) or isinstance(choices, (str, bytes)) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, Mapping):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, Mapping) or not delta:
        return None

    text = None
    for field in REASONING_FIELDS:
        candidate = delta.get(field)
        if candidate:
            text = candidate
            break
    return text if isinstance(text, str) else None


def _original_on_payload(options: Any) -> Optional[PayloadCallback]:
    if options is None:
        return None
    if isinstance(options, Mapping):
        return options.get("on_payload")
    return getattr(options, "on_payload", None)


def _option_fields(options: Any) -> dict[str, Any]:
    """Return the attribute values of an arbitrary options object."""
    try:
        return dict(vars(options))
    except TypeError:
        pass
    fields: dict[str, Any] = {}
    for klass in type(options).__mro__:
        slots = getattr(klass, "__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name.startswith("__") or name in fields:
                continue
            if hasattr(options, name):
                fields[name] = getattr(options, name)
    return fields


def _replace_on_payload(options: Any, on_payload: PayloadCallback) -> Any:
    """Return a copy of ``options`` with only ``on_payload`` swapped."""
    if options is None:
        return StreamOptions(on_payload=on_payload)
    if isinstance(options, BaseModel):
        return options.model_copy(update={"on_payload": on_payload})
    if isinstance(options, Mapping):
        return {**options, "on_payload": on_payload}
    if dataclasses.is_dataclass(options) and not isinstance(options, type):
        if any(f.name == "on_payload" and f.init for f in dataclasses.fields(options)):
            return dataclasses.replace(options, on_payload=on_payload)
    try:
        copied = copy.copy(options)
        setattr(copied, "on_payload", on_payload)
    except (AttributeError, TypeError):
        # Frozen or slotted objects: hand the fields on as a mapping.
        return {**_option_fields(options), "on_payload": on_payload}
    return copied


class ReasoningStreamTap:
    """Builds wrapped stream functions that report reasoning text to an observer."""

    def __init__(
        self,
        on_reasoning_stream: ReasoningObserver,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._on_reasoning_stream = on_reasoning_stream
        self.logger = logger or LOGGER

    def _notify(self, payload: Any) -> None:
        try:
            reasoning = extract_reasoning_text(payload)
            if reasoning:
                self._on_reasoning_stream(ReasoningEvent(text=reasoning))
        except Exception:
            # Side-channel only: never let the tap break the stream.
            self.logger.debug("Reasoning observer failed; chunk skipped", exc_info=True)

    def wrap_stream_fn(self, stream_fn: StreamFn) -> StreamFn:
        """Return ``stream_fn`` with its ``on_payload`` callback tapped."""

        @functools.wraps(stream_fn)
        def wrapped(model: Any, context: Any, options: Any = None) -> Any:
            original = _original_on_payload(options)

            def on_payload(payload: Any) -> None:
                self._notify(payload)
                if original is not None:
                    original(payload)

            return stream_fn(model, context, _replace_on_payload(options, on_payload))

        return wrapped


def create_reasoning_stream_logger(
    on_reasoning_stream: Optional[ReasoningObserver] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> Optional[ReasoningStreamTap]:
    """Return a tap for ``on_reasoning_stream``, or None when there is nothing to observe.

    Callers must check for None and use their stream function unwrapped.
    """
    if on_reasoning_stream is None:
        return None
    return ReasoningStreamTap(on_reasoning_stream, logger=logger)


def maybe_wrap_stream_fn(tap: Optional[ReasoningStreamTap], stream_fn: _T) -> _T:
    """Wrap ``stream_fn`` when ``tap`` is enabled, otherwise return it as-is."""
    if tap is None:
        return stream_fn
    return tap.wrap_stream_fn(stream_fn)  # type: ignore[return-value]
