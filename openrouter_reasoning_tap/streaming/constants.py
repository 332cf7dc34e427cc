"""Shared streaming constants."""

# Reasoning trace emission thresholds.
REASONING_TRACE_PUNCTUATION = (".", "!", "?", ":", "\n")
REASONING_TRACE_MAX_CHARS = 160
REASONING_TRACE_MIN_CHARS = 12
REASONING_TRACE_IDLE_SECONDS = 0.75
