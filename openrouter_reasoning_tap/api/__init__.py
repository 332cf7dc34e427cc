"""OpenRouter API clients."""

from .chat_completions import ChatCompletionsClient, build_chat_payload, collect_stream, delta_content

__all__ = [
    "ChatCompletionsClient",
    "build_chat_payload",
    "collect_stream",
    "delta_content",
]
