"""Completion clients and the event-stream decoder."""

from memochat.providers.base import (
    CompletionClient,
    CompletionError,
    CompletionHTTPError,
    CompletionResult,
    StreamCallbacks,
    StreamEvent,
)
from memochat.providers.openai_stream import StreamingCompletionClient
from memochat.providers.sse import StreamDecoder

__all__ = [
    "CompletionClient",
    "CompletionError",
    "CompletionHTTPError",
    "CompletionResult",
    "StreamCallbacks",
    "StreamDecoder",
    "StreamEvent",
    "StreamingCompletionClient",
]
