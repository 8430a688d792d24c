"""Result, callback and error types shared by completion clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, Protocol, Sequence, TypeAlias

from memochat.config.schema import ProviderConfig

Channel: TypeAlias = Literal["content", "reasoning"]
DeltaCallback: TypeAlias = Callable[[str], None]


class CompletionError(Exception):
    """A completion call failed before producing its final result."""


class CompletionHTTPError(CompletionError):
    """The endpoint answered with a non-success status before streaming began."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"API Error: {body}")


@dataclass
class StreamCallbacks:
    """Optional per-delta observers, one per channel.

    Each callback receives only the new delta, never the accumulated text.
    """

    on_content: DeltaCallback | None = None
    on_reasoning: DeltaCallback | None = None

    def dispatch(self, channel: Channel, delta: str) -> None:
        callback = self.on_content if channel == "content" else self.on_reasoning
        if callback is not None:
            callback(delta)


@dataclass(frozen=True)
class StreamEvent:
    channel: Channel
    delta: str


@dataclass(frozen=True)
class CompletionResult:
    """Authoritative aggregate of one streamed completion."""

    content: str = ""
    reasoning: str = ""


class CompletionClient(Protocol):
    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        config: ProviderConfig,
        callbacks: StreamCallbacks | None = None,
        *,
        model: str | None = None,
    ) -> CompletionResult: ...
