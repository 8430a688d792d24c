"""Conversation state machine: send, regenerate and stream into the transcript."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Iterable, Sequence

from memochat.agent.events import EVENT_TRANSCRIPT_CHANGED, EventHub
from memochat.config.schema import ProviderConfig
from memochat.logging import get_logger
from memochat.providers.base import CompletionClient, StreamCallbacks
from memochat.session.turns import Memo, Turn

logger = get_logger(__name__)

_CANCELLED_TEXT = "Error: request cancelled"


def build_system_message(system_prompt: str, memos: Iterable[Memo]) -> dict[str, str] | None:
    """Synthesize the leading system message from memos and the system prompt.

    Memos with non-blank content come first as ``[title]: content`` lines,
    followed by the stripped system prompt. Returns None when both are empty.
    """
    parts: list[str] = []
    memo_lines = [f"[{m.title}]: {m.content}" for m in memos if m.content.strip()]
    if memo_lines:
        parts.append("\n".join(memo_lines))
    if system_prompt.strip():
        parts.append(system_prompt.strip())
    if not parts:
        return None
    return {"role": "system", "content": "\n".join(parts)}


class ConversationController:
    """
    Owns the transcript and runs one completion at a time against it.

    ``send`` and ``regenerate`` append an empty assistant turn (the in-flight
    turn), stream deltas into it, then overwrite it with the client's final
    result or with a rendered error. While an operation runs, ``busy`` is
    set and further calls are no-ops.

    Each operation is tagged with the controller's generation. ``clear`` and
    ``replace_transcript`` start a new generation, which detaches any stream
    still running: its callbacks and final write are dropped instead of
    landing in a transcript that has since been replaced.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        config: Callable[[], ProviderConfig],
        system_prompt: Callable[[], str] = lambda: "",
        memos: Callable[[], Sequence[Memo]] = lambda: (),
        events: EventHub | None = None,
        turns: Iterable[Turn] | None = None,
    ) -> None:
        self.client = client
        self._config = config
        self._system_prompt = system_prompt
        self._memos = memos
        self.events = events or EventHub()
        self.turns: list[Turn] = list(turns or [])
        self.busy = False
        self._generation = 0
        self._in_flight: int | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight_index(self) -> int | None:
        return self._in_flight

    def snapshot(self) -> tuple[Turn, ...]:
        """Read-only copy of the transcript."""
        return tuple(self.turns)

    def _notify(self) -> None:
        self.events.emit(
            EVENT_TRANSCRIPT_CHANGED,
            turn_count=len(self.turns),
            in_flight=self._in_flight is not None,
        )

    def build_messages(self, exclude_index: int | None = None) -> list[dict[str, str]]:
        """Request transcript: every settled turn plus the synthesized system message."""
        messages = [t.to_message() for i, t in enumerate(self.turns) if i != exclude_index]
        system = build_system_message(self._system_prompt(), self._memos())
        if system is not None:
            messages.insert(0, system)
        return messages

    async def send(self, text: str) -> Turn | None:
        """Append a user turn and stream the assistant reply.

        Returns the settled assistant turn, or None when the call was a no-op
        (busy, blank input) or was detached by a newer generation.
        """
        if self.busy or not text.strip():
            return None
        self.turns.append(Turn(role="user", content=text))
        self._notify()
        return await self._run_completion()

    async def regenerate(self) -> Turn | None:
        """Replace the last assistant turn with a freshly streamed one."""
        if self.busy or not self.turns or self.turns[-1].role != "assistant":
            return None
        self.turns.pop()
        self._notify()
        return await self._run_completion()

    async def _run_completion(self) -> Turn | None:
        self.busy = True
        generation = self._generation
        self.turns.append(Turn(role="assistant", content="", reasoning=""))
        index = len(self.turns) - 1
        self._in_flight = index
        self._notify()

        def _apply(update: Callable[[Turn], Turn]) -> None:
            if generation != self._generation:
                return
            self.turns[index] = update(self.turns[index])
            self._notify()

        callbacks = StreamCallbacks(
            on_content=lambda delta: _apply(lambda t: t.with_content_delta(delta)),
            on_reasoning=lambda delta: _apply(lambda t: t.with_reasoning_delta(delta)),
        )
        messages = self.build_messages(exclude_index=index)

        try:
            result = await self.client.complete(messages, self._config(), callbacks)
            _apply(lambda t: replace(t, content=result.content, reasoning=result.reasoning))
        except asyncio.CancelledError:
            _apply(lambda t: replace(t, content=_CANCELLED_TEXT))
            raise
        except Exception as e:
            logger.warning("conversation_completion_failed", error=str(e), error_type=type(e).__name__)
            _apply(lambda t: replace(t, content=f"Error: {e}"))
        finally:
            if generation == self._generation:
                self.busy = False
                self._in_flight = None
                self._notify()

        if generation != self._generation:
            logger.debug("conversation_stream_detached", generation=generation, current=self._generation)
            return None
        return self.turns[index]

    def _start_generation(self) -> None:
        self._generation += 1
        self.busy = False
        self._in_flight = None

    def detach(self) -> None:
        """Abandon the running operation; its in-flight turn stays as streamed so far."""
        if self._in_flight is None:
            return
        self._start_generation()
        self._notify()

    def clear(self) -> None:
        """Empty the transcript, detaching any in-flight stream."""
        self._start_generation()
        self.turns = []
        self._notify()

    def replace_transcript(self, turns: Iterable[Turn]) -> None:
        """Load another transcript (restored history or a saved session)."""
        self._start_generation()
        self.turns = list(turns)
        self._notify()

    def update_turn(self, index: int, content: str) -> bool:
        """Edit the content of a settled turn. The in-flight turn cannot be edited."""
        if index == self._in_flight or not 0 <= index < len(self.turns):
            return False
        self.turns[index] = replace(self.turns[index], content=content)
        self._notify()
        return True
