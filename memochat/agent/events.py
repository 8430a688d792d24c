"""Typed state-change events published by the controller and orchestrator."""

from __future__ import annotations

import time
from typing import Any, Callable, Literal, TypeAlias, TypedDict, cast

from memochat.logging import get_logger

logger = get_logger(__name__)

EVENT_TRANSCRIPT_CHANGED = "transcript_changed"
EVENT_MEMOS_CHANGED = "memos_changed"
EVENT_RULES_CHANGED = "rules_changed"
EVENT_COMPACTION_PROGRESS = "compaction_progress"
EVENT_CONFIG_CHANGED = "config_changed"
EVENT_NAMESPACE = "memochat.state"
EVENT_SCHEMA_VERSION = 1

StateEventType: TypeAlias = Literal[
    "transcript_changed",
    "memos_changed",
    "rules_changed",
    "compaction_progress",
    "config_changed",
]


class BaseStateEvent(TypedDict):
    namespace: str
    version: int
    type: StateEventType
    sequence: int
    timestamp_ms: int


class TranscriptChangedEvent(BaseStateEvent):
    type: Literal["transcript_changed"]
    turn_count: int
    in_flight: bool


class MemosChangedEvent(BaseStateEvent):
    type: Literal["memos_changed"]
    memo_count: int


class RulesChangedEvent(BaseStateEvent):
    type: Literal["rules_changed"]
    rule_count: int


class CompactionProgressEvent(BaseStateEvent):
    type: Literal["compaction_progress"]
    completed: int
    total: int


class ConfigChangedEvent(BaseStateEvent):
    type: Literal["config_changed"]


StateEvent: TypeAlias = (
    TranscriptChangedEvent
    | MemosChangedEvent
    | RulesChangedEvent
    | CompactionProgressEvent
    | ConfigChangedEvent
)
StateEventCallback: TypeAlias = Callable[[StateEvent], None]


class EventHub:
    """Synchronous fan-out of state events to subscribers.

    Subscribers run inline with the state change. A failing subscriber is
    logged and skipped; the emitter never sees the exception.
    """

    def __init__(self) -> None:
        self._subscribers: list[StateEventCallback] = []
        self._sequence = 0

    def subscribe(self, callback: StateEventCallback) -> Callable[[], None]:
        """Register *callback*; the returned function unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event_type: StateEventType, **fields: Any) -> StateEvent:
        self._sequence += 1
        event = cast(StateEvent, {
            "namespace": EVENT_NAMESPACE,
            "version": EVENT_SCHEMA_VERSION,
            "type": event_type,
            "sequence": self._sequence,
            "timestamp_ms": int(time.time() * 1000),
            **fields,
        })
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("state_event_subscriber_failed", event_type=event_type)
        return event
