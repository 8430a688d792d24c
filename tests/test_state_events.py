from memochat.agent.events import (
    EVENT_MEMOS_CHANGED,
    EVENT_NAMESPACE,
    EVENT_RULES_CHANGED,
    EVENT_SCHEMA_VERSION,
    EventHub,
)


def test_emit_stamps_envelope_and_sequence() -> None:
    hub = EventHub()
    received = []
    hub.subscribe(received.append)

    first = hub.emit(EVENT_MEMOS_CHANGED, memo_count=2)
    second = hub.emit(EVENT_RULES_CHANGED, rule_count=1)

    assert received == [first, second]
    assert first["namespace"] == EVENT_NAMESPACE
    assert first["version"] == EVENT_SCHEMA_VERSION
    assert first["type"] == EVENT_MEMOS_CHANGED
    assert first["memo_count"] == 2
    assert second["sequence"] == first["sequence"] + 1
    assert isinstance(first["timestamp_ms"], int)


def test_failing_subscriber_does_not_block_others() -> None:
    hub = EventHub()
    received = []

    def _broken(event):
        raise RuntimeError("renderer crashed")

    hub.subscribe(_broken)
    hub.subscribe(received.append)

    hub.emit(EVENT_MEMOS_CHANGED, memo_count=0)

    assert len(received) == 1


def test_unsubscribe() -> None:
    hub = EventHub()
    received = []
    unsubscribe = hub.subscribe(received.append)

    unsubscribe()
    unsubscribe()
    hub.emit(EVENT_RULES_CHANGED, rule_count=0)

    assert received == []
