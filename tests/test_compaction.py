"""Tests for concurrent memo compaction."""

from __future__ import annotations

import asyncio

import pytest

from memochat.agent.events import EVENT_COMPACTION_PROGRESS, EventHub
from memochat.config.schema import DEFAULT_MODEL, ProviderConfig
from memochat.memory.compaction import (
    EMPTY_MEMO_PLACEHOLDER,
    CompactionOrchestrator,
    CompactionTask,
    flatten_transcript,
    prompt_for,
)
from memochat.providers.base import CompletionError, CompletionResult
from memochat.session.turns import Memo, MemoRule, Turn


TRANSCRIPT = [Turn("user", "I moved to Lisbon"), Turn("assistant", "Nice!", "thinking")]


class _RuleClient:
    """Answers per memo title; titles listed in ``fail`` raise instead."""

    def __init__(self, answers: dict[str, str], fail: set[str] = frozenset(), gate: asyncio.Event | None = None):
        self.answers = answers
        self.fail = fail
        self.gate = gate
        self.prompts: list[str] = []
        self.models: list[str | None] = []

    async def complete(self, messages, config, callbacks=None, *, model=None):
        prompt = messages[0]["content"]
        self.prompts.append(prompt)
        self.models.append(model)
        if self.gate is not None:
            await self.gate.wait()
        title = prompt.split("Memo title: ", 1)[1].split("\n", 1)[0]
        await asyncio.sleep(0)
        if title in self.fail:
            raise CompletionError(f"{title} timed out")
        return CompletionResult(content=f"  {self.answers.get(title, '')}\n")


RULES = [
    MemoRule("Profile", "Where the user lives"),
    MemoRule("Tasks", "Open tasks"),
    MemoRule("Mood", "How the user feels"),
]
PRIOR = [Memo("Profile", "lives in Porto"), Memo("Tasks", "buy milk"), Memo("Mood", "")]


@pytest.mark.asyncio
async def test_failed_rule_keeps_prior_memo_and_siblings_finish() -> None:
    client = _RuleClient({"Profile": "lives in Lisbon", "Mood": "happy"}, fail={"Tasks"})
    orchestrator = CompactionOrchestrator(client)

    result = await orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig())

    assert result is not None
    assert result.memos == [
        Memo("Profile", "lives in Lisbon"),
        Memo("Tasks", "buy milk"),
        Memo("Mood", "happy"),
    ]
    assert [t.index for t in result.failed] == [1]
    assert "timed out" in (result.failed[0].outcome.error or "")
    assert orchestrator.completed == 3
    assert orchestrator.total == 3
    assert orchestrator.running is False


@pytest.mark.asyncio
async def test_malformed_client_result_only_fails_its_own_task() -> None:
    class _ShapelessClient(_RuleClient):
        async def complete(self, messages, config, callbacks=None, *, model=None):
            result = await super().complete(messages, config, callbacks, model=model)
            if "Memo title: Tasks" in messages[0]["content"]:
                return object()
            return result

    orchestrator = CompactionOrchestrator(_ShapelessClient({"Profile": "p", "Mood": "m"}))

    result = await orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig())

    assert result is not None
    assert [m.content for m in result.memos] == ["p", "buy milk", "m"]
    assert [t.index for t in result.failed] == [1]
    assert orchestrator.completed == 3


@pytest.mark.asyncio
async def test_result_carries_transcript_for_archival() -> None:
    orchestrator = CompactionOrchestrator(_RuleClient({}))
    transcript = list(TRANSCRIPT)

    result = await orchestrator.compact(transcript, RULES[:1], PRIOR[:1], ProviderConfig())
    transcript.append(Turn("user", "late"))

    assert result is not None
    assert result.clear_transcript is True
    assert result.archived_transcript == tuple(TRANSCRIPT)


@pytest.mark.asyncio
async def test_progress_events_count_every_resolution() -> None:
    hub = EventHub()
    seen: list[tuple[int, int]] = []
    hub.subscribe(
        lambda e: seen.append((e["completed"], e["total"])) if e["type"] == EVENT_COMPACTION_PROGRESS else None
    )
    client = _RuleClient({"Profile": "x"}, fail={"Mood"})
    orchestrator = CompactionOrchestrator(client, events=hub)

    await orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig())

    assert seen == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_tasks_run_concurrently() -> None:
    gate = asyncio.Event()
    client = _RuleClient({}, gate=gate)
    orchestrator = CompactionOrchestrator(client)

    cycle = asyncio.create_task(orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig()))
    for _ in range(5):
        await asyncio.sleep(0)

    # every request is in flight before any of them has answered
    assert len(client.prompts) == 3
    assert orchestrator.completed == 0

    gate.set()
    await cycle


@pytest.mark.asyncio
async def test_second_cycle_while_running_is_noop() -> None:
    gate = asyncio.Event()
    client = _RuleClient({}, gate=gate)
    orchestrator = CompactionOrchestrator(client)

    first = asyncio.create_task(orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig()))
    await asyncio.sleep(0)
    assert orchestrator.running is True

    assert await orchestrator.compact(TRANSCRIPT, RULES, PRIOR, ProviderConfig()) is None

    gate.set()
    assert await first is not None
    assert len(client.prompts) == 3


@pytest.mark.asyncio
async def test_empty_transcript_is_noop() -> None:
    client = _RuleClient({})
    orchestrator = CompactionOrchestrator(client)

    assert await orchestrator.compact([], RULES, PRIOR, ProviderConfig()) is None
    assert client.prompts == []
    assert orchestrator.running is False


@pytest.mark.asyncio
async def test_zero_rules_completes_with_no_memos() -> None:
    orchestrator = CompactionOrchestrator(_RuleClient({}))

    result = await orchestrator.compact(TRANSCRIPT, [], PRIOR, ProviderConfig())

    assert result is not None
    assert result.memos == []
    assert result.clear_transcript is True
    assert orchestrator.total == 0


@pytest.mark.asyncio
async def test_missing_prior_memo_uses_placeholder_and_fails_to_empty() -> None:
    client = _RuleClient({}, fail={"Mood"})
    orchestrator = CompactionOrchestrator(client)

    result = await orchestrator.compact(TRANSCRIPT, RULES, PRIOR[:1], ProviderConfig())

    assert result is not None
    assert result.memos[2] == Memo("Mood", "")
    tasks_prompt = next(p for p in client.prompts if "Memo title: Tasks" in p)
    assert f"Current content: {EMPTY_MEMO_PLACEHOLDER}" in tasks_prompt


@pytest.mark.asyncio
async def test_compact_model_falls_back_to_chat_model() -> None:
    client = _RuleClient({})
    orchestrator = CompactionOrchestrator(client)

    await orchestrator.compact(TRANSCRIPT, RULES[:1], [], ProviderConfig(model="chat-m"))
    await orchestrator.compact(TRANSCRIPT, RULES[:1], [], ProviderConfig(model="chat-m", compact_model="small-m"))
    await orchestrator.compact(TRANSCRIPT, RULES[:1], [], ProviderConfig())

    assert client.models == ["chat-m", "small-m", DEFAULT_MODEL]


def test_prompt_embeds_rule_prior_memo_and_flattened_history() -> None:
    flattened = flatten_transcript(TRANSCRIPT)
    assert flattened == "user: I moved to Lisbon\nassistant: Nice!"

    prompt = prompt_for(RULES[0], "lives in Porto", flattened)

    assert "Memo title: Profile" in prompt
    assert "Update rule: Where the user lives" in prompt
    assert "Current content: lives in Porto" in prompt
    assert prompt.index("Chat history:") < prompt.index("user: I moved to Lisbon")


def test_pending_task_has_no_resolution() -> None:
    task = CompactionTask(index=0, rule=RULES[0], prior_memo=PRIOR[0])
    with pytest.raises(RuntimeError):
        _ = task.resolution
    task.succeed("  new  ")
    assert task.resolution == "new"
