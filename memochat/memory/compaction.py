"""Memo compaction: distill the transcript into per-rule memos, concurrently."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Literal, Sequence, TypeAlias

from memochat.agent.events import EVENT_COMPACTION_PROGRESS, EventHub
from memochat.config.schema import ProviderConfig
from memochat.logging import get_logger
from memochat.providers.base import CompletionClient
from memochat.session.turns import Memo, MemoRule, Turn

logger = get_logger(__name__)

EMPTY_MEMO_PLACEHOLDER = "(empty)"

OutcomeStatus: TypeAlias = Literal["pending", "succeeded", "failed"]


def flatten_transcript(turns: Sequence[Turn]) -> str:
    """Render the transcript as ``role: content`` lines."""
    return "\n".join(f"{t.role}: {t.content}" for t in turns)


def prompt_for(rule: MemoRule, prior_content: str, flattened: str) -> str:
    """Directive prompt asking the model to rewrite one memo."""
    return f"""You are a memo manager. Update a single memo based on the chat history.

Memo title: {rule.title}
Update rule: {rule.update_rule}
Current content: {prior_content or EMPTY_MEMO_PLACEHOLDER}

Chat history:
{flattened}

Output ONLY the updated memo content as plain text (no JSON, no wrapping). If there is nothing relevant in the chat, return the current content as-is."""


@dataclass
class TaskOutcome:
    status: OutcomeStatus = "pending"
    content: str = ""
    error: str | None = None


@dataclass
class CompactionTask:
    """One rule's share of a compaction cycle."""

    index: int
    rule: MemoRule
    prior_memo: Memo | None
    outcome: TaskOutcome = field(default_factory=TaskOutcome)

    @property
    def prior_content(self) -> str:
        return self.prior_memo.content if self.prior_memo is not None else ""

    def succeed(self, content: str) -> None:
        self.outcome = TaskOutcome(status="succeeded", content=content.strip())

    def fail(self, error: str) -> None:
        # A failed rule keeps its previous memo verbatim.
        self.outcome = TaskOutcome(status="failed", content=self.prior_content, error=error)

    @property
    def resolution(self) -> str:
        if self.outcome.status == "pending":
            raise RuntimeError(f"compaction task {self.index} has not resolved")
        return self.outcome.content


@dataclass(frozen=True)
class CompactionResult:
    """Aggregate of a finished cycle.

    ``memos`` replaces the previous memo list wholesale. ``archived_transcript``
    is the transcript the memos were distilled from. ``clear_transcript`` tells
    the transcript owner to archive its current transcript and clear it.
    """

    memos: list[Memo]
    tasks: list[CompactionTask]
    archived_transcript: tuple[Turn, ...]
    clear_transcript: bool = True

    @property
    def failed(self) -> list[CompactionTask]:
        return [t for t in self.tasks if t.outcome.status == "failed"]


class CompactionOrchestrator:
    """Fan out one completion per memo rule and join the results.

    Every task resolves on its own: a failure falls back to the prior memo
    content and never cancels its siblings. ``completed`` counts resolved
    tasks against ``total`` for progress displays.
    """

    def __init__(self, client: CompletionClient, *, events: EventHub | None = None) -> None:
        self.client = client
        self.events = events or EventHub()
        self.running = False
        self.completed = 0
        self.total = 0

    def _advance(self) -> None:
        self.completed += 1
        self.events.emit(EVENT_COMPACTION_PROGRESS, completed=self.completed, total=self.total)

    async def _run_task(
        self,
        task: CompactionTask,
        flattened: str,
        config: ProviderConfig,
        model: str,
    ) -> None:
        prompt = prompt_for(task.rule, task.prior_content, flattened)
        try:
            result = await self.client.complete(
                [{"role": "user", "content": prompt}],
                config,
                model=model,
            )
            task.succeed(result.content)
        except Exception as e:
            logger.warning(
                "compaction_task_failed",
                rule=task.rule.title,
                index=task.index,
                error=str(e),
                error_type=type(e).__name__,
            )
            task.fail(str(e))
        self._advance()

    async def compact(
        self,
        transcript: Sequence[Turn],
        rules: Sequence[MemoRule],
        prior_memos: Sequence[Memo],
        config: ProviderConfig,
    ) -> CompactionResult | None:
        """Run one compaction cycle.

        Returns None without doing anything when the transcript is empty or a
        cycle is already running.
        """
        snapshot = tuple(transcript)
        if self.running or not snapshot:
            return None

        self.running = True
        self.completed = 0
        self.total = len(rules)
        started = time.perf_counter()
        try:
            flattened = flatten_transcript(snapshot)
            model = config.effective_compact_model
            tasks = [
                CompactionTask(
                    index=i,
                    rule=rule,
                    prior_memo=prior_memos[i] if i < len(prior_memos) else None,
                )
                for i, rule in enumerate(rules)
            ]
            logger.info("compaction_started", rule_count=len(tasks), turn_count=len(snapshot), model=model)

            await asyncio.gather(*(self._run_task(t, flattened, config, model) for t in tasks))

            memos = [Memo(title=t.rule.title, content=t.resolution) for t in tasks]
            result = CompactionResult(memos=memos, tasks=tasks, archived_transcript=snapshot)
            logger.info(
                "compaction_finished",
                rule_count=len(tasks),
                failed_count=len(result.failed),
                elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
            )
            return result
        finally:
            self.running = False
