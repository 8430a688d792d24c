"""Session facade wiring the controller, compaction and persistence together."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any

from memochat.agent.conversation import ConversationController
from memochat.agent.events import (
    EVENT_CONFIG_CHANGED,
    EVENT_MEMOS_CHANGED,
    EVENT_RULES_CHANGED,
    EVENT_TRANSCRIPT_CHANGED,
    EventHub,
    StateEvent,
)
from memochat.config.schema import Config, LoggingConfig, ProviderConfig
from memochat.logging import get_logger, setup_logging
from memochat.memory import rules as rule_ops
from memochat.memory.compaction import CompactionOrchestrator, CompactionResult
from memochat.providers.base import CompletionClient
from memochat.providers.openai_stream import StreamingCompletionClient
from memochat.session.manager import FileStore
from memochat.session.persistence import DebouncedWriter, PersistenceStore
from memochat.session.turns import Memo, MemoRule, Turn

logger = get_logger(__name__)

_SESSION_TITLE_MAX_CHARS = 30


class MemoChat:
    """
    One chat workspace: config, transcript, memo rules and memos.

    State changes are published on ``events``; persistence subscribes to
    them through debounced writers, so the conversation state machine never
    waits on storage.
    """

    def __init__(
        self,
        store: PersistenceStore,
        client: CompletionClient | None = None,
        *,
        config: Config | None = None,
        debounce_s: float = 0.5,
    ) -> None:
        self.store = store
        self.client = client or StreamingCompletionClient()
        self.config = config or Config()
        self.rules: list[MemoRule] = []
        self.memos: list[Memo] = []
        self.events = EventHub()
        self.controller = ConversationController(
            self.client,
            config=lambda: self.config.provider,
            system_prompt=lambda: self.config.system_prompt,
            memos=lambda: self.memos,
            events=self.events,
        )
        self.orchestrator = CompactionOrchestrator(self.client, events=self.events)
        self._writers: dict[str, DebouncedWriter] = {
            EVENT_TRANSCRIPT_CHANGED: DebouncedWriter(
                "chat_history", lambda: self.store.save_chat_history(list(self.controller.turns)), debounce_s
            ),
            EVENT_MEMOS_CHANGED: DebouncedWriter(
                "memos", lambda: self.store.save_memos(list(self.memos)), debounce_s
            ),
            EVENT_RULES_CHANGED: DebouncedWriter(
                "memo_rules", lambda: self.store.save_memo_rules(list(self.rules)), debounce_s
            ),
            EVENT_CONFIG_CHANGED: DebouncedWriter(
                "config", lambda: self.store.save_config(self.config), debounce_s
            ),
        }
        self._restoring = False
        self._unsubscribe = self.events.subscribe(self._on_event)

    def _on_event(self, event: StateEvent) -> None:
        if self._restoring:
            return
        writer = self._writers.get(event["type"])
        if writer is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("persistence_skipped_no_loop", writer=writer.name)
            return
        writer.schedule()

    @property
    def turns(self) -> list[Turn]:
        return self.controller.turns

    @property
    def busy(self) -> bool:
        return self.controller.busy

    @property
    def compacting(self) -> bool:
        return self.orchestrator.running

    # -- lifecycle ------------------------------------------------------------

    @classmethod
    async def open(
        cls,
        root: Path,
        client: CompletionClient | None = None,
        *,
        configure_logging: bool = True,
        debounce_s: float = 0.5,
    ) -> MemoChat:
        """Create a workspace backed by JSON files under *root* and load it."""
        chat = cls(FileStore(root), client, debounce_s=debounce_s)
        if configure_logging:
            setup_logging()
        await chat.load()
        if configure_logging and chat.config.logging != LoggingConfig():
            setup_logging(json_output=chat.config.logging.json_output, level=chat.config.logging.level)
        return chat

    async def load(self) -> None:
        """Restore config, rules, memos and the open transcript from the store."""
        self._restoring = True
        try:
            self.config = await self.store.load_config()
            self.rules = await self.store.load_memo_rules()
            self.memos = await self.store.load_memos()
            history = await self.store.load_chat_history()
            if history:
                self.controller.replace_transcript(history)
        except Exception:
            logger.exception("state_load_failed")
        finally:
            self._restoring = False
        logger.info(
            "state_loaded",
            rule_count=len(self.rules),
            memo_count=len(self.memos),
            turn_count=len(self.controller.turns),
        )

    async def aclose(self) -> None:
        """Flush pending writes and stop listening for changes."""
        for writer in self._writers.values():
            await writer.flush()
        self._unsubscribe()

    # -- conversation -----------------------------------------------------------

    async def send(self, text: str) -> Turn | None:
        return await self.controller.send(text)

    async def regenerate(self) -> Turn | None:
        return await self.controller.regenerate()

    def clear(self) -> None:
        if self.controller.turns:
            self.controller.clear()

    def update_turn(self, index: int, content: str) -> bool:
        return self.controller.update_turn(index, content)

    # -- compaction -------------------------------------------------------------

    async def compact(self) -> CompactionResult | None:
        """Distill the transcript into memos, then archive and clear it.

        Archival is best effort: a failed archive is logged and the transcript
        is cleared anyway.
        """
        result = await self.orchestrator.compact(
            self.controller.snapshot(),
            self.rules,
            self.memos,
            self.config.provider,
        )
        if result is None:
            return None

        self.set_memos(result.memos)
        if result.clear_transcript:
            # Archive what is about to be cleared, including turns sent while the cycle ran.
            archived = self.controller.snapshot()
            try:
                await self.store.archive_chat_history(list(archived))
            except Exception:
                logger.exception("chat_history_archive_failed", turn_count=len(archived))
            self.controller.clear()
            result = replace(result, archived_transcript=archived)
        return result

    # -- config -----------------------------------------------------------------

    def set_config(self, **changes: Any) -> None:
        """Update ``system_prompt`` and/or any :class:`ProviderConfig` field."""
        system_prompt = changes.pop("system_prompt", None)
        unknown = sorted(set(changes) - set(ProviderConfig.model_fields))
        if unknown:
            raise ValueError(f"unknown provider setting(s): {', '.join(unknown)}")
        if changes:
            provider = ProviderConfig.model_validate({**self.config.provider.model_dump(), **changes})
            self.config = self.config.model_copy(update={"provider": provider})
        if system_prompt is not None:
            self.config = self.config.model_copy(update={"system_prompt": str(system_prompt)})
        self.events.emit(EVENT_CONFIG_CHANGED)

    # -- rules and memos ------------------------------------------------------------

    def set_rules(self, rules: list[MemoRule]) -> None:
        self.rules = list(rules)
        self.events.emit(EVENT_RULES_CHANGED, rule_count=len(self.rules))

    def set_memos(self, memos: list[Memo]) -> None:
        self.memos = list(memos)
        self.events.emit(EVENT_MEMOS_CHANGED, memo_count=len(self.memos))

    def add_rule(self, title: str = "", update_rule: str = "") -> None:
        self.set_rules(rule_ops.add_rule(self.rules, title, update_rule))

    def edit_rule(self, index: int, *, title: str | None = None, update_rule: str | None = None) -> None:
        self.set_rules(rule_ops.update_rule(self.rules, index, title=title, update_rule=update_rule))

    def remove_rule(self, index: int) -> None:
        rules, memos = rule_ops.remove_rule(self.rules, self.memos, index)
        self.set_rules(rules)
        if memos != self.memos:
            self.set_memos(memos)

    def reorder_rule(self, src: int, dst: int) -> None:
        rules, memos = rule_ops.reorder_rule(self.rules, self.memos, src, dst)
        self.set_rules(rules)
        if memos != self.memos:
            self.set_memos(memos)

    def export_rules(self) -> str:
        return rule_ops.export_rules(self.config.system_prompt, self.rules)

    def import_rules(self, text: str) -> None:
        system_prompt, rules = rule_ops.import_rules(text)
        if system_prompt is not None:
            self.set_config(system_prompt=system_prompt)
        if rules is not None:
            self.set_rules(rules)

    def export_memos(self) -> str:
        return rule_ops.export_memos(self.memos)

    def import_memos(self, text: str, *, align: bool = False) -> None:
        memos = rule_ops.import_memos(text)
        self.set_memos(rule_ops.align_memos(self.rules, memos) if align else memos)

    # -- saved sessions and archives ------------------------------------------------

    def _default_session_title(self) -> str:
        for turn in self.controller.turns:
            if turn.role == "user" and turn.content.strip():
                return turn.content.strip()[:_SESSION_TITLE_MAX_CHARS]
        return "Untitled"

    async def save_session(self, session_id: str, title: str | None = None) -> None:
        await self.store.save_session(
            session_id,
            title or self._default_session_title(),
            list(self.controller.turns),
        )

    async def open_session(self, session_id: str) -> bool:
        turns = await self.store.load_session(session_id)
        if not turns:
            return False
        self.controller.replace_transcript(turns)
        return True

    async def list_sessions(self) -> list[dict[str, Any]]:
        return await self.store.list_sessions()

    async def delete_session(self, session_id: str) -> bool:
        return await self.store.delete_session(session_id)

    async def list_archives(self) -> list[dict[str, Any]]:
        return await self.store.list_archives()

    async def load_archive(self, name: str) -> list[Turn]:
        return await self.store.load_archive(name)
