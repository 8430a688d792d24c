"""Persistence collaborator interface and debounced write scheduling."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Protocol

from memochat.config.schema import Config
from memochat.logging import get_logger
from memochat.session.turns import Memo, MemoRule, Turn

logger = get_logger(__name__)


class PersistenceStore(Protocol):
    """Key/value style storage used by :class:`memochat.app.MemoChat`.

    Implementations are best effort: the core logs their failures and keeps
    going.
    """

    async def load_config(self) -> Config: ...

    async def save_config(self, config: Config) -> None: ...

    async def load_chat_history(self) -> list[Turn]: ...

    async def save_chat_history(self, turns: list[Turn]) -> None: ...

    async def load_memo_rules(self) -> list[MemoRule]: ...

    async def save_memo_rules(self, rules: list[MemoRule]) -> None: ...

    async def load_memos(self) -> list[Memo]: ...

    async def save_memos(self, memos: list[Memo]) -> None: ...

    async def archive_chat_history(self, turns: list[Turn]) -> str: ...

    async def list_archives(self) -> list[dict[str, Any]]: ...

    async def load_archive(self, name: str) -> list[Turn]: ...

    async def list_sessions(self) -> list[dict[str, Any]]: ...

    async def save_session(self, session_id: str, title: str, turns: list[Turn]) -> None: ...

    async def load_session(self, session_id: str) -> list[Turn]: ...

    async def delete_session(self, session_id: str) -> bool: ...


class DebouncedWriter:
    """Coalesce bursts of state changes into one delayed write.

    Every ``schedule()`` restarts the timer; the write runs once the state has
    been quiet for ``delay`` seconds. Write failures are logged, never raised.
    """

    def __init__(self, name: str, write: Callable[[], Awaitable[None]], delay: float = 0.5) -> None:
        self.name = name
        self.delay = delay
        self._write = write
        # Only the sleeping phase is tracked; a write that has started is never cancelled.
        self._pending: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self.writes = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(self) -> None:
        if self.pending:
            assert self._pending is not None
            self._pending.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._delayed())

    async def _delayed(self) -> None:
        await asyncio.sleep(self.delay)
        self._pending = None
        await self._run()

    async def _run(self) -> None:
        async with self._lock:
            try:
                await self._write()
                self.writes += 1
            except Exception:
                logger.exception("debounced_write_failed", writer=self.name)

    async def flush(self) -> None:
        """Write now if a write is pending, and wait for any write in progress."""
        if self.pending:
            assert self._pending is not None
            self._pending.cancel()
            self._pending = None
            await self._run()
            return
        async with self._lock:
            pass

    async def close(self) -> None:
        """Cancel a pending write without running it."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            try:
                await self._pending
            except asyncio.CancelledError:
                pass
        self._pending = None
