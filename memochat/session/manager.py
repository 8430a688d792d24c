"""File-backed persistence for config, transcripts, memos, archives and sessions."""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from memochat.config.loader import config_from_dict
from memochat.config.schema import Config
from memochat.logging import get_logger
from memochat.session.turns import Memo, MemoRule, Turn, turns_from_dicts
from memochat.utils.helpers import atomic_write_text, ensure_dir, safe_filename

logger = get_logger(__name__)

_ARCHIVE_STAMP = "%Y%m%d_%H%M%S"


class FileStore:
    """
    JSON-file implementation of :class:`memochat.session.persistence.PersistenceStore`.

    Layout under ``root``::

        config.json
        chat-history.json
        memo-rules.json
        memos.json
        archives/<YYYYmmdd_HHMMSS>.json
        sessions/<id>.json

    Writes are atomic. Unchanged documents are not rewritten.
    """

    def __init__(self, root: Path):
        self.root = ensure_dir(root)
        self.archives_dir = ensure_dir(self.root / "archives")
        self.sessions_dir = ensure_dir(self.root / "sessions")
        self.config_path = self.root / "config.json"
        self.chat_history_path = self.root / "chat-history.json"
        self.rules_path = self.root / "memo-rules.json"
        self.memos_path = self.root / "memos.json"
        self._persisted_signatures: dict[Path, str] = {}
        self._save_writes = 0
        self._save_skips = 0

    # -- raw JSON -----------------------------------------------------------

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("store_read_failed", path=str(path), error=str(e))
            return default

    @staticmethod
    def _signature(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def _write_json(self, path: Path, data: Any) -> None:
        started = time.perf_counter()
        text = json.dumps(data, ensure_ascii=False, indent=2)
        signature = self._signature(text)
        if path.exists() and self._persisted_signatures.get(path) == signature:
            self._save_skips += 1
            logger.debug("store_save_skipped", path=path.name, save_skips=self._save_skips)
            return
        atomic_write_text(path, text)
        self._persisted_signatures[path] = signature
        self._save_writes += 1
        logger.debug(
            "store_save_written",
            path=path.name,
            file_bytes=len(text.encode("utf-8")),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
            save_writes=self._save_writes,
        )

    # -- config ---------------------------------------------------------------

    async def load_config(self) -> Config:
        data = await asyncio.to_thread(self._read_json, self.config_path, None)
        return config_from_dict(data)

    async def save_config(self, config: Config) -> None:
        await asyncio.to_thread(self._write_json, self.config_path, config.model_dump(mode="json"))

    # -- chat history -----------------------------------------------------------

    async def load_chat_history(self) -> list[Turn]:
        data = await asyncio.to_thread(self._read_json, self.chat_history_path, [])
        return turns_from_dicts(data)

    async def save_chat_history(self, turns: list[Turn]) -> None:
        await asyncio.to_thread(self._write_json, self.chat_history_path, [t.to_dict() for t in turns])

    # -- rules and memos ----------------------------------------------------------

    async def load_memo_rules(self) -> list[MemoRule]:
        data = await asyncio.to_thread(self._read_json, self.rules_path, [])
        if not isinstance(data, list):
            return []
        return [MemoRule.from_dict(item) for item in data if isinstance(item, dict)]

    async def save_memo_rules(self, rules: list[MemoRule]) -> None:
        await asyncio.to_thread(self._write_json, self.rules_path, [r.to_dict() for r in rules])

    async def load_memos(self) -> list[Memo]:
        data = await asyncio.to_thread(self._read_json, self.memos_path, [])
        if not isinstance(data, list):
            return []
        return [Memo.from_dict(item) for item in data if isinstance(item, dict)]

    async def save_memos(self, memos: list[Memo]) -> None:
        await asyncio.to_thread(self._write_json, self.memos_path, [m.to_dict() for m in memos])

    # -- archives -----------------------------------------------------------------

    def _next_archive_path(self) -> Path:
        stamp = datetime.now().strftime(_ARCHIVE_STAMP)
        path = self.archives_dir / f"{stamp}.json"
        suffix = 1
        while path.exists():
            path = self.archives_dir / f"{stamp}_{suffix}.json"
            suffix += 1
        return path

    def _archive_sync(self, turns: list[Turn]) -> str:
        path = self._next_archive_path()
        atomic_write_text(path, json.dumps([t.to_dict() for t in turns], ensure_ascii=False, indent=2))
        logger.info("chat_history_archived", archive=path.stem, message_count=len(turns))
        return path.stem

    async def archive_chat_history(self, turns: list[Turn]) -> str:
        """Write *turns* to a new timestamped archive and return its name."""
        return await asyncio.to_thread(self._archive_sync, list(turns))

    @staticmethod
    def _archive_created_at(name: str) -> str:
        try:
            return datetime.strptime(name[:15], _ARCHIVE_STAMP).isoformat()
        except ValueError:
            return name

    def _list_archives_sync(self) -> list[dict[str, Any]]:
        entries = []
        for path in self.archives_dir.glob("*.json"):
            data = self._read_json(path, [])
            entries.append({
                "name": path.stem,
                "message_count": len(data) if isinstance(data, list) else 0,
                "created_at": self._archive_created_at(path.stem),
            })
        return sorted(entries, key=lambda x: x["name"], reverse=True)

    async def list_archives(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._list_archives_sync)

    async def load_archive(self, name: str) -> list[Turn]:
        path = self.archives_dir / f"{safe_filename(name)}.json"
        data = await asyncio.to_thread(self._read_json, path, [])
        return turns_from_dicts(data)

    # -- saved sessions -----------------------------------------------------------

    def _get_session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{safe_filename(session_id)}.json"

    def _save_session_sync(self, session_id: str, title: str, turns: list[Turn]) -> None:
        path = self._get_session_path(session_id)
        existing = self._read_json(path, {})
        created_at = ""
        if isinstance(existing, dict):
            created_at = str((existing.get("meta") or {}).get("created_at") or "")
        meta = {
            "id": session_id,
            "title": title,
            "message_count": len(turns),
            "created_at": created_at or datetime.now().astimezone().isoformat(),
        }
        self._write_json(path, {"meta": meta, "messages": [t.to_dict() for t in turns]})

    async def save_session(self, session_id: str, title: str, turns: list[Turn]) -> None:
        await asyncio.to_thread(self._save_session_sync, session_id, title, list(turns))

    async def load_session(self, session_id: str) -> list[Turn]:
        data = await asyncio.to_thread(self._read_json, self._get_session_path(session_id), {})
        if not isinstance(data, dict):
            return []
        return turns_from_dicts(data.get("messages"))

    def _list_sessions_sync(self) -> list[dict[str, Any]]:
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            data = self._read_json(path, {})
            meta = data.get("meta") if isinstance(data, dict) else None
            if isinstance(meta, dict) and meta.get("id"):
                sessions.append({
                    "id": meta["id"],
                    "title": meta.get("title", ""),
                    "message_count": meta.get("message_count", 0),
                    "created_at": meta.get("created_at", ""),
                })
        return sorted(sessions, key=lambda x: x.get("created_at", ""), reverse=True)

    async def list_sessions(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._list_sessions_sync)

    async def delete_session(self, session_id: str) -> bool:
        path = self._get_session_path(session_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        self._persisted_signatures.pop(path, None)
        return True
