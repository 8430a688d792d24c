from pathlib import Path

import pytest

import memochat.utils.helpers as helpers
from memochat.utils.helpers import atomic_write_text, ensure_dir, safe_filename


def test_atomic_write_text_creates_and_overwrites_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "sample.json"
    atomic_write_text(path, "v1\n", encoding="utf-8")
    assert path.read_text(encoding="utf-8") == "v1\n"

    atomic_write_text(path, "v2\n", encoding="utf-8")
    assert path.read_text(encoding="utf-8") == "v2\n"


def test_atomic_write_text_leaves_original_on_failure(monkeypatch, tmp_path: Path) -> None:
    path = tmp_path / "memos.json"
    atomic_write_text(path, "original")

    def _boom(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(helpers.os, "replace", _boom)

    with pytest.raises(OSError):
        atomic_write_text(path, "replacement")

    assert path.read_text(encoding="utf-8") == "original"
    assert [p.name for p in tmp_path.iterdir()] == ["memos.json"]


def test_ensure_dir_is_idempotent(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b"
    assert ensure_dir(target) == target
    assert ensure_dir(target) == target
    assert target.is_dir()


def test_safe_filename() -> None:
    assert safe_filename("chat:2024/01") == "chat_2024_01"
    assert safe_filename("..") == "_"
    assert safe_filename("plain-name") == "plain-name"
