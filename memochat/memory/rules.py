"""Editing, realignment and JSON exchange for memo rules and memos.

Rules and memos are correlated by position: ``rules[i]`` governs
``memos[i]``. Every edit that moves or removes a rule applies the same move
to the memo list so the correlation survives.
"""

from __future__ import annotations

import json
from typing import Any

from memochat.session.turns import Memo, MemoRule


class RuleImportError(ValueError):
    """An imported rules or memos document is not valid."""


def add_rule(rules: list[MemoRule], title: str = "", update_rule: str = "") -> list[MemoRule]:
    return [*rules, MemoRule(title=title, update_rule=update_rule)]


def update_rule(rules: list[MemoRule], index: int, *, title: str | None = None, update_rule: str | None = None) -> list[MemoRule]:
    if not 0 <= index < len(rules):
        raise IndexError(f"rule index out of range: {index}")
    current = rules[index]
    updated = MemoRule(
        title=current.title if title is None else title,
        update_rule=current.update_rule if update_rule is None else update_rule,
    )
    return [*rules[:index], updated, *rules[index + 1:]]


def remove_rule(rules: list[MemoRule], memos: list[Memo], index: int) -> tuple[list[MemoRule], list[Memo]]:
    """Drop rule *index* and the memo at the same position, if any."""
    if not 0 <= index < len(rules):
        raise IndexError(f"rule index out of range: {index}")
    new_rules = rules[:index] + rules[index + 1:]
    new_memos = memos[:index] + memos[index + 1:] if index < len(memos) else list(memos)
    return new_rules, new_memos


def reorder_rule(
    rules: list[MemoRule],
    memos: list[Memo],
    src: int,
    dst: int,
) -> tuple[list[MemoRule], list[Memo]]:
    """Move rule *src* to position *dst*, moving its memo alongside."""
    if src == dst:
        return list(rules), list(memos)
    if not (0 <= src < len(rules) and 0 <= dst < len(rules)):
        raise IndexError(f"rule index out of range: {src} -> {dst}")
    new_rules = list(rules)
    new_rules.insert(dst, new_rules.pop(src))
    new_memos = list(memos)
    if new_memos:
        # Rules without a memo yet get an empty one so every memo keeps its rule.
        new_memos.extend(Memo(title=r.title, content="") for r in rules[len(new_memos):])
        new_memos.insert(dst, new_memos.pop(src))
    return new_rules, new_memos


def align_memos(rules: list[MemoRule], memos: list[Memo]) -> list[Memo]:
    """Rebuild the memo list in rule order, joining on title.

    Used when positional correlation is lost (imported memos, partially
    failed edits). Rules without a matching memo get empty content; when
    titles repeat, matches are consumed in order.
    """
    by_title: dict[str, list[Memo]] = {}
    for memo in memos:
        by_title.setdefault(memo.title, []).append(memo)
    aligned: list[Memo] = []
    for rule in rules:
        matches = by_title.get(rule.title)
        content = matches.pop(0).content if matches else ""
        aligned.append(Memo(title=rule.title, content=content))
    return aligned


def export_rules(system_prompt: str, rules: list[MemoRule]) -> str:
    data = {
        "systemPrompt": system_prompt,
        "rules": [{"title": r.title, "updateRule": r.update_rule} for r in rules],
    }
    return json.dumps(data, ensure_ascii=False, indent=2)


def import_rules(text: str) -> tuple[str | None, list[MemoRule] | None]:
    """Parse an exported rules document.

    Returns ``(system_prompt, rules)``; either is None when the document
    does not carry it.
    """
    data = _load_json(text)
    if not isinstance(data, dict):
        raise RuleImportError("rules document must be a JSON object")
    system_prompt = data.get("systemPrompt")
    if system_prompt is not None and not isinstance(system_prompt, str):
        raise RuleImportError("systemPrompt must be a string")
    raw_rules = data.get("rules")
    rules: list[MemoRule] | None = None
    if isinstance(raw_rules, list):
        rules = []
        for item in raw_rules:
            if not isinstance(item, dict):
                raise RuleImportError("each rule must be a JSON object")
            rules.append(MemoRule(
                title=str(item.get("title") or ""),
                update_rule=str(item.get("updateRule") or item.get("update_rule") or ""),
            ))
    return system_prompt, rules


def export_memos(memos: list[Memo]) -> str:
    return json.dumps([m.to_dict() for m in memos], ensure_ascii=False, indent=2)


def import_memos(text: str) -> list[Memo]:
    data = _load_json(text)
    if not isinstance(data, list):
        raise RuleImportError("memos document must be a JSON list")
    if not all(isinstance(item, dict) for item in data):
        raise RuleImportError("each memo must be a JSON object")
    return [Memo.from_dict(item) for item in data]


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise RuleImportError(f"invalid JSON: {e}") from e
