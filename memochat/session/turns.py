"""Conversation and memo value types."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Literal, TypeAlias

Role: TypeAlias = Literal["user", "assistant"]
_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Turn:
    """One message in the transcript.

    Turns are immutable; the controller replaces the in-flight turn with a new
    value for every delta instead of editing it in place.
    """

    role: Role
    content: str
    reasoning: str = ""

    def with_content_delta(self, delta: str) -> Turn:
        return replace(self, content=self.content + delta)

    def with_reasoning_delta(self, delta: str) -> Turn:
        return replace(self, reasoning=self.reasoning + delta)

    def to_message(self) -> dict[str, str]:
        """Request shape: role and content only."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict[str, str]:
        data = {"role": self.role, "content": self.content}
        if self.reasoning:
            data["reasoning"] = self.reasoning
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Turn:
        role = data.get("role")
        if role not in _ROLES:
            raise ValueError(f"unsupported turn role: {role!r}")
        return cls(
            role=role,
            content=str(data.get("content") or ""),
            reasoning=str(data.get("reasoning") or ""),
        )


def turns_from_dicts(items: Any) -> list[Turn]:
    """Parse persisted turns, skipping entries that are not valid turns."""
    turns: list[Turn] = []
    if not isinstance(items, list):
        return turns
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            turns.append(Turn.from_dict(item))
        except ValueError:
            continue
    return turns


@dataclass(frozen=True)
class MemoRule:
    """Natural-language instruction governing how one memo is updated."""

    title: str
    update_rule: str

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "update_rule": self.update_rule}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoRule:
        # Older rule files stored the title under "description".
        title = data.get("title", data.get("description", ""))
        return cls(title=str(title or ""), update_rule=str(data.get("update_rule") or ""))


@dataclass(frozen=True)
class Memo:
    title: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memo:
        return cls(title=str(data.get("title") or ""), content=str(data.get("content") or ""))
