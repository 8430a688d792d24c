"""Transcript types and persistence."""

from memochat.session.turns import Memo, MemoRule, Turn

__all__ = ["Memo", "MemoRule", "Turn"]
