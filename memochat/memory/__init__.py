"""Memo compaction and rule management."""

from memochat.memory.compaction import CompactionOrchestrator, CompactionResult, CompactionTask
from memochat.memory.rules import RuleImportError

__all__ = ["CompactionOrchestrator", "CompactionResult", "CompactionTask", "RuleImportError"]
