"""memochat: streaming chat sessions distilled into rule-governed memos."""

__version__ = "0.1.0"
