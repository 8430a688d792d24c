"""Configuration schema for memochat."""

from __future__ import annotations

import os
import re

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"

_ENV_REF_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` references; unset variables keep the original text."""
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    return os.environ.get(m.group(1), value)


class ProviderConfig(BaseModel):
    """Connection settings for the chat-completion endpoint."""

    model_config = ConfigDict(validate_assignment=True)

    api_key: str = ""
    api_base: str = ""
    model: str = ""
    compact_model: str = ""
    reasoning_enabled: bool = False
    timeout: float = Field(default=120.0, gt=0)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)

    @property
    def effective_api_base(self) -> str:
        return (self.api_base.strip() or DEFAULT_API_BASE).rstrip("/")

    @property
    def effective_model(self) -> str:
        return self.model.strip() or DEFAULT_MODEL

    @property
    def effective_compact_model(self) -> str:
        """Model used for memo compaction; falls back to the chat model."""
        return self.compact_model.strip() or self.effective_model


class LoggingConfig(BaseModel):
    json_output: bool = True
    level: str = "INFO"


class Config(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(validate_assignment=True)

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    system_prompt: str = ""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
