"""Load and save :class:`Config` as JSON."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from memochat.config.schema import Config
from memochat.logging import get_logger
from memochat.utils.helpers import atomic_write_text

logger = get_logger(__name__)

# Flat keys written by the desktop app's config.json
_LEGACY_PROVIDER_KEYS = {
    "api_key": "api_key",
    "model_id": "model",
    "base_url": "api_base",
    "compact_model_id": "compact_model",
    "reasoning_enabled": "reasoning_enabled",
}


def _migrate_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Fold flat legacy keys into the nested ``provider`` section."""
    if "provider" in data or not any(k in data for k in _LEGACY_PROVIDER_KEYS):
        return data
    provider = {new: data[old] for old, new in _LEGACY_PROVIDER_KEYS.items() if data.get(old) is not None}
    migrated = {k: v for k, v in data.items() if k not in _LEGACY_PROVIDER_KEYS}
    migrated["provider"] = provider
    return migrated


def config_from_dict(data: dict[str, Any] | None) -> Config:
    """Build a Config from a raw mapping, returning defaults on invalid input."""
    if not isinstance(data, dict):
        return Config()
    try:
        return Config.model_validate(_migrate_legacy(data))
    except ValidationError as e:
        logger.warning("config_invalid", error=str(e))
        return Config()


def load_config(path: Path) -> Config:
    """Load config from *path*; a missing or unreadable file yields defaults."""
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("config_load_failed", path=str(path), error=str(e))
        return Config()
    return config_from_dict(data)


def save_config(config: Config, path: Path) -> None:
    atomic_write_text(path, config.model_dump_json(indent=2))
