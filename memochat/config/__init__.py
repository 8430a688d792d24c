"""Configuration models and JSON loader."""

from memochat.config.loader import config_from_dict, load_config, save_config
from memochat.config.schema import DEFAULT_API_BASE, DEFAULT_MODEL, Config, LoggingConfig, ProviderConfig

__all__ = [
    "Config",
    "DEFAULT_API_BASE",
    "DEFAULT_MODEL",
    "LoggingConfig",
    "ProviderConfig",
    "config_from_dict",
    "load_config",
    "save_config",
]
