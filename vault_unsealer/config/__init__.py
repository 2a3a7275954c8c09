"""Configuration loading for Vault Unsealer."""

from vault_unsealer.config.loader import load_config, resolve_config_path
from vault_unsealer.config.schema import MonitorConfig

__all__ = [
    "MonitorConfig",
    "load_config",
    "resolve_config_path",
]
