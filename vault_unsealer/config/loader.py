"""Configuration file loading and validation.

Loads an optional YAML file, layers command-line overrides on top, and
validates the result against :class:`MonitorConfig`.

Precedence (highest first): CLI flag → YAML file → model default. The file
path itself comes from ``--config`` or the ``VAULT_UNSEALER_CONFIG``
environment variable.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from vault_unsealer.config.schema import MonitorConfig
from vault_unsealer.constants import CONFIG_ENV_VAR
from vault_unsealer.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    # Accept both snake_case and the CLI's kebab-case spelling.
    return {str(k).replace("-", "_"): v for k, v in raw_data.items()}


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"]) or "config"
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


def resolve_config_path(cli_path: Optional[str] = None) -> Optional[str]:
    """Return the config file to load, or ``None`` to run on defaults."""
    path = cli_path or os.environ.get(CONFIG_ENV_VAR)
    if path is None:
        return None
    if not os.path.isfile(path):
        raise ConfigurationError(f"Configuration file not found: {path}")
    return os.path.abspath(path)


def load_config(
    cfg_fpath: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MonitorConfig:
    """Build the validated :class:`MonitorConfig`.

    Args:
        cfg_fpath: Optional YAML file path (already resolved).
        overrides: Values from the command line. ``None`` entries are
            treated as "not given" and do not mask file values.

    Raises:
        ConfigurationError: On unreadable files or invalid values.
    """
    data: Dict[str, Any] = {}
    if cfg_fpath is not None:
        data.update(_read_config_file(cfg_fpath))
        logger.info("Loaded configuration file: %s", cfg_fpath)

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = MonitorConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration:\n{_format_validation_errors(exc)}"
        ) from exc

    logger.debug("Configuration validated: %s", config.model_dump())
    return config
