"""Pydantic configuration model for Vault Unsealer.

A single :class:`MonitorConfig` is built once at startup from the optional
YAML file and the command-line flags, then passed to every component. It is
frozen: nothing may change it after validation.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vault_unsealer.constants import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_INIT_CONTAINER,
    DEFAULT_KEYRING_NAME,
    DEFAULT_LOG_LEVEL,
    DEFAULT_TPM_STATE_DIR,
    DEFAULT_VAULT_CONTAINER,
)

KeySource = Literal["init-source", "interactive", "file"]
StorageBackendName = Literal["volatile", "durable"]

# Older names used by the shell tooling this daemon replaces.
_KEY_SOURCE_ALIASES = {"init-vault": "init-source"}
_BACKEND_ALIASES = {"keyring": "volatile", "tpm": "durable"}

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TPM_TOOLS = ["tpm2_createprimary", "tpm2_create", "tpm2_load", "tpm2_unseal"]


class MonitorConfig(BaseModel):
    """Validated daemon configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key_source: KeySource = Field(
        default="init-source",
        description="Where initial unseal keys come from: init container logs, prompt, or file.",
    )
    storage_backend: StorageBackendName = Field(
        default="volatile",
        description="'volatile' (kernel keyring) or 'durable' (TPM-sealed files).",
    )
    check_interval: int = Field(
        default=DEFAULT_CHECK_INTERVAL,
        ge=1,
        description="Seconds between seal-status polls.",
    )
    monitor_only: bool = Field(
        default=False,
        description="Only report seal status, never initialise or unseal.",
    )
    vault_container: str = Field(default=DEFAULT_VAULT_CONTAINER, min_length=1)
    init_container: str = Field(default=DEFAULT_INIT_CONTAINER, min_length=1)
    keys_file: Optional[str] = Field(
        default=None,
        description="File holding 'Unseal Key N:' lines (key_source 'file').",
    )
    vault_addr: Optional[str] = Field(
        default=None,
        description="Vault HTTP address. When set the API is used instead of docker exec.",
    )
    tls_verify: bool = True
    keyring_name: str = Field(default=DEFAULT_KEYRING_NAME, min_length=1)
    tpm_state_dir: str = Field(default=DEFAULT_TPM_STATE_DIR, min_length=1)
    command_timeout: float = Field(default=DEFAULT_COMMAND_TIMEOUT, gt=0)
    log_level: str = DEFAULT_LOG_LEVEL
    log_dir: Optional[str] = None

    @field_validator("key_source", mode="before")
    @classmethod
    def _normalise_key_source(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _KEY_SOURCE_ALIASES.get(value, value)
        return value

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _BACKEND_ALIASES.get(value, value)
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(_VALID_LOG_LEVELS)}")
        return level

    @field_validator("vault_addr")
    @classmethod
    def _check_vault_addr(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return value

    @model_validator(mode="after")
    def _check_keys_file(self) -> "MonitorConfig":
        if self.key_source == "file" and not self.keys_file:
            raise ValueError("keys_file is required when key_source is 'file'")
        return self

    # ── Derived values ───────────────────────────────────────────────────

    @property
    def uses_http_api(self) -> bool:
        return self.vault_addr is not None

    @property
    def needs_docker(self) -> bool:
        """Docker is needed to reach the vault or to read the init container."""
        if not self.uses_http_api:
            return True
        return not self.monitor_only and self.key_source == "init-source"

    @property
    def storage_tools(self) -> List[str]:
        """Commands the selected storage backend shells out to."""
        if self.storage_backend == "durable":
            return list(_TPM_TOOLS)
        return ["keyctl"]

    def required_tools(self) -> List[str]:
        """External commands that must be on PATH to run the monitor."""
        tools: List[str] = []
        if self.needs_docker:
            tools.append("docker")
        if not self.monitor_only:
            tools.extend(self.storage_tools)
        return tools
