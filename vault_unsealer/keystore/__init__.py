"""Secure custody of the unseal key bundle.

Provides the :class:`KeyBundle` type, the :class:`StorageBackend`
interface and its kernel keyring and TPM implementations.
"""

from vault_unsealer.config.schema import MonitorConfig
from vault_unsealer.keystore.base import KeyBundle, StorageBackend
from vault_unsealer.keystore.keyring import KeyringBackend
from vault_unsealer.keystore.tpm import TpmBackend
from vault_unsealer.runtime.commands import CommandRunner


def create_backend(config: MonitorConfig, runner: CommandRunner) -> StorageBackend:
    """Factory for the storage backend selected by *config*."""
    if config.storage_backend == "volatile":
        return KeyringBackend(runner, keyring_name=config.keyring_name)
    if config.storage_backend == "durable":
        return TpmBackend(runner, state_dir=config.tpm_state_dir)
    raise ValueError(f"Unknown storage backend: {config.storage_backend!r}")


__all__ = [
    "KeyBundle",
    "KeyringBackend",
    "StorageBackend",
    "TpmBackend",
    "create_backend",
]
