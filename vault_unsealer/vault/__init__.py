"""Vault seal-status probing and unsealing."""

from vault_unsealer.vault.control import (
    ContainerVaultControl,
    HvacVaultControl,
    VaultControl,
    create_vault_control,
)
from vault_unsealer.vault.probe import SealState, get_seal_status
from vault_unsealer.vault.unseal import UnsealOrchestrator, UnsealResult

__all__ = [
    "ContainerVaultControl",
    "HvacVaultControl",
    "SealState",
    "UnsealOrchestrator",
    "UnsealResult",
    "VaultControl",
    "create_vault_control",
    "get_seal_status",
]
