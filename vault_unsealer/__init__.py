"""
Vault Unsealer - keeps a HashiCorp Vault instance unsealed.

Vault Unsealer stores the unseal key shares in the Linux kernel keyring or
sealed under a TPM, polls the vault's seal status, and re-applies the
shares whenever the vault seals itself.
"""

from vault_unsealer.constants import APP_NAME, APP_VERSION

__version__ = APP_VERSION
__app_name__ = APP_NAME

__all__ = [
    "APP_NAME",
    "APP_VERSION",
    "__version__",
    "__app_name__",
]
