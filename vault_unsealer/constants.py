"""Shared constants for Vault Unsealer."""

APP_NAME = "Vault Unsealer"
APP_VERSION = "0.1.0"

# Number of key shares needed to unseal (and stored per bundle)
UNSEAL_THRESHOLD = 3

# Monitoring defaults
DEFAULT_CHECK_INTERVAL = 60  # seconds between seal-status polls
DEFAULT_COMMAND_TIMEOUT = 10.0  # seconds per docker/keyctl/tpm2/vault call

# Container defaults
DEFAULT_VAULT_CONTAINER = "vault"
DEFAULT_INIT_CONTAINER = "init-vault"

# Storage defaults
DEFAULT_KEYRING_NAME = "vault-unseal"
BUNDLE_KEY_NAME = "unseal-keys"
DEFAULT_TPM_STATE_DIR = "/var/lib/vault-unsealer/tpm"

# Logging defaults
DEFAULT_LOG_LEVEL = "INFO"

# Config file lookup
CONFIG_ENV_VAR = "VAULT_UNSEALER_CONFIG"
