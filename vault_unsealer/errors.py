"""Custom exception classes for Vault Unsealer."""

from typing import Optional


class UnsealerError(Exception):
    """Base class for all custom exceptions in Vault Unsealer."""

    pass


# ── Startup ──────────────────────────────────────────────────────────────


class ConfigurationError(UnsealerError):
    """Raised when loading or validating the configuration fails."""

    pass


class MissingToolError(ConfigurationError):
    """Raised when an external command the daemon depends on is not installed."""

    def __init__(self, tool: str, hint: Optional[str] = None):
        self.tool = tool
        message = f"Required command '{tool}' not found on PATH"
        if hint:
            message += f". {hint}"
        super().__init__(message)


# ── External commands ────────────────────────────────────────────────────


class CommandError(UnsealerError):
    """Raised when an external command cannot be started."""

    def __init__(self, message: str, command: Optional[str] = None):
        self.command = command
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """Raised when an external command exceeds its timeout."""

    pass


# ── Key acquisition ──────────────────────────────────────────────────────


class KeyAcquisitionError(UnsealerError):
    """Base class for failures while obtaining the raw unseal keys."""

    pass


class SourceUnavailableError(KeyAcquisitionError):
    """Raised when the key source (init container, keys file) does not exist."""

    pass


class IncompleteKeySetError(KeyAcquisitionError):
    """Raised when fewer than the required number of labelled keys are found."""

    def __init__(self, found: int, required: int, source: str):
        self.found = found
        self.required = required
        super().__init__(
            f"Found {found} of {required} unseal keys in {source}"
        )


class EmptyInputError(KeyAcquisitionError):
    """Raised when an operator enters a blank unseal key."""

    pass


# ── Key storage ──────────────────────────────────────────────────────────


class KeyStoreError(UnsealerError):
    """Base class for secure key store failures."""

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        if backend:
            message = f"[{backend}] {message}"
        super().__init__(message)


class KeyNotFoundError(KeyStoreError):
    """Raised when no key bundle has been stored."""

    pass


class CorruptKeyBundleError(KeyStoreError):
    """Raised when stored data does not decode into a complete key bundle."""

    pass


class BackendUnavailableError(KeyStoreError):
    """
    Raised when the storage primitive (kernel keyring, TPM) cannot be
    reached or needs privileges the process does not hold.
    """

    pass


# ── Vault control ────────────────────────────────────────────────────────


class VaultControlError(UnsealerError):
    """
    Raised when a status or unseal call against the vault cannot be
    completed or returns output that cannot be interpreted.
    """

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        orig_exc: Optional[Exception] = None,
    ):
        self.target = target
        self.orig_exc = orig_exc

        full_msg = "Vault control error"
        if target:
            full_msg += f" (target: {target})"
        full_msg += f": {message}"
        if orig_exc:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


class ContainerNotRunningError(VaultControlError):
    """Raised when the target vault container is not running."""

    pass


# ── Unsealing ────────────────────────────────────────────────────────────


class UnsealError(UnsealerError):
    """Base class for failed unseal attempts."""

    pass


class ShareRejectedError(UnsealError):
    """Raised when the vault refuses a key share. Later shares are not applied."""

    def __init__(self, index: int, reason: str):
        self.index = index
        super().__init__(f"Unseal key share {index} was rejected: {reason}")


class VerificationFailedError(UnsealError):
    """Raised when the vault is still not unsealed after all shares were applied."""

    def __init__(self, applied: int, threshold: int, state: str):
        self.applied = applied
        self.threshold = threshold
        self.state = state
        super().__init__(
            f"Vault reports '{state}' after applying {applied}/{threshold} key shares"
        )
