"""Key bundle type and the storage backend interface.

Backends implement a small interface::

    class StorageBackend:
        def store(self, bundle: KeyBundle) -> None: ...
        def retrieve(self) -> KeyBundle: ...
        def clear(self) -> int: ...
        def exists(self) -> bool: ...

Built-in backends:

* ``KeyringBackend``: Linux kernel keyring (volatile, via ``keyctl``)
* ``TpmBackend``: TPM 2.0 sealed objects on disk (durable, via ``tpm2-tools``)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple

from vault_unsealer.constants import UNSEAL_THRESHOLD
from vault_unsealer.display.logging_config import secret_redaction_filter

logger = logging.getLogger(__name__)


def is_clean_share(share: str) -> bool:
    """True if *share* is non-empty printable ASCII without whitespace."""
    return bool(share) and share.isascii() and share.isprintable() and not any(
        ch.isspace() for ch in share
    )


@dataclass(frozen=True)
class KeyBundle:
    """The ordered set of unseal key shares, handled as one unit.

    Shares are opaque strings passed verbatim to the vault. They are
    registered with the log redaction filter on construction and are
    never shown by ``repr``.
    """

    shares: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.shares) != UNSEAL_THRESHOLD:
            raise ValueError(
                f"A key bundle holds exactly {UNSEAL_THRESHOLD} shares, got {len(self.shares)}"
            )
        for share in self.shares:
            secret_redaction_filter.register(share)

    @classmethod
    def from_shares(cls, shares: Iterable[str]) -> "KeyBundle":
        """Build a bundle from freshly produced shares.

        Surrounding whitespace is stripped. Raises :class:`ValueError` if a
        share is empty, contains whitespace or non-printable characters, or
        if the count is wrong.
        """
        cleaned = tuple(s.strip() for s in shares)
        for index, share in enumerate(cleaned, start=1):
            if not share:
                raise ValueError(f"Unseal key share {index} is empty")
            if any(ch.isspace() for ch in share):
                raise ValueError(f"Unseal key share {index} contains whitespace")
            if not is_clean_share(share):
                raise ValueError(f"Unseal key share {index} contains non-printable characters")
        return cls(cleaned)

    def __iter__(self) -> Iterator[str]:
        return iter(self.shares)

    def __len__(self) -> int:
        return len(self.shares)

    def __repr__(self) -> str:
        return f"KeyBundle(<{len(self.shares)} shares>)"

    __str__ = __repr__


class StorageBackend(ABC):
    """Abstract base class for unseal key storage backends."""

    #: Short name used in log messages and errors.
    name: str = "storage"

    @abstractmethod
    def store(self, bundle: KeyBundle) -> None:
        """Persist *bundle*, replacing any bundle stored before."""

    @abstractmethod
    def retrieve(self) -> KeyBundle:
        """Return the stored bundle.

        Raises ``KeyNotFoundError``, ``CorruptKeyBundleError`` or
        ``BackendUnavailableError``.
        """

    @abstractmethod
    def clear(self) -> int:
        """Securely remove the stored bundle. Returns the number of items removed."""

    @abstractmethod
    def exists(self) -> bool:
        """Report whether a bundle is stored. Never mutates state or raises."""
