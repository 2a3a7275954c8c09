"""Kernel keyring backend (volatile).

The bundle lives in a dedicated keyring (``vault-unseal`` by default)
linked into the user keyring ``@u``. All three shares are packed into a
single ``user`` key, separated by newlines, which never occur in the
base64/hex encoding Vault uses for key shares. Payloads travel on stdin
(``keyctl padd``) so no share ever shows up in a process listing.

Contents disappear on reboot; no elevated privileges are needed.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from vault_unsealer.constants import BUNDLE_KEY_NAME, DEFAULT_KEYRING_NAME, UNSEAL_THRESHOLD
from vault_unsealer.errors import (
    BackendUnavailableError,
    CommandError,
    CorruptKeyBundleError,
    KeyNotFoundError,
    KeyStoreError,
)
from vault_unsealer.keystore.base import KeyBundle, StorageBackend, is_clean_share
from vault_unsealer.runtime.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

SHARE_SEPARATOR = "\n"
USER_KEYRING = "@u"

# keyctl error text meaning "nothing there" rather than "cannot reach keyring"
_NOT_FOUND_MARKERS = ("Required key not available", "No such file or directory")


class KeyringBackend(StorageBackend):
    """Stores the key bundle in the Linux kernel keyring via ``keyctl``.

    Parameters
    ----------
    runner:
        Command runner used for ``keyctl`` calls.
    keyring_name:
        Name of the dedicated keyring under ``@u``.
    key_name:
        Description of the ``user`` key holding the bundle.
    """

    name = "keyring"

    def __init__(
        self,
        runner: CommandRunner,
        keyring_name: str = DEFAULT_KEYRING_NAME,
        key_name: str = BUNDLE_KEY_NAME,
    ) -> None:
        self._runner = runner
        self._keyring_name = keyring_name
        self._key_name = key_name

    # ── keyctl plumbing ──────────────────────────────────────────────────

    def _keyctl(self, *args: str, input: Optional[str] = None) -> CommandResult:
        try:
            return self._runner.run(["keyctl", *args], input=input)
        except CommandError as exc:
            raise BackendUnavailableError(str(exc), backend=self.name) from None

    def _search(self, parent: str, key_type: str, description: str) -> Optional[str]:
        """Return the serial of a key, or ``None`` if it does not exist."""
        result = self._keyctl("search", parent, key_type, description)
        if result.ok:
            return result.stdout.strip()
        reason = result.error_text()
        if any(marker in reason for marker in _NOT_FOUND_MARKERS):
            return None
        raise BackendUnavailableError(
            f"keyctl search for '{description}' failed: {reason}", backend=self.name
        )

    def _find_ring(self) -> Optional[str]:
        return self._search(USER_KEYRING, "keyring", self._keyring_name)

    def _find_bundle_key(self, ring_id: str) -> Optional[str]:
        return self._search(ring_id, "user", self._key_name)

    def _create_ring(self) -> str:
        result = self._keyctl("newring", self._keyring_name, USER_KEYRING)
        if not result.ok:
            raise BackendUnavailableError(
                f"Cannot create keyring '{self._keyring_name}': {result.error_text()}",
                backend=self.name,
            )
        logger.debug("Created keyring '%s' (%s)", self._keyring_name, result.stdout.strip())
        return result.stdout.strip()

    # ── Encoding ─────────────────────────────────────────────────────────

    @staticmethod
    def _encode(bundle: KeyBundle) -> str:
        for index, share in enumerate(bundle, start=1):
            if SHARE_SEPARATOR in share:
                raise KeyStoreError(f"Unseal key share {index} contains a line break")
        return SHARE_SEPARATOR.join(bundle)

    def _decode(self, payload: str) -> KeyBundle:
        parts: List[str] = payload.split(SHARE_SEPARATOR)
        if len(parts) != UNSEAL_THRESHOLD or not all(is_clean_share(p) for p in parts):
            raise CorruptKeyBundleError(
                f"Stored bundle '{self._key_name}' does not hold "
                f"{UNSEAL_THRESHOLD} well-formed shares",
                backend=self.name,
            )
        return KeyBundle(tuple(parts))

    # ── StorageBackend API ───────────────────────────────────────────────

    def store(self, bundle: KeyBundle) -> None:
        payload = self._encode(bundle)
        ring_id = self._find_ring() or self._create_ring()

        old_id = self._find_bundle_key(ring_id)
        if old_id is not None:
            result = self._keyctl("unlink", old_id, ring_id)
            if result.ok:
                logger.debug("Unlinked previous key bundle %s", old_id)
            else:
                logger.warning(
                    "Could not unlink previous key bundle %s: %s", old_id, result.error_text()
                )

        result = self._keyctl("padd", "user", self._key_name, ring_id, input=payload)
        if not result.ok:
            raise BackendUnavailableError(
                f"Cannot add key bundle to keyring: {result.error_text()}", backend=self.name
            )
        logger.info("Key bundle stored in keyring '%s'", self._keyring_name)

    def retrieve(self) -> KeyBundle:
        ring_id = self._find_ring()
        if ring_id is None:
            raise KeyNotFoundError(f"Keyring '{self._keyring_name}' not found", backend=self.name)
        key_id = self._find_bundle_key(ring_id)
        if key_id is None:
            raise KeyNotFoundError(
                f"Key '{self._key_name}' not found in keyring '{self._keyring_name}'",
                backend=self.name,
            )

        result = self._keyctl("pipe", key_id)
        if not result.ok:
            raise BackendUnavailableError(
                f"Cannot read key '{self._key_name}': {result.error_text()}", backend=self.name
            )
        return self._decode(result.stdout)

    def exists(self) -> bool:
        try:
            ring_id = self._find_ring()
            return ring_id is not None and self._find_bundle_key(ring_id) is not None
        except KeyStoreError as exc:
            logger.debug("Keyring existence check failed: %s", exc)
            return False

    def clear(self) -> int:
        ring_id = self._find_ring()
        if ring_id is None:
            return 0

        removed = 0
        key_id = self._find_bundle_key(ring_id)
        if key_id is not None:
            revoked = self._keyctl("revoke", key_id)
            if not revoked.ok:
                logger.warning("Could not revoke key %s: %s", key_id, revoked.error_text())
            unlinked = self._keyctl("unlink", key_id, ring_id)
            if unlinked.ok or revoked.ok:
                removed += 1
            else:
                raise BackendUnavailableError(
                    f"Cannot remove key '{self._key_name}': {unlinked.error_text()}",
                    backend=self.name,
                )

        # Drop the dedicated ring only; unrelated keys elsewhere in @u stay.
        result = self._keyctl("unlink", ring_id, USER_KEYRING)
        if not result.ok:
            logger.debug("Could not unlink keyring %s: %s", ring_id, result.error_text())

        logger.info("Cleared %d key bundle(s) from keyring '%s'", removed, self._keyring_name)
        return removed
