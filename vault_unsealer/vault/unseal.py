"""Apply the stored key bundle to a sealed vault and verify the result."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vault_unsealer.constants import UNSEAL_THRESHOLD
from vault_unsealer.errors import ShareRejectedError, VaultControlError, VerificationFailedError
from vault_unsealer.keystore.base import StorageBackend
from vault_unsealer.vault.control import VaultControl
from vault_unsealer.vault.probe import SealState, get_seal_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsealResult:
    """Outcome of a successful unseal attempt."""

    applied: int
    skipped: int = 0


class UnsealOrchestrator:
    """Retrieves the key bundle and feeds it to the vault, in order.

    One call to :meth:`unseal` is one attempt: no retries happen here.
    The monitor loop tries again on its next poll. Partial progress
    (shares already accepted) is kept by the vault itself.
    """

    def __init__(self, control: VaultControl, backend: StorageBackend) -> None:
        self._control = control
        self._backend = backend

    def unseal(self) -> UnsealResult:
        """Unseal the vault.

        Raises:
            KeyStoreError: Bundle missing, corrupt or backend unreachable.
            ShareRejectedError: The vault refused a share; later shares are not sent.
            VerificationFailedError: Every share went in but the vault is not unsealed.
        """
        logger.info("Retrieving unseal keys from %s...", self._backend.name)
        bundle = self._backend.retrieve()

        logger.info("Unsealing vault %s...", self._control.target)
        applied = 0
        skipped = 0
        for index, share in enumerate(bundle, start=1):
            if not share:
                logger.warning("Unseal key share %d is empty, skipping it", index)
                skipped += 1
                continue
            try:
                body = self._control.submit_unseal_key(share)
            except VaultControlError as exc:
                raise ShareRejectedError(index, str(exc)) from None
            applied += 1
            logger.debug(
                "Share %d accepted, unseal progress %s/%s",
                index,
                body.get("progress", "?"),
                body.get("t", UNSEAL_THRESHOLD),
            )

        state = get_seal_status(self._control)
        if state is not SealState.UNSEALED:
            raise VerificationFailedError(applied, UNSEAL_THRESHOLD, state.value)

        logger.info("Vault unsealed successfully (%d shares applied)", applied)
        return UnsealResult(applied=applied, skipped=skipped)
