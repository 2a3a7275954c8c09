"""Seal-status probe."""

from __future__ import annotations

import logging
from enum import Enum

from vault_unsealer.errors import VaultControlError
from vault_unsealer.vault.control import VaultControl

logger = logging.getLogger(__name__)


class SealState(str, Enum):
    """Vault seal state as observed by a single poll."""

    SEALED = "sealed"
    UNSEALED = "unsealed"
    UNKNOWN = "unknown"


def state_from_status(body: dict) -> SealState:
    """Map a seal-status document to a :class:`SealState`.

    Only a real boolean ``sealed`` field counts; anything else is ambiguous.
    """
    sealed = body.get("sealed")
    if sealed is True:
        return SealState.SEALED
    if sealed is False:
        return SealState.UNSEALED
    return SealState.UNKNOWN


def get_seal_status(control: VaultControl) -> SealState:
    """Query the vault once. Failures and timeouts yield ``UNKNOWN``, never ``SEALED``."""
    try:
        body = control.seal_status()
    except VaultControlError as exc:
        logger.debug("Seal status query failed: %s", exc)
        return SealState.UNKNOWN

    state = state_from_status(body)
    if state is SealState.UNKNOWN:
        logger.debug("Seal status response for %s has no boolean 'sealed' field", control.target)
    return state
