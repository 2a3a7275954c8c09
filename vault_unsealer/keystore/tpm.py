"""TPM 2.0 backend (durable).

Each share is sealed individually under a primary key in the owner
hierarchy, which keeps every sealed object well below the TPM's size
limit. Layout under the state directory (``0o700``)::

    primary.ctx                   primary wrapping key context
    share-N.pub / share-N.priv    sealed object for share N
    share-N.ctx                   loaded context for share N
    *.new                         staged objects of a store in progress

A store seals all shares into staged files first and only renames them
over the previous objects once every share has been created and loaded,
so a failed store leaves the earlier bundle intact.

Shares are passed to ``tpm2_create`` on stdin; plaintext never touches
disk. Transient contexts do not survive a reboot, so retrieval re-loads
each object and, if the primary context is stale, re-derives the primary
(deterministic for a given hierarchy seed) once before giving up.
"""

from __future__ import annotations

import logging
import os
from typing import List

from vault_unsealer.constants import DEFAULT_TPM_STATE_DIR, UNSEAL_THRESHOLD
from vault_unsealer.errors import (
    BackendUnavailableError,
    CommandError,
    CorruptKeyBundleError,
    KeyNotFoundError,
)
from vault_unsealer.keystore.base import KeyBundle, StorageBackend, is_clean_share
from vault_unsealer.runtime.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

PRIMARY_CTX = "primary.ctx"
STAGING_SUFFIX = ".new"
_DIR_MODE = 0o700
_FILE_MODE = 0o600


class TpmBackend(StorageBackend):
    """Seals the key bundle with a TPM via ``tpm2-tools``.

    The process needs access to the TPM resource manager (root or the
    ``tss`` group) and to *state_dir*.
    """

    name = "tpm"

    def __init__(self, runner: CommandRunner, state_dir: str = DEFAULT_TPM_STATE_DIR) -> None:
        self._runner = runner
        self._state_dir = state_dir

    # ── Paths ────────────────────────────────────────────────────────────

    def _path(self, filename: str) -> str:
        return os.path.join(self._state_dir, filename)

    @property
    def primary_path(self) -> str:
        return self._path(PRIMARY_CTX)

    def share_paths(self, index: int) -> tuple[str, str, str]:
        """Return ``(pub, priv, ctx)`` paths for share *index* (1-based)."""
        base = f"share-{index}"
        return self._path(f"{base}.pub"), self._path(f"{base}.priv"), self._path(f"{base}.ctx")

    def staged_paths(self, index: int) -> tuple[str, str, str]:
        """Return the staging ``(pub, priv, ctx)`` paths used while storing share *index*."""
        pub, priv, ctx = self.share_paths(index)
        return pub + STAGING_SUFFIX, priv + STAGING_SUFFIX, ctx + STAGING_SUFFIX

    def _layout(self) -> List[str]:
        paths = [self.primary_path]
        for index in range(1, UNSEAL_THRESHOLD + 1):
            paths.extend(self.share_paths(index))
            paths.extend(self.staged_paths(index))
        return paths

    # ── Helpers ──────────────────────────────────────────────────────────

    def _tpm(self, *argv: str, input: str | None = None) -> CommandResult:
        try:
            result = self._runner.run(list(argv), input=input)
        except CommandError as exc:
            raise BackendUnavailableError(str(exc), backend=self.name) from None
        if not result.ok:
            raise BackendUnavailableError(
                f"{argv[0]} failed: {result.error_text()}", backend=self.name
            )
        return result

    def _check_access(self) -> None:
        if not os.access(self._state_dir, os.R_OK | os.W_OK | os.X_OK):
            raise BackendUnavailableError(
                f"No access to TPM state directory {self._state_dir}; "
                "run as root or as the directory owner",
                backend=self.name,
            )

    def _ensure_dir(self) -> None:
        try:
            os.makedirs(self._state_dir, mode=_DIR_MODE, exist_ok=True)
            os.chmod(self._state_dir, _DIR_MODE)
        except OSError as exc:
            raise BackendUnavailableError(
                f"Cannot prepare TPM state directory {self._state_dir}: {exc}", backend=self.name
            ) from exc

    def _restrict(self, *paths: str) -> None:
        for path in paths:
            if os.path.exists(path):
                os.chmod(path, _FILE_MODE)

    def _create_primary(self) -> None:
        self._tpm("tpm2_createprimary", "-C", "o", "-c", self.primary_path)
        self._restrict(self.primary_path)
        logger.debug("Created TPM primary key context %s", self.primary_path)

    def _load_share(self, index: int) -> None:
        self._load(*self.share_paths(index))

    def _load(self, pub: str, priv: str, ctx: str) -> None:
        self._tpm("tpm2_load", "-C", self.primary_path, "-u", pub, "-r", priv, "-c", ctx)
        self._restrict(ctx)

    def _shred(self, path: str) -> bool:
        """Overwrite *path* with zeros, then unlink it. Returns False if absent."""
        try:
            size = os.path.getsize(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise BackendUnavailableError(
                f"Cannot inspect {path}: {exc}", backend=self.name
            ) from exc
        try:
            with open(path, "r+b") as f:
                f.write(b"\0" * size)
                f.flush()
                os.fsync(f.fileno())
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise BackendUnavailableError(
                f"Cannot erase {path}: {exc}", backend=self.name
            ) from exc
        return True

    def _present_shares(self) -> List[int]:
        present = []
        for index in range(1, UNSEAL_THRESHOLD + 1):
            pub, priv, _ = self.share_paths(index)
            if os.path.isfile(pub) and os.path.isfile(priv):
                present.append(index)
        return present

    def _stage_share(self, index: int, share: str) -> None:
        pub, priv, ctx = self.staged_paths(index)
        for leftover in (pub, priv, ctx):
            self._shred(leftover)
        self._tpm(
            "tpm2_create",
            "-C",
            self.primary_path,
            "-i",
            "-",
            "-u",
            pub,
            "-r",
            priv,
            input=share,
        )
        self._restrict(pub, priv)
        self._load(pub, priv, ctx)

    def _discard_staged(self) -> None:
        for index in range(1, UNSEAL_THRESHOLD + 1):
            for path in self.staged_paths(index):
                try:
                    self._shred(path)
                except BackendUnavailableError as exc:
                    logger.warning("Could not erase staged TPM object: %s", exc)

    def _commit_staged(self) -> None:
        for index in range(1, UNSEAL_THRESHOLD + 1):
            for staged, final in zip(self.staged_paths(index), self.share_paths(index)):
                try:
                    os.replace(staged, final)
                except OSError as exc:
                    raise BackendUnavailableError(
                        f"Cannot install sealed share {index}: {exc}", backend=self.name
                    ) from exc

    # ── StorageBackend API ───────────────────────────────────────────────

    def store(self, bundle: KeyBundle) -> None:
        self._ensure_dir()
        self._check_access()

        if os.path.isfile(self.primary_path):
            logger.debug("Reusing TPM primary key context %s", self.primary_path)
        else:
            self._create_primary()

        try:
            for index, share in enumerate(bundle, start=1):
                self._stage_share(index, share)
                logger.debug("Sealed unseal key share %d under TPM primary key", index)
        except BackendUnavailableError:
            self._discard_staged()
            raise

        self._commit_staged()
        logger.info("Key bundle sealed with TPM in %s", self._state_dir)

    def retrieve(self) -> KeyBundle:
        if not os.path.isdir(self._state_dir):
            raise KeyNotFoundError(
                f"TPM state directory {self._state_dir} does not exist", backend=self.name
            )
        self._check_access()

        present = self._present_shares()
        if not present:
            raise KeyNotFoundError(
                f"No sealed key shares found in {self._state_dir}", backend=self.name
            )
        if len(present) != UNSEAL_THRESHOLD:
            raise CorruptKeyBundleError(
                f"Only shares {present} of {UNSEAL_THRESHOLD} are present in {self._state_dir}",
                backend=self.name,
            )

        if not os.path.isfile(self.primary_path):
            self._create_primary()

        shares: List[str] = []
        primary_refreshed = False
        for index in present:
            try:
                self._load_share(index)
            except BackendUnavailableError:
                if primary_refreshed:
                    raise
                logger.info("Reloading TPM primary key after failed load of share %d", index)
                self._create_primary()
                primary_refreshed = True
                self._load_share(index)

            _, _, ctx = self.share_paths(index)
            result = self._tpm("tpm2_unseal", "-c", ctx)
            if not is_clean_share(result.stdout):
                raise CorruptKeyBundleError(
                    f"Sealed share {index} unsealed to an empty or malformed value",
                    backend=self.name,
                )
            shares.append(result.stdout)

        return KeyBundle(tuple(shares))

    def exists(self) -> bool:
        try:
            return len(self._present_shares()) == UNSEAL_THRESHOLD
        except OSError as exc:
            logger.debug("TPM existence check failed: %s", exc)
            return False

    def clear(self) -> int:
        if not os.path.isdir(self._state_dir):
            return 0
        self._check_access()
        removed = sum(1 for path in self._layout() if self._shred(path))
        logger.info("Erased %d TPM key file(s) from %s", removed, self._state_dir)
        return removed
