"""Transports for the two Vault calls the daemon makes: seal status and unseal.

Controls implement a small interface::

    class VaultControl:
        def is_reachable(self) -> bool: ...
        def seal_status(self) -> Dict[str, Any]: ...
        def submit_unseal_key(self, share: str) -> Dict[str, Any]: ...

Built-in controls:

* ``ContainerVaultControl``: runs the ``vault`` CLI inside the vault
  container with ``docker exec``
* ``HvacVaultControl``: calls the HTTP API through ``hvac``
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import hvac
from hvac.exceptions import VaultError

from vault_unsealer.config.schema import MonitorConfig
from vault_unsealer.errors import CommandError, ContainerNotRunningError, VaultControlError
from vault_unsealer.runtime.commands import CommandResult
from vault_unsealer.runtime.docker import DockerRuntime

logger = logging.getLogger(__name__)

# docker exec stderr when the target container is gone or stopped
_CONTAINER_DOWN_MARKERS = ("No such container", "is not running")


class VaultControl(ABC):
    """Abstract base class for vault status/unseal transports."""

    #: Human-readable identity of the vault instance (container name or URL).
    target: str = ""

    @abstractmethod
    def is_reachable(self) -> bool:
        """Cheap check that the vault instance exists at all."""

    @abstractmethod
    def seal_status(self) -> Dict[str, Any]:
        """Return the vault's seal-status document. Raises :class:`VaultControlError`."""

    @abstractmethod
    def submit_unseal_key(self, share: str) -> Dict[str, Any]:
        """Submit one key share. Returns the seal-status document after it."""


# ── docker exec transport ────────────────────────────────────────────────


class ContainerVaultControl(VaultControl):
    """Drives the ``vault`` CLI inside a container.

    ``vault status`` exits with code 2 when the vault is sealed, so the
    exit code alone says nothing; the JSON body is authoritative.
    """

    def __init__(
        self, runtime: DockerRuntime, container: str, timeout: Optional[float] = None
    ) -> None:
        self._runtime = runtime
        self._timeout = timeout
        self.target = container

    def is_reachable(self) -> bool:
        try:
            return self._runtime.is_running(self.target)
        except CommandError as exc:
            logger.debug("Cannot list containers: %s", exc)
            return False

    def _exec(self, argv: List[str]) -> CommandResult:
        try:
            result = self._runtime.exec(self.target, argv, timeout=self._timeout)
        except CommandError as exc:
            raise VaultControlError(str(exc), target=self.target) from None
        stderr = result.stderr
        if not result.ok and any(marker in stderr for marker in _CONTAINER_DOWN_MARKERS):
            raise ContainerNotRunningError(
                f"Container '{self.target}' is not running", target=self.target
            )
        return result

    def _parse(self, result: CommandResult, what: str) -> Dict[str, Any]:
        try:
            body = json.loads(result.stdout)
        except ValueError:
            raise VaultControlError(
                f"Unparseable {what} output (exit code {result.returncode}): "
                f"{result.error_text()}",
                target=self.target,
            ) from None
        if not isinstance(body, dict):
            raise VaultControlError(f"Unexpected {what} output", target=self.target)
        return body

    def seal_status(self) -> Dict[str, Any]:
        result = self._exec(["vault", "status", "-format=json"])
        return self._parse(result, "status")

    def submit_unseal_key(self, share: str) -> Dict[str, Any]:
        result = self._exec(["vault", "operator", "unseal", "-format=json", share])
        if result.ok:
            return self._parse(result, "unseal") if result.stdout.strip() else {}
        # Some CLI versions exit 2 while still sealed; a seal-status body means accepted.
        try:
            body = json.loads(result.stdout)
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("sealed"), bool):
            return body
        raise VaultControlError(result.error_text(), target=self.target)


# ── HTTP API transport ───────────────────────────────────────────────────


class HvacVaultControl(VaultControl):
    """Talks to ``/v1/sys/seal-status`` and ``/v1/sys/unseal`` via hvac.

    Parameters
    ----------
    url:
        Vault address, e.g. ``https://127.0.0.1:8200``.
    timeout:
        Per-request timeout in seconds.
    verify:
        TLS certificate verification (passed to hvac).
    client:
        Pre-built ``hvac.Client``; mainly for tests.
    """

    def __init__(
        self,
        url: str,
        timeout: float,
        verify: bool = True,
        client: Optional[hvac.Client] = None,
    ) -> None:
        self.target = url
        self._client = client or hvac.Client(url=url, timeout=timeout, verify=verify)

    def is_reachable(self) -> bool:
        return True

    def _call(self, what: str, fn: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            body = fn(**kwargs)
        except (VaultError, OSError, ValueError) as exc:
            # OSError covers requests' connection and timeout errors.
            raise VaultControlError(
                f"{what} request failed", target=self.target, orig_exc=exc
            ) from None
        if not isinstance(body, dict):
            raise VaultControlError(f"Unexpected {what} response", target=self.target)
        return body

    def seal_status(self) -> Dict[str, Any]:
        return self._call("seal-status", self._client.sys.read_seal_status)

    def submit_unseal_key(self, share: str) -> Dict[str, Any]:
        return self._call("unseal", self._client.sys.submit_unseal_key, key=share)


def create_vault_control(
    config: MonitorConfig, runtime: Optional[DockerRuntime]
) -> VaultControl:
    """Factory for the transport selected by *config*."""
    if config.vault_addr is not None:
        return HvacVaultControl(
            config.vault_addr, timeout=config.command_timeout, verify=config.tls_verify
        )
    if runtime is None:
        raise ValueError("A container runtime is required for the docker exec transport")
    return ContainerVaultControl(runtime, config.vault_container, timeout=config.command_timeout)
