"""Seal monitor: startup key initialisation and the forever polling loop.

State machine for one poll cycle::

    IDLE ─► POLLING ─► SEALED_DETECTED ─► UNSEALING ─► IDLE
               │              │                 │
               │              └─(monitor-only)──┴──► IDLE / ERROR_BACKOFF
               └─(container absent / status unknown)──► ERROR_BACKOFF

Every cycle ends with a full ``check_interval`` wait, whatever its
outcome. Only :meth:`MonitorLoop.stop` (wired to SIGTERM/SIGINT) ends
the loop. The stop request is a plain flag, safe to set from a signal
handler; the wait sleeps in short slices and checks it between them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional

from vault_unsealer.acquire import acquire_keys
from vault_unsealer.config.schema import MonitorConfig
from vault_unsealer.errors import UnsealerError
from vault_unsealer.keystore.base import StorageBackend
from vault_unsealer.runtime.docker import DockerRuntime
from vault_unsealer.vault.control import VaultControl
from vault_unsealer.vault.probe import SealState, get_seal_status
from vault_unsealer.vault.unseal import UnsealOrchestrator

logger = logging.getLogger(__name__)

# Longest single sleep while waiting, bounds how late a stop request is seen.
WAIT_SLICE = 1.0


class MonitorState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SEALED_DETECTED = "sealed_detected"
    UNSEALING = "unsealing"
    ERROR_BACKOFF = "error_backoff"


@dataclass
class MonitorStats:
    """Counters for one daemon run, logged at shutdown."""

    cycles: int = 0
    seal_events: int = 0
    unseal_successes: int = 0
    unseal_failures: int = 0
    unknown_polls: int = 0


def initialize_keys(
    config: MonitorConfig,
    backend: StorageBackend,
    runtime: Optional[DockerRuntime] = None,
    prompt: Optional[Callable[[str], str]] = None,
) -> bool:
    """Make sure a key bundle is stored before monitoring starts.

    Runs once per process. Returns ``True`` if a new bundle was acquired
    and stored, ``False`` if one already existed or monitor-only mode is on.
    Acquisition and storage errors propagate: without keys there is
    nothing to unseal with.
    """
    if config.monitor_only:
        logger.debug("Monitor-only mode, skipping key initialisation")
        return False

    if backend.exists():
        logger.info("Using existing stored keys (%s)", backend.name)
        return False

    logger.info("No stored keys found. Initializing keys from %s...", config.key_source)
    bundle = acquire_keys(config, runtime, prompt=prompt)
    backend.store(bundle)
    return True


class MonitorLoop:
    """Polls the vault seal status and unseals it when it seals.

    Parameters
    ----------
    config:
        Validated daemon configuration.
    control:
        Transport to the vault instance.
    orchestrator:
        Unseal orchestrator; ``None`` in monitor-only mode.
    """

    def __init__(
        self,
        config: MonitorConfig,
        control: VaultControl,
        orchestrator: Optional[UnsealOrchestrator] = None,
    ) -> None:
        self._config = config
        self._control = control
        self._orchestrator = orchestrator
        self._stop_requested = False
        self.state: MonitorState = MonitorState.IDLE
        self.stats = MonitorStats()

    # ── Public API ───────────────────────────────────────────────────────

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle. Safe in a signal handler."""
        self._stop_requested = True

    @property
    def stopped(self) -> bool:
        return self._stop_requested

    def poll_once(self) -> MonitorState:
        """Run a single poll cycle and return the state it ended in."""
        self.stats.cycles += 1
        self._transition(MonitorState.POLLING)

        if not self._control.is_reachable():
            logger.warning("Vault container '%s' is not running", self._control.target)
            return self._transition(MonitorState.ERROR_BACKOFF)

        seal_state = get_seal_status(self._control)
        if seal_state is SealState.UNKNOWN:
            self.stats.unknown_polls += 1
            logger.error("Failed to get vault seal status from %s", self._control.target)
            return self._transition(MonitorState.ERROR_BACKOFF)

        if seal_state is SealState.UNSEALED:
            logger.info("Vault is unsealed (healthy)")
            return self._transition(MonitorState.IDLE)

        self.stats.seal_events += 1
        self._transition(MonitorState.SEALED_DETECTED)
        logger.warning("Vault is SEALED")

        if self._config.monitor_only or self._orchestrator is None:
            logger.warning("Monitor-only mode: leaving vault sealed")
            return self._transition(MonitorState.IDLE)

        self._transition(MonitorState.UNSEALING)
        try:
            self._orchestrator.unseal()
        except UnsealerError as exc:
            self.stats.unseal_failures += 1
            logger.error("Auto-unseal failed: %s", exc)
            return self._transition(MonitorState.ERROR_BACKOFF)

        self.stats.unseal_successes += 1
        return self._transition(MonitorState.IDLE)

    def run(self, max_cycles: Optional[int] = None) -> MonitorStats:
        """Poll until :meth:`stop` is called (or *max_cycles* cycles have run)."""
        interval = self._config.check_interval
        logger.info(
            "Starting vault monitoring (interval: %ds, monitor-only: %s)",
            interval,
            self._config.monitor_only,
        )

        cycles = 0
        while not self._stop_requested:
            try:
                self.poll_once()
            except Exception:
                # A bug in one cycle must not end the daemon.
                logger.exception("Unexpected error during poll cycle")
                self._transition(MonitorState.ERROR_BACKOFF)

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if self._wait(interval):
                break

        logger.info("Vault monitoring stopped: %s", asdict(self.stats))
        return self.stats

    # ── Internals ────────────────────────────────────────────────────────

    def _wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*. Returns ``True`` if a stop was requested."""
        deadline = time.monotonic() + seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(remaining, WAIT_SLICE))
        return True

    def _transition(self, target: MonitorState) -> MonitorState:
        if target is not self.state:
            logger.debug("Monitor state %s → %s", self.state.value, target.value)
        self.state = target
        return target
