"""CLI argument parsing and main entry point.

Three modes of operation:

* default: initialise keys if needed, then monitor and unseal forever.
* ``--clear-keys``: erase the stored key bundle and exit.
* ``--check``: print the current seal state and key presence, then exit.

Exit codes: 0 on success or after a one-shot mode, 1 when startup fails
(bad flags or config, missing tools, no keys).
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

from vault_unsealer.config import MonitorConfig, load_config, resolve_config_path
from vault_unsealer.constants import APP_NAME, APP_VERSION, CONFIG_ENV_VAR
from vault_unsealer.display.logging_config import setup_logging
from vault_unsealer.errors import ConfigurationError, KeyStoreError, UnsealerError
from vault_unsealer.keystore import create_backend
from vault_unsealer.monitor import MonitorLoop, initialize_keys
from vault_unsealer.runtime import CommandRunner, DockerRuntime, check_tools
from vault_unsealer.vault import UnsealOrchestrator, create_vault_control, get_seal_status

module_logger = logging.getLogger(__name__)

_EXAMPLES = """\
Examples:
    # Default settings (keyring storage, init container source, 60s interval)
    vault-unsealer

    # TPM storage with interactive key entry
    vault-unsealer --storage-backend durable --key-source interactive

    # Monitor only, 30 second interval
    vault-unsealer --monitor-only --interval 30

    # Remove stored keys
    vault-unsealer --storage-backend durable --clear-keys
"""


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that exits with code 1 (not 2) on bad flags."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)


# ── Helpers ──────────────────────────────────────────────────────────────


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed flags onto :class:`MonitorConfig` fields (``None`` = not given)."""
    return {
        "key_source": args.key_source,
        "storage_backend": args.storage_backend,
        "check_interval": args.interval,
        "monitor_only": args.monitor_only,
        "vault_container": args.vault_container,
        "init_container": args.init_container,
        "keys_file": args.keys_file,
        "vault_addr": args.vault_addr,
        "tls_verify": False if args.insecure else None,
        "keyring_name": args.keyring_name,
        "tpm_state_dir": args.state_dir,
        "command_timeout": args.timeout,
        "log_level": args.log_level,
        "log_dir": args.log_dir,
    }


def _install_signal_handlers(loop: MonitorLoop) -> None:
    _force_exit_count = 0

    def _sigint_handler(sig: int, frame: object) -> None:
        nonlocal _force_exit_count
        _force_exit_count += 1
        if _force_exit_count >= 2:
            module_logger.info("Force exit requested (double Ctrl+C).")
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            os._exit(1)
        module_logger.info("Ctrl+C received, stopping after the current cycle")
        loop.stop()

    def _sigterm_handler(sig: int, frame: object) -> None:
        module_logger.info("SIGTERM received, stopping after the current cycle")
        loop.stop()

    signal.signal(signal.SIGINT, _sigint_handler)
    signal.signal(signal.SIGTERM, _sigterm_handler)


# ── Default mode: monitor ────────────────────────────────────────────────


def _cmd_monitor(config: MonitorConfig) -> int:
    """Initialise keys if needed, then run the monitor loop until stopped."""
    try:
        check_tools(config.required_tools())
    except ConfigurationError as exc:
        module_logger.error("%s", exc)
        return 1

    runner = CommandRunner(timeout=config.command_timeout)
    runtime = DockerRuntime(runner) if config.needs_docker else None
    backend = None if config.monitor_only else create_backend(config, runner)

    if backend is not None:
        try:
            initialize_keys(config, backend, runtime)
        except UnsealerError as exc:
            module_logger.error("Failed to initialize keys: %s", exc)
            return 1
        except (KeyboardInterrupt, EOFError):
            module_logger.error("Key initialization interrupted")
            return 1

    control = create_vault_control(config, runtime)
    orchestrator = UnsealOrchestrator(control, backend) if backend is not None else None
    loop = MonitorLoop(config, control, orchestrator)
    _install_signal_handlers(loop)
    loop.run()
    return 0


# ── --clear-keys ─────────────────────────────────────────────────────────


def _cmd_clear_keys(config: MonitorConfig) -> int:
    """Erase the stored key bundle from the configured backend."""
    try:
        check_tools(config.storage_tools)
    except ConfigurationError as exc:
        module_logger.error("%s", exc)
        return 1

    backend = create_backend(config, CommandRunner(timeout=config.command_timeout))
    try:
        removed = backend.clear()
    except KeyStoreError as exc:
        module_logger.error("Failed to clear keys: %s", exc)
        return 1

    if removed:
        print(f"Removed {removed} stored key item(s) from {backend.name}.")
    else:
        print(f"No stored keys found in {backend.name}.")
    return 0


# ── --check ──────────────────────────────────────────────────────────────


def _cmd_check(config: MonitorConfig) -> int:
    """Print the vault seal state and whether keys are stored."""
    runner = CommandRunner(timeout=config.command_timeout)
    runtime = DockerRuntime(runner) if config.needs_docker else None
    control = create_vault_control(config, runtime)
    backend = create_backend(config, runner)

    seal_state = get_seal_status(control)
    print(f"Vault:       {control.target}")
    print(f"Seal state:  {seal_state.value}")
    print(f"Key storage: {backend.name} ({'keys stored' if backend.exists() else 'no keys'})")
    return 0


# ── CLI parser construction ──────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser."""
    parser = _ArgumentParser(
        prog="vault-unsealer",
        description=f"{APP_NAME} v{APP_VERSION}",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {APP_VERSION}")

    parser.add_argument(
        "-s",
        "--key-source",
        type=str,
        default=None,
        choices=["init-source", "init-vault", "interactive", "file"],
        help="Source of unseal keys (default: init-source)",
    )
    parser.add_argument(
        "-b",
        "--storage-backend",
        type=str,
        default=None,
        choices=["volatile", "durable", "keyring", "tpm"],
        help="Key storage: 'volatile' kernel keyring or 'durable' TPM (default: volatile)",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Check interval in seconds (default: 60)",
    )
    parser.add_argument(
        "-v",
        "--vault-container",
        type=str,
        default=None,
        metavar="NAME",
        help="Name of the vault container (default: vault)",
    )
    parser.add_argument(
        "--init-container",
        type=str,
        default=None,
        metavar="NAME",
        help="Name of the one-shot init container (default: init-vault)",
    )
    parser.add_argument(
        "--keys-file",
        type=str,
        default=None,
        metavar="PATH",
        help="File with 'Unseal Key N:' lines (for --key-source file)",
    )
    parser.add_argument(
        "--vault-addr",
        type=str,
        default=None,
        metavar="URL",
        help="Use the Vault HTTP API at URL instead of docker exec",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=False,
        help="Skip TLS certificate verification for --vault-addr",
    )
    parser.add_argument(
        "--keyring-name",
        type=str,
        default=None,
        metavar="NAME",
        help="Kernel keyring name (default: vault-unseal)",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        default=None,
        metavar="PATH",
        help="Directory for TPM sealed objects (default: /var/lib/vault-unsealer/tpm)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Timeout for each docker/keyctl/tpm2/vault call (default: 10)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        metavar="PATH",
        help=f"Path to a YAML configuration file (or set {CONFIG_ENV_VAR})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["debug", "info", "warning", "error", "critical"],
        help="Set logging level (default: info)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        metavar="PATH",
        help="Also write logs to a timestamped file in PATH",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-m",
        "--monitor-only",
        action="store_true",
        default=None,
        help="Only monitor seal status without unsealing",
    )
    mode.add_argument(
        "--clear-keys",
        action="store_true",
        default=False,
        help="Erase the stored unseal keys and exit",
    )
    mode.add_argument(
        "--check",
        action="store_true",
        default=False,
        help="Print the seal state and whether keys are stored, then exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Program entry point: parse arguments and dispatch to the selected mode."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(resolve_config_path(args.config), _overrides_from_args(args))
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    log_fpath = setup_logging(config.log_level, config.log_dir)
    module_logger.info("---- %s v%s starting ----", APP_NAME, APP_VERSION)
    if log_fpath:
        module_logger.info("Log file: %s", log_fpath)
    module_logger.info(
        "Configuration: key-source=%s, storage=%s, interval=%ds, monitor-only=%s",
        config.key_source,
        config.storage_backend,
        config.check_interval,
        config.monitor_only,
    )

    if args.clear_keys:
        code = _cmd_clear_keys(config)
    elif args.check:
        code = _cmd_check(config)
    else:
        code = _cmd_monitor(config)

    module_logger.info("%s finished (exit code %d).", APP_NAME, code)
    sys.exit(code)
