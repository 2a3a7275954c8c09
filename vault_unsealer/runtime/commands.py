"""Bounded execution of external commands (docker, keyctl, tpm2-tools).

Every call the daemon makes to the outside world goes through
:class:`CommandRunner` so that a hung tool can never stall the monitor
loop for longer than one timeout, and so tests can swap in a fake runner.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence

from vault_unsealer.constants import DEFAULT_COMMAND_TIMEOUT
from vault_unsealer.errors import CommandError, CommandTimeoutError, MissingToolError

logger = logging.getLogger(__name__)

# Install hints shown when a required tool is missing.
_TOOL_HINTS: Dict[str, str] = {
    "docker": "Please install Docker.",
    "keyctl": "Please install the keyutils package.",
    "tpm2_createprimary": "Please install tpm2-tools (e.g. sudo apt install tpm2-tools).",
    "tpm2_create": "Please install tpm2-tools (e.g. sudo apt install tpm2-tools).",
    "tpm2_load": "Please install tpm2-tools (e.g. sudo apt install tpm2-tools).",
    "tpm2_unseal": "Please install tpm2-tools (e.g. sudo apt install tpm2-tools).",
}


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command.

    ``command`` is the program name only. Arguments are never kept
    because some of them (``vault operator unseal``) carry key shares.
    """

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_text(self) -> str:
        """Best human-readable failure reason."""
        text = (self.stderr or self.stdout).strip()
        if not text:
            return f"exit code {self.returncode}"
        line = text.splitlines()[-1]
        return line.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


class CommandRunner:
    """Runs external commands with a bounded timeout.

    Parameters
    ----------
    timeout:
        Default timeout in seconds for each call.
    """

    def __init__(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run *argv* and capture its output. Non-zero exit is not an error here.

        Undecodable output bytes are kept as lone surrogates so callers can
        reject them instead of crashing on a decode error.
        """
        command = argv[0]
        limit = self.timeout if timeout is None else timeout
        try:
            proc = subprocess.run(
                list(argv),
                input=input,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                timeout=limit,
                check=False,
            )
        except FileNotFoundError:
            raise CommandError(f"Command '{command}' not found", command=command) from None
        except PermissionError:
            raise CommandError(f"Permission denied running '{command}'", command=command) from None
        except subprocess.TimeoutExpired:
            # Not chained: TimeoutExpired.cmd holds the full argv.
            raise CommandTimeoutError(
                f"Command '{command}' did not finish within {limit:.0f}s", command=command
            ) from None

        logger.debug("'%s' exited with code %d", command, proc.returncode)
        return CommandResult(
            command=command,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )


def check_tools(tools: Iterable[str]) -> None:
    """Raise :class:`MissingToolError` for the first tool not on ``PATH``."""
    for tool in tools:
        if shutil.which(tool) is None:
            raise MissingToolError(tool, _TOOL_HINTS.get(tool))
        logger.debug("Found required command '%s'", tool)
