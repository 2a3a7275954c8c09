"""Thin wrapper over the ``docker`` CLI.

Only the four operations the daemon needs are exposed: list running
containers, list all containers, read a container's log history, and
exec a command inside a running container.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from vault_unsealer.errors import CommandError
from vault_unsealer.runtime.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

_NAMES_FORMAT = "{{.Names}}"


class DockerRuntime:
    """Container runtime backed by the ``docker`` command."""

    def __init__(self, runner: CommandRunner, binary: str = "docker") -> None:
        self._runner = runner
        self._binary = binary

    def _names(self, *extra: str) -> List[str]:
        result = self._runner.run([self._binary, "ps", *extra, "--format", _NAMES_FORMAT])
        if not result.ok:
            raise CommandError(
                f"'{self._binary} ps' failed: {result.error_text()}", command=self._binary
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def list_running(self) -> List[str]:
        return self._names()

    def list_all(self) -> List[str]:
        return self._names("-a")

    def is_running(self, name: str) -> bool:
        return name in self.list_running()

    def exists(self, name: str) -> bool:
        return name in self.list_all()

    def logs(self, name: str) -> str:
        """Return the full log history of *name*, stdout and stderr combined."""
        result = self._runner.run([self._binary, "logs", name])
        if not result.ok:
            raise CommandError(
                f"Cannot read logs of container '{name}': {result.error_text()}",
                command=self._binary,
            )
        return result.stdout + result.stderr

    def exec(
        self,
        name: str,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run *argv* inside container *name*."""
        cmd = [self._binary, "exec"]
        if input is not None:
            cmd.append("-i")
        cmd += [name, *argv]
        return self._runner.run(cmd, input=input, timeout=timeout)
