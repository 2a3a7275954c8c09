"""External command execution and container runtime access."""

from vault_unsealer.runtime.commands import CommandResult, CommandRunner, check_tools
from vault_unsealer.runtime.docker import DockerRuntime

__all__ = [
    "CommandResult",
    "CommandRunner",
    "DockerRuntime",
    "check_tools",
]
