"""Obtain the raw unseal key shares for first-time storage.

Three sources are supported:

* the log history of the one-shot init container that ran
  ``vault operator init`` (``Unseal Key N: <share>`` lines),
* an operator typing the shares at a no-echo prompt,
* a file holding the saved ``vault operator init`` output.

Every source yields a validated :class:`KeyBundle`; consumers never
re-check share count or emptiness.
"""

from __future__ import annotations

import getpass
import logging
import os
import re
from typing import Callable, Dict, List, Optional

from vault_unsealer.config.schema import MonitorConfig
from vault_unsealer.constants import UNSEAL_THRESHOLD
from vault_unsealer.errors import (
    CommandError,
    ConfigurationError,
    EmptyInputError,
    IncompleteKeySetError,
    KeyAcquisitionError,
    SourceUnavailableError,
)
from vault_unsealer.keystore.base import KeyBundle
from vault_unsealer.runtime.docker import DockerRuntime

logger = logging.getLogger(__name__)

# "Unseal Key 1: abc..." as printed by `vault operator init`; the share is
# the last whitespace-separated token on the line.
_KEY_LINE_RE = re.compile(r"Unseal Key (\d+):\s*(\S+)\s*$")


def parse_key_lines(text: str, source: str) -> KeyBundle:
    """Extract ``Unseal Key 1..N`` from *text*.

    If a label appears more than once the last occurrence wins, matching
    a re-run init container whose newest output is at the end of the log.
    """
    found: Dict[int, str] = {}
    for line in text.splitlines():
        match = _KEY_LINE_RE.search(line)
        if match:
            found[int(match.group(1))] = match.group(2)

    wanted = range(1, UNSEAL_THRESHOLD + 1)
    missing = [i for i in wanted if i not in found]
    if missing:
        for index in missing:
            logger.error("Unseal Key %d not found in %s", index, source)
        raise IncompleteKeySetError(UNSEAL_THRESHOLD - len(missing), UNSEAL_THRESHOLD, source)

    try:
        return KeyBundle.from_shares(found[i] for i in wanted)
    except ValueError as exc:
        raise KeyAcquisitionError(f"{exc} in {source}") from None


def from_initialization_log(runtime: DockerRuntime, container: str) -> KeyBundle:
    """Scrape the unseal keys from the full log of the init *container*."""
    logger.info("Checking for %s container...", container)
    try:
        if not runtime.exists(container):
            raise SourceUnavailableError(
                f"Container '{container}' does not exist. Run the vault "
                "initialization first or use --key-source interactive"
            )
        logger.info("Extracting unseal keys from container logs...")
        log_text = runtime.logs(container)
    except CommandError as exc:
        raise SourceUnavailableError(str(exc)) from exc

    bundle = parse_key_lines(log_text, f"logs of container '{container}'")
    logger.info("Extracted %d unseal keys from container '%s'", len(bundle), container)
    return bundle


def from_interactive_prompt(prompt: Optional[Callable[[str], str]] = None) -> KeyBundle:
    """Ask the operator for each share with echo suppressed."""
    prompt = prompt or getpass.getpass
    logger.info("Please enter the %d unseal keys:", UNSEAL_THRESHOLD)
    shares: List[str] = []
    for index in range(1, UNSEAL_THRESHOLD + 1):
        value = prompt(f"Unseal Key {index}: ").strip()
        if not value:
            raise EmptyInputError(f"Unseal Key {index} cannot be empty")
        shares.append(value)

    try:
        return KeyBundle.from_shares(shares)
    except ValueError as exc:
        raise KeyAcquisitionError(str(exc)) from None


def from_keys_file(path: str) -> KeyBundle:
    """Read the unseal keys from saved ``vault operator init`` output."""
    if not os.path.isfile(path):
        raise SourceUnavailableError(f"Keys file '{path}' does not exist")
    try:
        with open(path, "r", encoding="utf-8", errors="surrogateescape") as f:
            text = f.read()
    except OSError as exc:
        raise SourceUnavailableError(f"Cannot read keys file '{path}': {exc}") from exc
    return parse_key_lines(text, f"keys file '{path}'")


def acquire_keys(
    config: MonitorConfig,
    runtime: Optional[DockerRuntime] = None,
    prompt: Optional[Callable[[str], str]] = None,
) -> KeyBundle:
    """Obtain the key bundle from the source named in *config*."""
    if config.key_source == "interactive":
        return from_interactive_prompt(prompt)
    if config.key_source == "file":
        if not config.keys_file:
            raise ConfigurationError("key_source 'file' requires keys_file")
        return from_keys_file(config.keys_file)
    if runtime is None:
        raise SourceUnavailableError("Container runtime is required to read the init container")
    return from_initialization_log(runtime, config.init_container)
