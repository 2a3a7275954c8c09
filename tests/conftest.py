"""Shared fakes: in-process stand-ins for keyctl, tpm2-tools, docker and Vault.

None of the tests touch a real keyring, TPM, container runtime or vault.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest
from rich.logging import RichHandler

from vault_unsealer.display.logging_config import secret_redaction_filter
from vault_unsealer.errors import VaultControlError
from vault_unsealer.runtime.commands import CommandResult, CommandRunner
from vault_unsealer.vault.control import VaultControl


class FakeRunner(CommandRunner):
    """Records every call and dispatches on the program name."""

    def __init__(self) -> None:
        super().__init__(timeout=1.0)
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []

    def run(
        self,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)
        self.inputs.append(input)
        handler = getattr(self, "_" + argv[0].replace("-", "_"), None)
        if handler is None:
            return CommandResult(argv[0], 127, "", f"{argv[0]}: command not found")
        return handler(argv[1:], input)

    def commands(self, program: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == program]


# ── keyctl ───────────────────────────────────────────────────────────────


class FakeKeyctl(FakeRunner):
    """Minimal model of the kernel key store as seen through ``keyctl``."""

    USER_RING = "1"

    def __init__(self) -> None:
        super().__init__()
        self.keys: Dict[str, Dict[str, Any]] = {
            self.USER_RING: {"type": "keyring", "desc": "_uid.0", "payload": "", "revoked": False}
        }
        self.links: Dict[str, List[str]] = {self.USER_RING: []}
        self._next = 100
        self.unavailable = False

    def _resolve(self, ref: str) -> str:
        return self.USER_RING if ref == "@u" else ref

    def _ok(self, out: str = "") -> CommandResult:
        return CommandResult("keyctl", 0, out, "")

    def _fail(self, msg: str) -> CommandResult:
        return CommandResult("keyctl", 1, "", msg)

    def _new_key(self, key_type: str, desc: str, payload: str, parent: str) -> str:
        serial = str(self._next)
        self._next += 1
        self.keys[serial] = {"type": key_type, "desc": desc, "payload": payload, "revoked": False}
        self.links.setdefault(parent, []).append(serial)
        if key_type == "keyring":
            self.links[serial] = []
        return serial

    def _keyctl(self, args: List[str], input: Optional[str]) -> CommandResult:
        if self.unavailable:
            return self._fail("keyctl_search: Permission denied")
        op, rest = args[0], args[1:]

        if op == "search":
            parent, key_type, desc = self._resolve(rest[0]), rest[1], rest[2]
            for serial in self.links.get(parent, []):
                key = self.keys[serial]
                if key["type"] == key_type and key["desc"] == desc:
                    return self._ok(serial + "\n")
            return self._fail("keyctl_search: Required key not available")

        if op == "newring":
            return self._ok(self._new_key("keyring", rest[0], "", self._resolve(rest[1])) + "\n")

        if op == "padd":
            key_type, desc, parent = rest[0], rest[1], self._resolve(rest[2])
            for serial in self.links.get(parent, []):
                key = self.keys[serial]
                if key["type"] == key_type and key["desc"] == desc:
                    key["payload"] = input or ""
                    return self._ok(serial + "\n")
            return self._ok(self._new_key(key_type, desc, input or "", parent) + "\n")

        if op == "pipe":
            key = self.keys.get(rest[0])
            if key is None:
                return self._fail("keyctl_read_alloc: Required key not available")
            if key["revoked"]:
                return self._fail("keyctl_read_alloc: Key has been revoked")
            return self._ok(key["payload"])

        if op == "revoke":
            key = self.keys.get(rest[0])
            if key is None:
                return self._fail("keyctl_revoke: Required key not available")
            key["revoked"] = True
            return self._ok()

        if op == "unlink":
            serial, parent = rest[0], self._resolve(rest[1])
            linked = self.links.get(parent, [])
            if serial not in linked:
                return self._fail("keyctl_unlink: No such file or directory")
            linked.remove(serial)
            if not any(serial in v for v in self.links.values()):
                self.keys.pop(serial, None)
                self.links.pop(serial, None)
            return self._ok("1 links removed\n")

        return self._fail(f"keyctl: unknown command {op}")

    def ring_contents(self, ring_name: str) -> List[str]:
        for serial in self.links[self.USER_RING]:
            if self.keys[serial]["desc"] == ring_name:
                return [self.keys[s]["desc"] for s in self.links[serial]]
        return []


# ── tpm2-tools ───────────────────────────────────────────────────────────


def _opt(args: List[str], flag: str) -> str:
    return args[args.index(flag) + 1]


class FakeTpm(FakeRunner):
    """Models tpm2-tools by writing recognisable files.

    Sealing is simulated by base64-encoding the payload into ``.priv``.
    A primary file containing ``stale`` makes ``tpm2_load`` fail, like a
    context left over from before a reboot.
    Setting ``fail_after_creates`` makes every ``tpm2_create`` after that
    many successful ones fail.
    """

    def __init__(self) -> None:
        super().__init__()
        self.primaries_created = 0
        self.unavailable = False
        self.creates = 0
        self.fail_after_creates: Optional[int] = None

    def _fail(self, tool: str) -> CommandResult:
        return CommandResult(tool, 1, "", "ERROR:tcti:src/tss2-tcti/tcti-device.c Failed to open device")

    def _tpm2_createprimary(self, args: List[str], input: Optional[str]) -> CommandResult:
        if self.unavailable:
            return self._fail("tpm2_createprimary")
        with open(_opt(args, "-c"), "wb") as f:
            f.write(b"primary")
        self.primaries_created += 1
        return CommandResult("tpm2_createprimary", 0, "name-alg:\n  value: sha256\n", "")

    def _tpm2_create(self, args: List[str], input: Optional[str]) -> CommandResult:
        if self.unavailable or not os.path.isfile(_opt(args, "-C")):
            return self._fail("tpm2_create")
        if self.fail_after_creates is not None and self.creates >= self.fail_after_creates:
            return CommandResult("tpm2_create", 1, "", "ERROR: Esys_Create(0x902) - tpm:warn(2.0): out of memory")
        self.creates += 1
        assert _opt(args, "-i") == "-"
        with open(_opt(args, "-u"), "wb") as f:
            f.write(b"pub")
        with open(_opt(args, "-r"), "wb") as f:
            f.write(base64.b64encode((input or "").encode()))
        return CommandResult("tpm2_create", 0, "", "")

    def _tpm2_load(self, args: List[str], input: Optional[str]) -> CommandResult:
        primary = _opt(args, "-C")
        if self.unavailable or not os.path.isfile(primary):
            return self._fail("tpm2_load")
        with open(primary, "rb") as f:
            if f.read() != b"primary":
                return self._fail("tpm2_load")
        with open(_opt(args, "-r"), "rb") as f:
            sealed = f.read()
        with open(_opt(args, "-c"), "wb") as f:
            f.write(sealed)
        return CommandResult("tpm2_load", 0, "name: 000b\n", "")

    def _tpm2_unseal(self, args: List[str], input: Optional[str]) -> CommandResult:
        if self.unavailable:
            return self._fail("tpm2_unseal")
        with open(_opt(args, "-c"), "rb") as f:
            data = base64.b64decode(f.read()).decode()
        return CommandResult("tpm2_unseal", 0, data, "")


# ── docker ───────────────────────────────────────────────────────────────


class FakeDocker(FakeRunner):
    """``docker ps``/``logs``/``exec`` over a dict of containers."""

    def __init__(self) -> None:
        super().__init__()
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.exec_handler: Optional[Callable[[str, List[str], Optional[str]], CommandResult]] = None

    def add(self, name: str, running: bool = True, logs: str = "") -> None:
        self.containers[name] = {"running": running, "logs": logs}

    def _docker(self, args: List[str], input: Optional[str]) -> CommandResult:
        op = args[0]
        if op == "ps":
            names = [n for n, c in self.containers.items() if "-a" in args or c["running"]]
            return CommandResult("docker", 0, "".join(f"{n}\n" for n in names), "")
        if op == "logs":
            container = self.containers.get(args[1])
            if container is None:
                return CommandResult("docker", 1, "", f"Error: No such container: {args[1]}")
            return CommandResult("docker", 0, container["logs"], "")
        if op == "exec":
            rest = args[1:]
            if rest and rest[0] == "-i":
                rest = rest[1:]
            name, cmd = rest[0], rest[1:]
            container = self.containers.get(name)
            if container is None:
                return CommandResult("docker", 1, "", f"Error response from daemon: No such container: {name}")
            if not container["running"]:
                return CommandResult(
                    "docker", 1, "", f"Error response from daemon: container {name} is not running"
                )
            assert self.exec_handler is not None
            return self.exec_handler(name, cmd, input)
        return CommandResult("docker", 1, "", f"unknown docker command {op}")


# ── Vault ────────────────────────────────────────────────────────────────


class FakeVaultControl(VaultControl):
    """Scripted vault: seal statuses come from a list, shares are recorded.

    ``reject`` holds 1-based share submission numbers the vault refuses.
    ``statuses`` items may be dicts or exceptions; the last one repeats.
    """

    def __init__(
        self,
        statuses: Optional[List[Any]] = None,
        reject: Sequence[int] = (),
        reachable: bool = True,
    ) -> None:
        self.target = "fake-vault"
        self.statuses = list(statuses or [{"sealed": False}])
        self.reject = set(reject)
        self.reachable = reachable
        self.submitted: List[str] = []
        self.status_calls = 0

    def is_reachable(self) -> bool:
        return self.reachable

    def seal_status(self) -> Dict[str, Any]:
        self.status_calls += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def submit_unseal_key(self, share: str) -> Dict[str, Any]:
        self.submitted.append(share)
        if len(self.submitted) in self.reject:
            raise VaultControlError("Error unsealing: invalid key", target=self.target)
        return {"sealed": True, "progress": len(self.submitted), "t": 3}


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    secret_redaction_filter.clear()
    # setup_logging() detaches our loggers from root, which hides them from caplog.
    for name in ("vault_unsealer", "hvac", "urllib3"):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()
        log.propagate = True
        log.setLevel(logging.NOTSET)
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, (logging.FileHandler, RichHandler)):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def keyctl() -> FakeKeyctl:
    return FakeKeyctl()


@pytest.fixture
def tpm() -> FakeTpm:
    return FakeTpm()


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def vault_factory() -> Callable[..., FakeVaultControl]:
    return FakeVaultControl


class FakeHost(FakeDocker, FakeKeyctl):
    """A machine with both docker and keyctl, for end-to-end CLI runs."""


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
