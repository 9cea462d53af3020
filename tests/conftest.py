"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from service_install.adapters.mock import MockBackend
from service_install.adapters.registry import BackendRegistry
from service_install.core.models.spec import InstallMode
from service_install.core.persistence.audit import AuditWriter
from service_install.core.services.validator import missing_dirs

SCRIPT = "#!/bin/sh\necho hello\n"


class FakeSystemctl:
    """Stands in for ``run_command`` when the command is systemctl.

    Tracks enabled and active units and records every call.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.enabled: set[str] = set()
        self.active: set[str] = set()
        self.fail: dict[str, str] = {}    # verb -> stderr
        self.system_state = "running"

    def __call__(self, cmd: list[str], **kwargs: Any) -> dict[str, Any]:
        self.calls.append(list(cmd))
        args = [a for a in cmd[1:] if a != "--user"]
        verb, rest = args[0], args[1:]

        if verb in self.fail:
            return {"ok": False, "returncode": 1, "stdout": "", "stderr": self.fail[verb]}

        ok = True
        stdout = ""
        if verb == "enable":
            self.enabled.update(rest)
        elif verb == "disable":
            self.enabled.difference_update(rest)
        elif verb in ("start", "restart"):
            self.active.update(rest)
        elif verb == "stop":
            self.active.difference_update(rest)
        elif verb == "is-enabled":
            ok = rest[0] in self.enabled
        elif verb == "is-active":
            ok = rest[0] in self.active
        elif verb == "is-system-running":
            stdout = self.system_state + "\n"
        return {"ok": ok, "returncode": 0 if ok else 1, "stdout": stdout, "stderr": ""}

    @property
    def verbs(self) -> list[str]:
        return [next(a for a in c[1:] if a != "--user") for c in self.calls]


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A fake home directory."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def install_dir(home: Path) -> Path:
    """Install directory for user installs (not created yet)."""
    return home / ".local" / "bin"


@pytest.fixture
def source_exe(tmp_path: Path) -> Path:
    """A small executable to install."""
    path = tmp_path / "dist" / "tool"
    path.parent.mkdir()
    path.write_text(SCRIPT)
    path.chmod(0o755)
    return path


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def registry(backend: MockBackend) -> BackendRegistry:
    reg = BackendRegistry(InstallMode.USER)
    reg.register(backend)
    return reg


@pytest.fixture
def exec_capable(monkeypatch: pytest.MonkeyPatch) -> None:
    """Accept directories regardless of the mount flags of tmp.

    A missing directory is accepted when its nearest existing ancestor
    is a directory, as the real check does.
    """

    def _capable(directory: Path) -> bool:
        missing = missing_dirs(directory)
        return (missing[0].parent if missing else directory).is_dir()

    monkeypatch.setattr(
        "service_install.core.services.validator.is_exec_capable", _capable
    )


@pytest.fixture
def no_processes():
    """Process query that never finds anything."""
    return lambda path: []


@pytest.fixture
def audit(tmp_path: Path) -> AuditWriter:
    return AuditWriter(tmp_path / "audit.ndjson")


@pytest.fixture
def systemctl() -> FakeSystemctl:
    return FakeSystemctl()


@pytest.fixture
def reset_logging():
    """Drop handlers that ``setup_logging`` installed on the root logger."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
