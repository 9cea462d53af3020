"""
Cron backend: one marked rule in a crontab.

Our entry is two lines, the marker comment and the rule it owns:

    # managed-by: service-install name=cli
    42 10 * * * /home/me/.local/bin/cli --sync

Every change reads the whole table, edits it in memory and writes a
complete replacement in one step, so a half-written table is never
installed. Lines that are not ours are kept byte-for-byte. Foreign rules
are disabled by commenting them out behind ``DISABLED_PREFIX`` and
enabled again by removing it.

Cron has no notion of a running service, so start/stop/restart only log.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any

from service_install.adapters.base import ServiceBackend, marker_line, marker_name
from service_install.adapters.shell.runner import run_command
from service_install.core.errors import BackendError
from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.spec import InstallSpec
from service_install.core.persistence.atomic import atomic_write_text
from service_install.core.schedule import cron_expression

logger = logging.getLogger(__name__)

DISABLED_PREFIX = "# disabled-by service-install: "

# Header some crontab implementations prepend to `crontab -l` output
_CRONTAB_HEADER = "# DO NOT EDIT THIS FILE"
_CRONTAB_HEADER_LINES = 3

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")

Runner = Callable[..., dict[str, Any]]


# ── Crontab storage ─────────────────────────────────────────────


class CrontabStore(ABC):
    """Where a crontab lives and how to replace it atomically."""

    @abstractmethod
    def read(self) -> str: ...

    @abstractmethod
    def write(self, text: str) -> None: ...

    @abstractmethod
    def is_available(self) -> bool: ...


class CommandCrontab(CrontabStore):
    """A user's crontab, through the ``crontab`` command.

    ``crontab <file>`` installs the new table in one step.
    """

    def __init__(self, user: str | None = None, runner: Runner = run_command):
        self._user = user
        self._runner = runner

    def _cmd(self, *args: str) -> list[str]:
        cmd = ["crontab"]
        if self._user:
            cmd += ["-u", self._user]
        return cmd + list(args)

    def is_available(self) -> bool:
        return shutil.which("crontab") is not None

    def read(self) -> str:
        result = self._runner(self._cmd("-l"))
        if not result["ok"]:
            if "no crontab" in result.get("stderr", "").lower():
                return ""
            raise BackendError(
                f"crontab -l failed: {(result.get('stderr') or result.get('error', '')).strip()}"
            )
        text = result["stdout"]
        if text.startswith(_CRONTAB_HEADER):
            text = "".join(text.splitlines(keepends=True)[_CRONTAB_HEADER_LINES:])
        return text

    def write(self, text: str) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix=".crontab_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            result = self._runner(self._cmd(tmp_path))
            if not result["ok"]:
                raise BackendError(
                    "crontab install failed: "
                    f"{(result.get('stderr') or result.get('error', '')).strip()}"
                )
        finally:
            Path(tmp_path).unlink(missing_ok=True)


class FileCrontab(CrontabStore):
    """A crontab kept as a plain file (a spool file or an /etc/cron.d entry)."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def is_available(self) -> bool:
        return self._path.parent.is_dir()

    def read(self) -> str:
        if not self._path.is_file():
            return ""
        return self._path.read_text(encoding="utf-8")

    def write(self, text: str) -> None:
        atomic_write_text(self._path, text, mode=0o600)


# ── Rule helpers ────────────────────────────────────────────────


def render_command(spec: InstallSpec) -> str:
    words = [shlex.quote(str(spec.target)), *(shlex.quote(a) for a in spec.args)]
    env = [f"{k}={shlex.quote(v)}" for k, v in sorted(spec.environment.items())]
    command = " ".join(env + words)
    if spec.working_dir:
        command = f"cd {shlex.quote(str(spec.working_dir))} && {command}"
    return command


def parse_rule_exe(rule: str) -> str | None:
    """Executable path of a cron rule line, or None if it has none."""
    rule = rule.strip()
    if not rule or rule.startswith("#") or _ASSIGNMENT_RE.match(rule):
        return None

    if rule.startswith("@"):
        parts = rule.split(None, 1)
        if len(parts) < 2:
            return None
        command = parts[1]
    else:
        parts = rule.split(None, 5)
        if len(parts) < 6:
            return None
        command = parts[5]

    try:
        words = shlex.split(command)
    except ValueError:
        return None

    if len(words) >= 3 and words[0] == "cd" and words[2] == "&&":
        words = words[3:]
    if words and words[0] == "env":
        words = words[1:]
    while words and _ASSIGNMENT_RE.match(words[0]):
        words = words[1:]
    return words[0] if words else None


def _locate_entry(lines: list[str], name: str) -> int | None:
    """Index of our marker line for ``name``."""
    for i, line in enumerate(lines):
        if marker_name(line) == name:
            return i
    return None


def _ensure_trailing_newline(lines: list[str]) -> None:
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"


# ── Backend ─────────────────────────────────────────────────────


class CronBackend(ServiceBackend):
    """Cron rules in one crontab."""

    def __init__(self, store: CrontabStore | None = None):
        self._store = store or CommandCrontab()

    @property
    def name(self) -> str:
        return "cron"

    @property
    def store(self) -> CrontabStore:
        return self._store

    def is_available(self) -> bool:
        try:
            return self._store.is_available()
        except OSError:
            return False

    def describe(self, spec: InstallSpec) -> ServiceDescriptor:
        rule = f"{cron_expression(spec.schedule)} {render_command(spec)}"
        return ServiceDescriptor(
            backend=self.name,
            name=spec.name,
            exe_path=str(spec.target),
            primary=rule,
            artifacts={"crontab": f"{marker_line(spec.name, spec.created_dirs)}\n{rule}\n"},
        )

    def _lines(self) -> list[str]:
        return self._store.read().splitlines(keepends=True)

    def _write(self, lines: list[str]) -> None:
        self._store.write("".join(lines))

    # ── Queries ─────────────────────────────────────────────────

    def find_existing(self, name: str) -> ServiceHandle | None:
        lines = self._lines()
        idx = _locate_entry(lines, name)
        if idx is None:
            return None

        marker = lines[idx].rstrip("\n")
        rule_line = lines[idx + 1].rstrip("\n") if idx + 1 < len(lines) else ""
        enabled = not rule_line.startswith(DISABLED_PREFIX)
        rule = rule_line.removeprefix(DISABLED_PREFIX)
        exe = parse_rule_exe(rule)
        descriptor = ServiceDescriptor(
            backend=self.name,
            name=name,
            exe_path=exe or "",
            primary=rule,
            artifacts={"crontab": f"{marker}\n{rule_line}\n"},
        )
        return ServiceHandle(
            backend=self.name,
            name=name,
            unit=rule,
            exe_path=exe,
            created_by_us=True,
            enabled=enabled,
            descriptor=descriptor,
        )

    def find_by_exe(self, path: Path) -> list[ServiceHandle]:
        wanted = os.path.realpath(path)
        handles = []
        lines = self._lines()
        for i, raw in enumerate(lines):
            line = raw.rstrip("\n")
            if marker_name(line) is not None:
                continue
            owner = marker_name(lines[i - 1]) if i > 0 else None
            enabled = not line.startswith(DISABLED_PREFIX)
            rule = line.removeprefix(DISABLED_PREFIX)
            exe = parse_rule_exe(rule)
            if not exe or os.path.realpath(exe) != wanted:
                continue
            if owner is not None:
                handle = self.find_existing(owner)
                if handle is not None:
                    handles.append(handle)
                continue
            handles.append(
                ServiceHandle(
                    backend=self.name,
                    name=Path(exe).name,
                    unit=rule,
                    exe_path=exe,
                    created_by_us=False,
                    enabled=enabled,
                )
            )
        return handles

    # ── Mutations ───────────────────────────────────────────────

    def register(self, descriptor: ServiceDescriptor) -> ServiceHandle:
        lines = self._lines()
        idx = _locate_entry(lines, descriptor.name)
        if idx is not None:
            del lines[idx : idx + 2]
        _ensure_trailing_newline(lines)
        lines.extend(descriptor.artifacts["crontab"].splitlines(keepends=True))
        self._write(lines)
        logger.debug("Registered cron entry for %s", descriptor.name)
        return self.handle_for(descriptor)

    def unregister(self, descriptor: ServiceDescriptor) -> None:
        lines = self._lines()
        idx = _locate_entry(lines, descriptor.name)
        if idx is None:
            logger.debug("No cron entry for %s to remove", descriptor.name)
            return
        del lines[idx : idx + 2]
        self._write(lines)

    def enable(self, handle: ServiceHandle) -> None:
        lines = self._lines()
        if any(line.rstrip("\n") == handle.unit for line in lines):
            return
        disabled = f"{DISABLED_PREFIX}{handle.unit}"
        for i, line in enumerate(lines):
            if line.rstrip("\n") == disabled:
                lines[i] = handle.unit + ("\n" if line.endswith("\n") else "")
                self._write(lines)
                return
        raise BackendError(f"cron rule not found: {handle.unit}")

    def disable(self, handle: ServiceHandle) -> None:
        lines = self._lines()
        for i, line in enumerate(lines):
            if line.rstrip("\n") == handle.unit:
                lines[i] = f"{DISABLED_PREFIX}{line}"
                self._write(lines)
                return
        if any(line.rstrip("\n") == f"{DISABLED_PREFIX}{handle.unit}" for line in lines):
            return
        raise BackendError(f"cron rule not found: {handle.unit}")

    def start(self, handle: ServiceHandle) -> None:
        logger.debug("cron has no start; %s runs on its schedule", handle.name)

    def stop(self, handle: ServiceHandle) -> None:
        logger.debug("cron has no stop; %s", handle.name)

    def restart(self, handle: ServiceHandle) -> None:
        logger.debug("cron has no restart; %s runs on its schedule", handle.name)
