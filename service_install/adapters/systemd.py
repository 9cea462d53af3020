"""
Systemd backend: unit files plus calls to the systemd manager.

Unit and timer files are written atomically into the unit directory of
the chosen scope. Lifecycle calls go through ``SystemdManager``, which
talks to the manager with ``systemctl`` and blocks until it answers.
Every unit-file change is followed by a daemon-reload before anything
is enabled or started.

Layout of a rendered service:

    # managed-by: service-install name=cli
    # Installed by service-install. Changes are overwritten on the next install.

    [Unit]
    Description=cli
    After=network.target

    [Service]
    Type=simple
    ExecStart=/usr/local/bin/cli --serve

    [Install]
    WantedBy=multi-user.target
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from service_install.adapters.base import ServiceBackend, has_marker, marker_line
from service_install.adapters.shell.runner import run_command
from service_install.core.errors import BackendError
from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.spec import InstallMode, InstallSpec, OnBoot
from service_install.core.persistence.atomic import atomic_write_text
from service_install.core.schedule import systemd_timer_lines

logger = logging.getLogger(__name__)

SYSTEM_UNIT_DIR = Path("/etc/systemd/system")
USER_UNIT_DIR = Path(".config/systemd/user")    # relative to $HOME

# Present only when systemd is PID 1
_SYSTEMD_RUNTIME_DIR = Path("/run/systemd/system")

_REACHABLE_STATES = {"initializing", "starting", "running", "degraded", "maintenance", "stopping"}

Runner = Callable[..., dict[str, Any]]


def user_unit_dir(home: Path | None = None) -> Path:
    return (home or Path.home()) / USER_UNIT_DIR


# ── Manager ─────────────────────────────────────────────────────


class SystemdManager:
    """Lifecycle calls against one systemd manager (system or user).

    No timeout wraps these calls. Callers that need a deadline must
    impose one from outside.
    """

    def __init__(self, user: bool = False, runner: Runner = run_command):
        self._user = user
        self._runner = runner

    @property
    def user(self) -> bool:
        return self._user

    def _call(self, *args: str, check: bool = True) -> dict[str, Any]:
        cmd = ["systemctl"]
        if self._user:
            cmd.append("--user")
        cmd.extend(args)
        result = self._runner(cmd)
        if check and not result["ok"]:
            detail = (result.get("stderr") or result.get("error") or "").strip()
            raise BackendError(f"systemctl {' '.join(args)} failed: {detail}")
        return result

    def is_reachable(self) -> bool:
        result = self._call("is-system-running", check=False)
        return result.get("stdout", "").strip() in _REACHABLE_STATES

    def daemon_reload(self) -> None:
        self._call("daemon-reload")

    def enable(self, unit: str) -> None:
        self._call("enable", unit)

    def disable(self, unit: str) -> None:
        self._call("disable", unit)

    def start(self, unit: str) -> None:
        self._call("start", unit)

    def stop(self, unit: str) -> None:
        self._call("stop", unit)

    def restart(self, unit: str) -> None:
        self._call("restart", unit)

    def is_enabled(self, unit: str) -> bool:
        return self._call("is-enabled", unit, check=False)["ok"]

    def is_active(self, unit: str) -> bool:
        return self._call("is-active", unit, check=False)["ok"]


# ── Unit rendering ──────────────────────────────────────────────


def quote_word(word: str) -> str:
    """Quote one command-line word for ExecStart/Environment."""
    escaped = word.replace("%", "%%").replace("$", "$$")
    if escaped and not any(c in escaped for c in " \t\n\"'\\;"):
        return escaped
    escaped = escaped.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def split_command(line: str) -> list[str]:
    """Inverse of ``quote_word`` over a whole ExecStart value."""
    words = shlex.split(line)
    return [w.replace("%%", "%").replace("$$", "$") for w in words]


def _install_target(mode: InstallMode) -> str:
    return "multi-user.target" if mode == InstallMode.SYSTEM else "default.target"


def render_service(spec: InstallSpec) -> str:
    description = spec.description or spec.name
    oneshot = spec.schedule is not None and not isinstance(spec.schedule, OnBoot)

    lines = [
        marker_line(spec.name, spec.created_dirs),
        "# Installed by service-install. Changes are overwritten on the next install.",
        "",
        "[Unit]",
        f"Description={description}",
        "After=network.target",
        "",
        "[Service]",
        f"Type={'oneshot' if oneshot else 'simple'}",
    ]
    if spec.working_dir:
        lines.append(f"WorkingDirectory={quote_word(str(spec.working_dir))}")
    if spec.run_as and spec.mode == InstallMode.SYSTEM:
        lines.append(f"User={spec.run_as}")
    for key, value in sorted(spec.environment.items()):
        lines.append(f"Environment={quote_word(f'{key}={value}')}")
    command = " ".join(quote_word(w) for w in [str(spec.target), *spec.args])
    lines.append(f"ExecStart={command}")

    if isinstance(spec.schedule, OnBoot):
        lines += ["", "[Install]", f"WantedBy={_install_target(spec.mode)}"]

    return "\n".join(lines) + "\n"


def render_timer(spec: InstallSpec) -> str:
    assert spec.schedule is not None and not isinstance(spec.schedule, OnBoot)
    lines = [
        marker_line(spec.name, spec.created_dirs),
        "# Installed by service-install. Changes are overwritten on the next install.",
        "",
        "[Unit]",
        f"Description=Timer for {spec.description or spec.name} ({spec.schedule})",
        "",
        "[Timer]",
        *systemd_timer_lines(spec.schedule),
        "",
        "[Install]",
        "WantedBy=timers.target",
    ]
    return "\n".join(lines) + "\n"


def parse_exec_start(unit_text: str) -> str | None:
    """Executable path from the first ExecStart= line of a unit."""
    for raw in unit_text.splitlines():
        line = raw.strip()
        if not line.startswith("ExecStart="):
            continue
        value = line[len("ExecStart="):].strip()
        # Strip systemd exec prefixes (-, @, +, !, :)
        value = value.lstrip("-@+!:")
        try:
            words = split_command(value)
        except ValueError:
            logger.debug("Unparseable ExecStart line: %s", line)
            return None
        return words[0] if words else None
    return None


# ── Backend ─────────────────────────────────────────────────────


class SystemdBackend(ServiceBackend):
    """Systemd services and timers for one scope."""

    _SUFFIXES = (".service", ".timer")

    def __init__(
        self,
        mode: InstallMode = InstallMode.SYSTEM,
        unit_dir: Path | None = None,
        manager: SystemdManager | None = None,
        home: Path | None = None,
    ):
        self._mode = mode
        if unit_dir is None:
            unit_dir = SYSTEM_UNIT_DIR if mode == InstallMode.SYSTEM else user_unit_dir(home)
        self._unit_dir = unit_dir
        self._manager = manager or SystemdManager(user=mode == InstallMode.USER)

    @property
    def name(self) -> str:
        return "systemd"

    @property
    def unit_dir(self) -> Path:
        return self._unit_dir

    @property
    def manager(self) -> SystemdManager:
        return self._manager

    def is_available(self) -> bool:
        try:
            if not _SYSTEMD_RUNTIME_DIR.is_dir() or shutil.which("systemctl") is None:
                return False
            if self._mode == InstallMode.USER:
                return self._manager.is_reachable()
            return True
        except (OSError, BackendError):
            return False

    def describe(self, spec: InstallSpec) -> ServiceDescriptor:
        artifacts = {f"{spec.name}.service": render_service(spec)}
        primary = f"{spec.name}.service"
        if spec.schedule is not None and not isinstance(spec.schedule, OnBoot):
            artifacts[f"{spec.name}.timer"] = render_timer(spec)
            primary = f"{spec.name}.timer"
        return ServiceDescriptor(
            backend=self.name,
            name=spec.name,
            exe_path=str(spec.target),
            primary=primary,
            artifacts=artifacts,
            enableable=spec.schedule is not None,
        )

    # ── Queries ─────────────────────────────────────────────────

    def find_existing(self, name: str) -> ServiceHandle | None:
        artifacts: dict[str, str] = {}
        for suffix in self._SUFFIXES:
            path = self._unit_dir / f"{name}{suffix}"
            if path.is_file():
                artifacts[path.name] = path.read_text(encoding="utf-8")
        service_text = artifacts.get(f"{name}.service")
        if service_text is None:
            return None

        primary = f"{name}.timer" if f"{name}.timer" in artifacts else f"{name}.service"
        exe_path = parse_exec_start(service_text)
        descriptor = ServiceDescriptor(
            backend=self.name,
            name=name,
            exe_path=exe_path or "",
            primary=primary,
            artifacts=artifacts,
            enableable="[Install]" in artifacts[primary],
        )
        return ServiceHandle(
            backend=self.name,
            name=name,
            unit=primary,
            exe_path=exe_path,
            created_by_us=has_marker(service_text, name),
            enabled=self._manager.is_enabled(primary),
            running=self._manager.is_active(primary),
            descriptor=descriptor,
        )

    def find_by_exe(self, path: Path) -> list[ServiceHandle]:
        if not self._unit_dir.is_dir():
            return []
        wanted = os.path.realpath(path)
        handles = []
        for unit in sorted(self._unit_dir.glob("*.service")):
            try:
                text = unit.read_text(encoding="utf-8")
            except OSError as e:
                logger.debug("Skipping unreadable unit %s: %s", unit, e)
                continue
            exe = parse_exec_start(text)
            if exe and os.path.realpath(exe) == wanted:
                handle = self.find_existing(unit.stem)
                if handle is not None:
                    handles.append(handle)
        return handles

    # ── Mutations ───────────────────────────────────────────────

    def register(self, descriptor: ServiceDescriptor) -> ServiceHandle:
        for suffix in self._SUFFIXES:
            stale = self._unit_dir / f"{descriptor.name}{suffix}"
            if stale.name not in descriptor.artifacts and stale.exists():
                stale.unlink()
                logger.debug("Removed stale unit %s", stale)
        for filename, content in descriptor.artifacts.items():
            atomic_write_text(self._unit_dir / filename, content, mode=0o644)
        self._manager.daemon_reload()
        return self.handle_for(descriptor)

    def unregister(self, descriptor: ServiceDescriptor) -> None:
        for filename in descriptor.artifacts:
            (self._unit_dir / filename).unlink(missing_ok=True)
        self._manager.daemon_reload()

    def enable(self, handle: ServiceHandle) -> None:
        self._manager.enable(handle.unit)

    def disable(self, handle: ServiceHandle) -> None:
        self._manager.disable(handle.unit)

    def start(self, handle: ServiceHandle) -> None:
        self._manager.start(handle.unit)

    def stop(self, handle: ServiceHandle) -> None:
        self._manager.stop(handle.unit)

    def restart(self, handle: ServiceHandle) -> None:
        self._manager.restart(handle.unit)
