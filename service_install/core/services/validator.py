"""
Spec validation: turn a raw install request into an ``InstallSpec``.

Validation resolves everything the plan will depend on:
    - the source executable ("current executable" included)
    - the install mode and whether we have the privileges for it
    - the install directory, chosen from a priority list when not given
    - the service backend, chosen once and kept for the plan's lifetime

Nothing is written. Failures raise immediately.
"""

from __future__ import annotations

import logging
import os
import pwd
import re
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from service_install.adapters.base import ServiceBackend
from service_install.adapters.registry import BackendRegistry, default_registry
from service_install.core.errors import (
    InvalidServiceName,
    MissingServiceName,
    NeedsElevation,
    NoSuitableLocation,
    SourceNotFile,
    UnknownUser,
)
from service_install.core.models.spec import InstallMode, InstallSpec, RawInstallSpec
from service_install.core.schedule import parse_schedule

logger = logging.getLogger(__name__)

SELF_SOURCE = "@self"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.@-]+$")

# Candidate install directories, in priority order
USER_CANDIDATES = (Path(".local/bin"), Path("bin"))     # relative to $HOME
SYSTEM_CANDIDATES = (Path("/usr/local/bin"), Path("/usr/bin"))

RegistryFactory = Callable[[InstallMode, str | None, Path | None], BackendRegistry]


@dataclass
class ValidatedSpec:
    """A validated spec plus the backend it was validated against."""

    spec: InstallSpec
    backend: ServiceBackend


def current_exe() -> Path:
    """Backing file of the running program."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()
    return Path(sys.argv[0]).resolve()


def is_running_executable(target: Path, self_exe: Path | None = None) -> bool:
    """Whether ``target`` is the backing file of the running program."""
    running = self_exe or current_exe()
    try:
        return os.path.samefile(target, running)
    except OSError:
        return os.path.realpath(target) == os.path.realpath(running)


def is_privileged() -> bool:
    return os.geteuid() == 0


def _current_user() -> str:
    return pwd.getpwuid(os.geteuid()).pw_name


def missing_dirs(directory: Path) -> list[Path]:
    """Levels of ``directory`` that do not exist yet, outermost first."""
    missing = []
    level = directory
    while not level.exists() and level != level.parent:
        missing.append(level)
        level = level.parent
    return list(reversed(missing))


def is_exec_capable(directory: Path) -> bool:
    """Writable by us and not on a ``noexec`` mount.

    A missing directory qualifies when its nearest existing ancestor
    does; the plan creates the levels in between.
    """
    missing = missing_dirs(directory)
    ancestor = missing[0].parent if missing else directory
    if not ancestor.is_dir():
        return False

    if not os.access(ancestor, os.W_OK | os.X_OK):
        return False
    try:
        if os.statvfs(ancestor).f_flag & os.ST_NOEXEC:
            return False
    except OSError:
        return False
    return True


def candidate_dirs(mode: InstallMode, home: Path | None = None) -> list[Path]:
    if mode == InstallMode.SYSTEM:
        return list(SYSTEM_CANDIDATES)
    base = home or Path.home()
    return [base / rel for rel in USER_CANDIDATES]


def resolve_install_dir(
    explicit: str | None,
    mode: InstallMode,
    home: Path | None = None,
    candidates: list[Path] | None = None,
) -> Path:
    """The directory the executable goes into.

    Raises:
        NoSuitableLocation: Nothing writable and executable-capable.
    """
    if explicit:
        directory = Path(explicit).expanduser().absolute()
        if not is_exec_capable(directory):
            raise NoSuitableLocation([str(directory)])
        return directory

    tried = candidates if candidates is not None else candidate_dirs(mode, home)
    for directory in tried:
        if is_exec_capable(directory):
            logger.debug("Install directory: %s", directory)
            return directory
        logger.debug("Install directory candidate rejected: %s", directory)
    raise NoSuitableLocation([str(d) for d in tried])


def _resolve_mode(raw: RawInstallSpec, privileged: bool) -> InstallMode:
    if raw.elevate and not privileged:
        raise NeedsElevation("a privileged install was requested")
    mode = raw.mode or (InstallMode.SYSTEM if privileged else InstallMode.USER)
    if mode == InstallMode.SYSTEM and not privileged:
        raise NeedsElevation("system installs write to system directories")
    return mode


def _resolve_run_as(raw: RawInstallSpec, privileged: bool) -> str | None:
    if not raw.run_as:
        return None
    try:
        pwd.getpwnam(raw.run_as)
    except KeyError as e:
        raise UnknownUser(raw.run_as) from e
    if not privileged and raw.run_as != _current_user():
        raise NeedsElevation(f"running as {raw.run_as!r} needs root")
    return raw.run_as


def validate_spec(
    raw: RawInstallSpec,
    *,
    registry: BackendRegistry | None = None,
    registry_factory: RegistryFactory = default_registry,
    privileged: bool | None = None,
    home: Path | None = None,
    candidates: list[Path] | None = None,
    self_exe: Path | None = None,
) -> ValidatedSpec:
    """Validate and resolve a raw install request.

    Args:
        raw: The unvalidated request.
        registry: Backends to choose from. Built for the resolved mode
            by ``registry_factory`` when not given.
        privileged: Override for "running as root".
        home: Home directory used for user installs.
        candidates: Override for the install directory priority list.
        self_exe: Override for the currently running executable.

    Raises:
        SpecError: Missing or invalid fields.
        NeedsElevation: The request needs root and we are not root.
        NoSuitableLocation: No usable install directory.
        BackendUnavailable: No reachable backend (or not the requested one).
    """
    if privileged is None:
        privileged = is_privileged()

    if not raw.name:
        raise MissingServiceName()
    if not _NAME_RE.match(raw.name):
        raise InvalidServiceName(raw.name)

    if raw.source in (None, "", SELF_SOURCE):
        source = self_exe or current_exe()
    else:
        source = Path(raw.source).expanduser().absolute()
    if not source.is_file():
        raise SourceNotFile(str(source))

    schedule = parse_schedule(raw.schedule) if raw.schedule else None
    mode = _resolve_mode(raw, privileged)
    run_as = _resolve_run_as(raw, privileged)

    install_dir = resolve_install_dir(raw.target, mode, home=home, candidates=candidates)
    target = install_dir / (raw.exe_name or source.name)

    if registry is None:
        registry = registry_factory(mode, run_as, home)
    backend = registry.select(raw.backend)

    spec = InstallSpec(
        name=raw.name,
        source=source,
        target=target,
        mode=mode,
        backend=backend.name,
        schedule=schedule,
        run_as=run_as,
        overwrite=raw.overwrite,
        read_only=raw.read_only,
        stop_running=raw.stop_running,
        elevate=raw.elevate,
        args=list(raw.args),
        environment=dict(raw.environment),
        working_dir=Path(raw.working_dir).expanduser() if raw.working_dir else None,
        description=raw.description or "",
        created_dirs=missing_dirs(install_dir),
    )

    # Renders the registration once, so backend-specific schedule errors surface here
    backend.describe(spec)

    logger.info(
        "Validated %s: %s → %s (%s, %s)",
        spec.name, spec.source, spec.target, spec.mode, backend.name,
    )
    return ValidatedSpec(spec=spec, backend=backend)


def validate_removal(
    raw: RawInstallSpec,
    *,
    registry: BackendRegistry | None = None,
    registry_factory: RegistryFactory = default_registry,
    privileged: bool | None = None,
    home: Path | None = None,
) -> tuple[str, InstallMode, list[ServiceBackend]]:
    """Resolve name, mode and the backends to search for a removal.

    Only the name is required. Without an explicit backend every
    reachable one is returned, in preference order.
    """
    if privileged is None:
        privileged = is_privileged()
    if not raw.name:
        raise MissingServiceName()
    if not _NAME_RE.match(raw.name):
        raise InvalidServiceName(raw.name)

    mode = _resolve_mode(raw, privileged)
    run_as = _resolve_run_as(raw, privileged)
    if registry is None:
        registry = registry_factory(mode, run_as, home)
    if raw.backend:
        return raw.name, mode, [registry.select(raw.backend)]
    backends = registry.available()
    if not backends:
        registry.select(None)
    return raw.name, mode, backends
