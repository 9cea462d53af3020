"""
Plan building: expand a validated spec into ordered, reversible steps.

Order of an install plan:
    1. clear the slot (stop/disable whatever occupies it)
    2. files (directory, backup, write, mode, owner)
    3. registration
    4. enable, start (externally visible, always last)

The planner tracks service state through the plan, so each step
captures the state it will actually see and its inverse can be
computed up front. A plan is built for one attempt and never reused.
"""

from __future__ import annotations

import logging
import os
import stat
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from service_install.adapters.base import ServiceBackend, recorded_dirs
from service_install.adapters.processes import processes_executing
from service_install.core.errors import NoInstallFound, ServiceConflict
from service_install.core.models.conflict import Conflict, ManagedService, RunningProcess
from service_install.core.models.service import ServiceHandle
from service_install.core.models.spec import InstallSpec
from service_install.core.models.step import (
    BackupFile,
    CreateDirectory,
    DisableService,
    EnableService,
    RegisterService,
    RemoveDirectory,
    RemoveFile,
    SetMode,
    SetOwner,
    StartService,
    Step,
    StopProcess,
    StopService,
    Tense,
    UnregisterService,
    WriteExecutable,
)
from service_install.core.services.conflicts import (
    ProcessQuery,
    Resolution,
    resolve_conflict,
    scan_conflicts,
)
from service_install.core.services.validator import ValidatedSpec

logger = logging.getLogger(__name__)


@dataclass
class Plan:
    """Ordered steps for one install or removal attempt."""

    plan_id: str
    operation: str                      # install | remove
    name: str
    backend: ServiceBackend
    spec: InstallSpec | None = None
    conflict: Conflict | None = None
    resolution: Resolution | None = None
    steps: list[Step] = field(default_factory=list)
    executed: bool = False

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def backups(self) -> list[Path]:
        """Backup files this plan creates."""
        return [
            s.backup_path for s in self.steps if isinstance(s, (BackupFile, RemoveFile))
        ]

    def describe(self, tense: Tense = Tense.FUTURE) -> list[str]:
        return [step.describe(tense) for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "operation": self.operation,
            "name": self.name,
            "backend": self.backend.name,
            "target": str(self.spec.target) if self.spec else None,
            "conflict": self.conflict.kind if self.conflict else None,
            "resolution": self.resolution.value if self.resolution else None,
            "steps": [
                {"id": s.id, "kind": s.kind, "description": s.describe()}
                for s in self.steps
            ],
        }


def generate_plan_id() -> str:
    """Generate a unique plan ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"plan-{now}-{short}"


def backup_path(path: Path, plan_id: str) -> Path:
    return path.with_name(f"{path.name}.bak.{plan_id}")


def desired_mode(source_mode: int, read_only: bool) -> int:
    """Source permissions, readable and executable by everyone.

    Read-only clears the group and other write bits.
    """
    mode = (source_mode & 0o777) | 0o555
    if read_only:
        mode &= ~0o022
    return mode


def desired_owner(spec: InstallSpec) -> tuple[int, int]:
    if spec.is_system:
        return 0, 0
    return os.geteuid(), os.getegid()


class _StepList:
    """Collects steps and numbers them in plan order."""

    def __init__(self) -> None:
        self.steps: list[Step] = []

    def add(self, step: Step) -> None:
        number = len(self.steps) + 1
        self.steps.append(step.model_copy(update={"id": f"{number}:{step.kind}"}))


def _clear_slot(
    steps: _StepList,
    conflict: Conflict,
    resolution: Resolution,
    spec: InstallSpec,
) -> None:
    if resolution == Resolution.STOP_PROCESS:
        assert isinstance(conflict, RunningProcess)
        steps.add(StopProcess(pid=conflict.pid, exe=spec.target))
        return

    if resolution not in (Resolution.TAKE_OVER, Resolution.REINSTALL):
        return
    assert isinstance(conflict, ManagedService)

    for handle in [conflict.handle, *conflict.others]:
        if handle.running:
            steps.add(StopService(handle=handle, was_running=True))
        if handle.enabled:
            steps.add(DisableService(handle=handle, was_enabled=True))

    if resolution == Resolution.REINSTALL and conflict.handle.descriptor is not None:
        steps.add(UnregisterService(descriptor=conflict.handle.descriptor))


def _inherit_created_dirs(spec: InstallSpec, backend: ServiceBackend) -> InstallSpec:
    """Keep the directories an earlier install of ``spec.name`` recorded.

    Those directories exist now, so validation no longer reports them, but
    removal still owns them.
    """
    existing = backend.find_existing(spec.name)
    if existing is None or not existing.created_by_us:
        return spec
    recorded = recorded_dirs(existing.descriptor)
    if not recorded:
        return spec
    merged = recorded + [d for d in spec.created_dirs if d not in recorded]
    merged.sort(key=lambda d: len(d.parts))
    return spec.model_copy(update={"created_dirs": merged})


def _place_file(
    steps: _StepList,
    conflict: Conflict,
    spec: InstallSpec,
    plan_id: str,
) -> None:
    target = spec.target
    existing = conflict.file

    for directory in spec.created_dirs:
        if not directory.exists():
            steps.add(CreateDirectory(path=directory))

    write = existing is None or not existing.identical

    source_mode = stat.S_IMODE(os.stat(spec.source).st_mode)
    if write:
        backup = None
        if existing is not None:
            backup = backup_path(target, plan_id)
            steps.add(BackupFile(path=target, backup_path=backup))
        steps.add(WriteExecutable(source=spec.source, target=target, backup_path=backup))
        prior_mode = source_mode
        prior_owner = (os.geteuid(), os.getegid())
    else:
        assert existing is not None
        prior_mode = existing.mode
        prior_owner = (existing.uid, existing.gid)

    mode = desired_mode(source_mode, spec.read_only)
    if write or prior_mode != mode:
        steps.add(SetMode(path=target, mode=mode, prior_mode=prior_mode))

    uid, gid = desired_owner(spec)
    if write or prior_owner != (uid, gid):
        steps.add(
            SetOwner(
                path=target,
                uid=uid,
                gid=gid,
                prior_uid=prior_owner[0],
                prior_gid=prior_owner[1],
            )
        )


def build_install_plan(
    validated: ValidatedSpec,
    *,
    list_processes: ProcessQuery = processes_executing,
    self_exe: Path | None = None,
    plan_id: str | None = None,
) -> Plan:
    """Scan, resolve and plan an install.

    Raises:
        LocationError / ConflictError: The slot is occupied and policy
            forbids clearing it.
    """
    spec, backend = validated.spec, validated.backend
    plan_id = plan_id or generate_plan_id()

    spec = _inherit_created_dirs(spec, backend)
    descriptor = backend.describe(spec)
    conflict = scan_conflicts(
        spec, backend, descriptor, list_processes=list_processes, self_exe=self_exe
    )
    resolution = resolve_conflict(conflict, spec)
    logger.info("Conflict at %s: %s → %s", spec.target, conflict.kind, resolution.value)

    steps = _StepList()
    _clear_slot(steps, conflict, resolution, spec)
    _place_file(steps, conflict, spec, plan_id)

    if resolution != Resolution.UP_TO_DATE:
        previous = None
        if (
            isinstance(conflict, ManagedService)
            and not conflict.created_by_us
            and conflict.handle.name == spec.name
        ):
            previous = conflict.handle.descriptor
        steps.add(RegisterService(descriptor=descriptor, previous=previous))

        handle = backend.handle_for(descriptor)
        if descriptor.enableable:
            steps.add(EnableService(handle=handle, was_enabled=False))
        if descriptor.startable:
            restart = (
                resolution == Resolution.REINSTALL
                and isinstance(conflict, ManagedService)
                and conflict.handle.running
            )
            steps.add(StartService(handle=handle, restart=restart, was_running=False))

    plan = Plan(
        plan_id=plan_id,
        operation="install",
        name=spec.name,
        backend=backend,
        spec=spec,
        conflict=conflict,
        resolution=resolution,
        steps=steps.steps,
    )
    logger.debug("Plan %s: %s", plan_id, plan.describe())
    return plan


def _find_installation(name: str, backends: list[ServiceBackend]) -> tuple[ServiceBackend, ServiceHandle]:
    for backend in backends:
        handle = backend.find_existing(name)
        if handle is None:
            continue
        if not handle.created_by_us:
            raise ServiceConflict(handle.unit, backend.name)
        return backend, handle
    raise NoInstallFound(name)


def build_remove_plan(
    name: str,
    backends: list[ServiceBackend],
    *,
    plan_id: str | None = None,
) -> Plan:
    """Plan tearing down our registration called ``name`` and its executable.

    Raises:
        NoInstallFound: No backend has a registration by that name.
        ServiceConflict: The registration by that name is not ours.
    """
    plan_id = plan_id or generate_plan_id()
    backend, handle = _find_installation(name, backends)

    steps = _StepList()
    if handle.running:
        steps.add(StopService(handle=handle, was_running=True))
    if handle.enabled:
        steps.add(DisableService(handle=handle, was_enabled=True))
    if handle.descriptor is not None:
        steps.add(UnregisterService(descriptor=handle.descriptor))

    created = recorded_dirs(handle.descriptor)
    if handle.exe_path and Path(handle.exe_path).is_file():
        exe = Path(handle.exe_path)
        # the backup must not sit inside a directory this plan removes
        backup_dir = created[0].parent if exe.parent in created else exe.parent
        steps.add(RemoveFile(path=exe, backup_path=backup_path(backup_dir / exe.name, plan_id)))
    else:
        logger.warning("Executable for %s not found at %s", name, handle.exe_path)

    # innermost first; non-empty directories are left alone
    for directory in reversed(created):
        steps.add(RemoveDirectory(path=directory))

    return Plan(
        plan_id=plan_id,
        operation="remove",
        name=name,
        backend=backend,
        steps=steps.steps,
    )
