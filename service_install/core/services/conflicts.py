"""
Conflict scanning: classify what occupies the install slot.

``scan_conflicts`` only reads the filesystem, the process table and
the backend's registrations. ``resolve_conflict`` applies the overwrite
policy to the classification and either names a resolution or raises.
No mutating step may be planned before a resolution exists.

Precedence when several things are true at once:
    foreign registration > our registration > running process > file identity
"""

from __future__ import annotations

import filecmp
import logging
import os
import stat
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path

from service_install.adapters.base import ServiceBackend
from service_install.adapters.processes import processes_executing
from service_install.core.errors import LocationOccupied, ProcessRunning, ServiceConflict
from service_install.core.models.conflict import (
    Conflict,
    DifferentFile,
    FileState,
    IdenticalFile,
    ManagedService,
    NoConflict,
    RunningProcess,
)
from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.spec import InstallSpec
from service_install.core.services.validator import is_running_executable

logger = logging.getLogger(__name__)

ProcessQuery = Callable[[Path], list[int]]


class Resolution(StrEnum):
    INSTALL = "install"              # empty slot
    UP_TO_DATE = "up_to_date"        # identical file, registration current
    KEEP_FILE = "keep_file"          # identical file, registration still needed
    REPLACE_FILE = "replace_file"    # back up the different file, then write
    STOP_PROCESS = "stop_process"    # stop the process running the target, then write
    TAKE_OVER = "take_over"          # stop and disable the foreign service, then install
    REINSTALL = "reinstall"          # tear down our own registration, then install


def file_state(target: Path, source: Path) -> FileState | None:
    """Stat the target and compare it with the source. None if absent.

    Raises:
        LocationOccupied: Something other than a regular file is there.
    """
    try:
        st = os.stat(target)
    except FileNotFoundError:
        return None
    if not stat.S_ISREG(st.st_mode):
        raise LocationOccupied(str(target))

    identical = st.st_size == os.stat(source).st_size and filecmp.cmp(
        target, source, shallow=False
    )
    return FileState(
        path=target,
        mode=stat.S_IMODE(st.st_mode),
        uid=st.st_uid,
        gid=st.st_gid,
        identical=identical,
    )


def _foreign_registrations(
    spec: InstallSpec,
    backend: ServiceBackend,
    existing: ServiceHandle | None,
) -> list[ServiceHandle]:
    """Registrations in the way other than our own one called ``spec.name``.

    Another service we manage that runs the same path counts: installing
    here would change what it executes.
    """
    foreign: list[ServiceHandle] = []
    if existing is not None and not existing.created_by_us:
        foreign.append(existing)
    for handle in backend.find_by_exe(spec.target):
        if handle.created_by_us and handle.name == spec.name:
            continue
        if all(h.unit != handle.unit for h in foreign):
            foreign.append(handle)
    return foreign


def scan_conflicts(
    spec: InstallSpec,
    backend: ServiceBackend,
    descriptor: ServiceDescriptor,
    *,
    list_processes: ProcessQuery = processes_executing,
    self_exe: Path | None = None,
) -> Conflict:
    """Classify the install slot for ``spec``. Exactly one variant results.

    Args:
        spec: The validated spec.
        backend: The backend chosen at validation.
        descriptor: The registration we intend to create.
        list_processes: Returns PIDs executing a path.
        self_exe: Override for the currently running executable.
    """
    file = file_state(spec.target, spec.source)
    running_self = file is not None and is_running_executable(spec.target, self_exe)
    if running_self:
        # the running program is never replaced or stopped
        if not file.identical:
            logger.warning("%s is the running executable; leaving it in place", spec.target)
            file = file.model_copy(update={"identical": True})
    existing = backend.find_existing(spec.name)

    foreign = _foreign_registrations(spec, backend, existing)
    if foreign:
        logger.debug("Foreign registration(s) at %s: %s", spec.target, [h.unit for h in foreign])
        return ManagedService(
            handle=foreign[0],
            created_by_us=False,
            file=file,
            others=foreign[1:],
        )

    if existing is not None:
        current = existing.matches(descriptor) and (
            existing.enabled or not descriptor.enableable
        )
        if file is not None and file.identical and current:
            return IdenticalFile(file=file, handle=existing)
        return ManagedService(handle=existing, created_by_us=True, file=file)

    if file is None:
        return NoConflict()

    if not running_self:
        pids = [pid for pid in list_processes(spec.target) if pid != os.getpid()]
        if pids:
            return RunningProcess(pid=pids[0], file=file)

    if file.identical:
        return IdenticalFile(file=file)
    return DifferentFile(file=file)


def resolve_conflict(conflict: Conflict, spec: InstallSpec) -> Resolution:
    """Apply the overwrite policy.

    Raises:
        LocationOccupied: A different file is in the way.
        ProcessRunning: A process runs the target and stopping it was not allowed.
        ServiceConflict: A registration we did not create is in the way.
    """
    if isinstance(conflict, NoConflict):
        return Resolution.INSTALL

    if isinstance(conflict, IdenticalFile):
        return Resolution.UP_TO_DATE if conflict.handle is not None else Resolution.KEEP_FILE

    if isinstance(conflict, DifferentFile):
        if not spec.overwrite:
            raise LocationOccupied(str(conflict.file.path))
        return Resolution.REPLACE_FILE

    if isinstance(conflict, RunningProcess):
        if not (spec.overwrite or spec.stop_running):
            raise ProcessRunning(conflict.pid, str(conflict.file.path))
        return Resolution.STOP_PROCESS

    if conflict.created_by_us:
        return Resolution.REINSTALL
    if not spec.overwrite:
        raise ServiceConflict(conflict.handle.unit, conflict.handle.backend)
    return Resolution.TAKE_OVER
