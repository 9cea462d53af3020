"""
Step application: the only code that performs a step's side effect.

Each step kind maps to one handler. Handlers raise on failure
(``OSError`` from the filesystem, ``BackendError`` from a backend,
psutil errors from process control); the executor decides whether that
means rollback or just a failed outcome.

File replacement never writes into the existing inode. New content goes
to a temp file that is renamed over the target, so a running program
keeps its own copy.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import uuid
from collections.abc import Callable
from typing import Any

from service_install.adapters.base import ServiceBackend
from service_install.adapters.processes import stop_process
from service_install.core.models.step import (
    BackupFile,
    CreateDirectory,
    DeleteFile,
    DisableService,
    DiscardBackup,
    EnableService,
    Noop,
    RegisterService,
    RemoveDirectory,
    RemoveFile,
    RestoreBackup,
    RestoreFile,
    SetMode,
    SetOwner,
    StartService,
    Step,
    StopProcess,
    StopService,
    UnregisterService,
    WriteExecutable,
)

logger = logging.getLogger(__name__)


# ── Filesystem ──────────────────────────────────────────────────


def _noop(step: Noop, backend: ServiceBackend) -> None:
    logger.debug("Nothing to do: %s", step.reason)


def _create_directory(step: CreateDirectory, backend: ServiceBackend) -> None:
    step.path.mkdir(mode=0o755, exist_ok=True)


def _remove_directory(step: RemoveDirectory, backend: ServiceBackend) -> None:
    try:
        step.path.rmdir()
    except FileNotFoundError:
        pass
    except OSError as e:
        if e.errno != errno.ENOTEMPTY:
            raise
        logger.warning("Leaving %s in place: not empty", step.path)


def _backup_file(step: BackupFile, backend: ServiceBackend) -> None:
    # A hard link keeps the original inode (content, mode, owner) intact
    # after the target name is replaced.
    try:
        os.link(step.path, step.backup_path)
    except OSError as e:
        logger.debug("Hard link backup failed (%s), copying instead", e)
        shutil.copy2(step.path, step.backup_path)
        st = os.stat(step.path)
        try:
            os.chown(step.backup_path, st.st_uid, st.st_gid)
        except PermissionError:
            logger.debug("Backup of %s keeps our ownership", step.path)


def _discard_backup(step: DiscardBackup, backend: ServiceBackend) -> None:
    step.backup_path.unlink(missing_ok=True)


def _write_executable(step: WriteExecutable, backend: ServiceBackend) -> None:
    tmp = step.target.with_name(f".{step.target.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        shutil.copy2(step.source, tmp)
        os.replace(tmp, step.target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _restore_backup(step: RestoreBackup, backend: ServiceBackend) -> None:
    os.replace(step.backup_path, step.target)


def _delete_file(step: DeleteFile, backend: ServiceBackend) -> None:
    step.path.unlink(missing_ok=True)


def _remove_file(step: RemoveFile, backend: ServiceBackend) -> None:
    os.replace(step.path, step.backup_path)


def _restore_file(step: RestoreFile, backend: ServiceBackend) -> None:
    os.replace(step.backup_path, step.path)


def _set_mode(step: SetMode, backend: ServiceBackend) -> None:
    os.chmod(step.path, step.mode)


def _set_owner(step: SetOwner, backend: ServiceBackend) -> None:
    os.chown(step.path, step.uid, step.gid)


def _stop_process(step: StopProcess, backend: ServiceBackend) -> None:
    stop_process(step.pid)


# ── Service lifecycle ───────────────────────────────────────────


def _register(step: RegisterService, backend: ServiceBackend) -> None:
    backend.register(step.descriptor)


def _unregister(step: UnregisterService, backend: ServiceBackend) -> None:
    backend.unregister(step.descriptor)


def _enable(step: EnableService, backend: ServiceBackend) -> None:
    backend.enable(step.handle)


def _disable(step: DisableService, backend: ServiceBackend) -> None:
    backend.disable(step.handle)


def _start(step: StartService, backend: ServiceBackend) -> None:
    if step.restart:
        backend.restart(step.handle)
    else:
        backend.start(step.handle)


def _stop(step: StopService, backend: ServiceBackend) -> None:
    backend.stop(step.handle)


_HANDLERS: dict[str, Callable[[Any, ServiceBackend], None]] = {
    "noop": _noop,
    "create_directory": _create_directory,
    "remove_directory": _remove_directory,
    "backup_file": _backup_file,
    "discard_backup": _discard_backup,
    "write_executable": _write_executable,
    "restore_backup": _restore_backup,
    "delete_file": _delete_file,
    "remove_file": _remove_file,
    "restore_file": _restore_file,
    "set_mode": _set_mode,
    "set_owner": _set_owner,
    "stop_process": _stop_process,
    "register_service": _register,
    "unregister_service": _unregister,
    "enable_service": _enable,
    "disable_service": _disable,
    "start_service": _start,
    "stop_service": _stop,
}


def apply_step(step: Step, backend: ServiceBackend) -> None:
    """Perform ``step`` against the filesystem or ``backend``."""
    handler = _HANDLERS.get(step.kind)
    if handler is None:
        raise ValueError(f"No handler for step kind {step.kind!r}")
    handler(step, backend)
