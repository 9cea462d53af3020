"""
Plan steps: tagged forward actions with deterministic inverses.

A step is plain data. It captures whatever prior state it needs (the
previous mode, owner, backup location, service state or registration)
so ``inverse()`` can be computed without looking at the system. The
engine applies steps; nothing here performs I/O.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from service_install.core.models.service import ServiceDescriptor, ServiceHandle


class Tense(StrEnum):
    PAST = "past"
    ACTIVE = "active"
    FUTURE = "future"


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""

    # (past, active, future)
    verbs: ClassVar[tuple[str, str, str]] = ("did", "doing", "will do")

    def subject(self) -> str:
        return ""

    def describe(self, tense: Tense = Tense.FUTURE) -> str:
        past, active, future = self.verbs
        verb = {Tense.PAST: past, Tense.ACTIVE: active, Tense.FUTURE: future}[tense]
        return f"{verb} {self.subject()}".strip()

    def inverse(self) -> Step:
        raise NotImplementedError(f"{type(self).__name__} has no inverse")

    def _undo(self, step: _StepBase) -> Step:
        return step.model_copy(update={"id": f"{self.id}~undo" if self.id else ""})


class Noop(_StepBase):
    kind: Literal["noop"] = "noop"
    reason: str = ""

    verbs: ClassVar[tuple[str, str, str]] = ("skipped", "skipping", "will skip")

    def subject(self) -> str:
        return self.reason

    def inverse(self) -> Step:
        return self._undo(Noop(reason=self.reason))


# ── Filesystem ──────────────────────────────────────────────────


class CreateDirectory(_StepBase):
    kind: Literal["create_directory"] = "create_directory"
    path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("created", "creating", "will create")

    def subject(self) -> str:
        return f"directory {self.path}"

    def inverse(self) -> Step:
        return self._undo(RemoveDirectory(path=self.path))


class RemoveDirectory(_StepBase):
    """Remove a directory if it is empty."""

    kind: Literal["remove_directory"] = "remove_directory"
    path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("removed", "removing", "will remove")

    def subject(self) -> str:
        return f"empty directory {self.path}"

    def inverse(self) -> Step:
        return self._undo(CreateDirectory(path=self.path))


class BackupFile(_StepBase):
    kind: Literal["backup_file"] = "backup_file"
    path: Path
    backup_path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("backed up", "backing up", "will back up")

    def subject(self) -> str:
        return f"{self.path} to {self.backup_path}"

    def inverse(self) -> Step:
        return self._undo(DiscardBackup(backup_path=self.backup_path))


class DiscardBackup(_StepBase):
    kind: Literal["discard_backup"] = "discard_backup"
    backup_path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("discarded", "discarding", "will discard")

    def subject(self) -> str:
        return f"backup {self.backup_path}"

    def inverse(self) -> Step:
        return self._undo(Noop(reason="a discarded backup cannot be recreated"))


class WriteExecutable(_StepBase):
    """Copy the source over the target through a same-directory temp file."""

    kind: Literal["write_executable"] = "write_executable"
    source: Path
    target: Path
    backup_path: Path | None = None   # where the file we replace was backed up

    verbs: ClassVar[tuple[str, str, str]] = ("copied", "copying", "will copy")

    def subject(self) -> str:
        return f"{self.source} to {self.target}"

    def inverse(self) -> Step:
        if self.backup_path is not None:
            return self._undo(RestoreBackup(target=self.target, backup_path=self.backup_path))
        return self._undo(DeleteFile(path=self.target))


class RestoreBackup(_StepBase):
    kind: Literal["restore_backup"] = "restore_backup"
    target: Path
    backup_path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("restored", "restoring", "will restore")

    def subject(self) -> str:
        return f"{self.target} from {self.backup_path}"

    def inverse(self) -> Step:
        return self._undo(Noop(reason=f"{self.target} was restored from backup"))


class DeleteFile(_StepBase):
    kind: Literal["delete_file"] = "delete_file"
    path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("deleted", "deleting", "will delete")

    def subject(self) -> str:
        return str(self.path)

    def inverse(self) -> Step:
        return self._undo(Noop(reason=f"{self.path} was deleted without a backup"))


class RemoveFile(_StepBase):
    """Move a file aside to a backup next to it. Reversible until discarded."""

    kind: Literal["remove_file"] = "remove_file"
    path: Path
    backup_path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("removed", "removing", "will remove")

    def subject(self) -> str:
        return str(self.path)

    def inverse(self) -> Step:
        return self._undo(RestoreFile(path=self.path, backup_path=self.backup_path))


class RestoreFile(_StepBase):
    kind: Literal["restore_file"] = "restore_file"
    path: Path
    backup_path: Path

    verbs: ClassVar[tuple[str, str, str]] = ("put back", "putting back", "will put back")

    def subject(self) -> str:
        return str(self.path)

    def inverse(self) -> Step:
        return self._undo(RemoveFile(path=self.path, backup_path=self.backup_path))


class SetMode(_StepBase):
    kind: Literal["set_mode"] = "set_mode"
    path: Path
    mode: int
    prior_mode: int

    verbs: ClassVar[tuple[str, str, str]] = ("set", "setting", "will set")

    def subject(self) -> str:
        return f"permissions of {self.path} to {self.mode:04o}"

    def inverse(self) -> Step:
        return self._undo(SetMode(path=self.path, mode=self.prior_mode, prior_mode=self.mode))


class SetOwner(_StepBase):
    kind: Literal["set_owner"] = "set_owner"
    path: Path
    uid: int
    gid: int
    prior_uid: int
    prior_gid: int

    verbs: ClassVar[tuple[str, str, str]] = ("set", "setting", "will set")

    def subject(self) -> str:
        return f"owner of {self.path} to {self.uid}:{self.gid}"

    def inverse(self) -> Step:
        return self._undo(
            SetOwner(
                path=self.path,
                uid=self.prior_uid,
                gid=self.prior_gid,
                prior_uid=self.uid,
                prior_gid=self.gid,
            )
        )


class StopProcess(_StepBase):
    kind: Literal["stop_process"] = "stop_process"
    pid: int
    exe: Path

    verbs: ClassVar[tuple[str, str, str]] = ("stopped", "stopping", "will stop")

    def subject(self) -> str:
        return f"process {self.pid} running {self.exe}"

    def inverse(self) -> Step:
        return self._undo(Noop(reason=f"process {self.pid} is not respawned"))


# ── Service lifecycle ───────────────────────────────────────────


class RegisterService(_StepBase):
    kind: Literal["register_service"] = "register_service"
    descriptor: ServiceDescriptor
    previous: ServiceDescriptor | None = None   # registration we overwrite

    verbs: ClassVar[tuple[str, str, str]] = ("registered", "registering", "will register")

    def subject(self) -> str:
        return f"{self.descriptor.primary} with {self.descriptor.backend}"

    def inverse(self) -> Step:
        if self.previous is not None:
            return self._undo(
                RegisterService(descriptor=self.previous, previous=self.descriptor)
            )
        return self._undo(UnregisterService(descriptor=self.descriptor))


class UnregisterService(_StepBase):
    kind: Literal["unregister_service"] = "unregister_service"
    descriptor: ServiceDescriptor

    verbs: ClassVar[tuple[str, str, str]] = ("unregistered", "unregistering", "will unregister")

    def subject(self) -> str:
        return f"{self.descriptor.primary} from {self.descriptor.backend}"

    def inverse(self) -> Step:
        return self._undo(RegisterService(descriptor=self.descriptor))


class EnableService(_StepBase):
    kind: Literal["enable_service"] = "enable_service"
    handle: ServiceHandle
    was_enabled: bool = False

    verbs: ClassVar[tuple[str, str, str]] = ("enabled", "enabling", "will enable")

    def subject(self) -> str:
        return self.handle.unit

    def inverse(self) -> Step:
        if self.was_enabled:
            return self._undo(Noop(reason=f"{self.handle.unit} was already enabled"))
        return self._undo(DisableService(handle=self.handle, was_enabled=True))


class DisableService(_StepBase):
    kind: Literal["disable_service"] = "disable_service"
    handle: ServiceHandle
    was_enabled: bool = True

    verbs: ClassVar[tuple[str, str, str]] = ("disabled", "disabling", "will disable")

    def subject(self) -> str:
        return self.handle.unit

    def inverse(self) -> Step:
        if not self.was_enabled:
            return self._undo(Noop(reason=f"{self.handle.unit} was already disabled"))
        return self._undo(EnableService(handle=self.handle, was_enabled=False))


class StartService(_StepBase):
    kind: Literal["start_service"] = "start_service"
    handle: ServiceHandle
    restart: bool = False
    was_running: bool = False

    verbs: ClassVar[tuple[str, str, str]] = ("started", "starting", "will start")

    def describe(self, tense: Tense = Tense.FUTURE) -> str:
        if not self.restart:
            return super().describe(tense)
        verb = {Tense.PAST: "restarted", Tense.ACTIVE: "restarting", Tense.FUTURE: "will restart"}
        return f"{verb[tense]} {self.subject()}"

    def subject(self) -> str:
        return self.handle.unit

    def inverse(self) -> Step:
        if self.was_running:
            return self._undo(Noop(reason=f"{self.handle.unit} was already running"))
        return self._undo(StopService(handle=self.handle, was_running=True))


class StopService(_StepBase):
    kind: Literal["stop_service"] = "stop_service"
    handle: ServiceHandle
    was_running: bool = True

    verbs: ClassVar[tuple[str, str, str]] = ("stopped", "stopping", "will stop")

    def subject(self) -> str:
        return self.handle.unit

    def inverse(self) -> Step:
        if not self.was_running:
            return self._undo(Noop(reason=f"{self.handle.unit} was not running"))
        return self._undo(StartService(handle=self.handle, was_running=False))


Step = Annotated[
    Noop
    | CreateDirectory
    | RemoveDirectory
    | BackupFile
    | DiscardBackup
    | WriteExecutable
    | RestoreBackup
    | DeleteFile
    | RemoveFile
    | RestoreFile
    | SetMode
    | SetOwner
    | StopProcess
    | RegisterService
    | UnregisterService
    | EnableService
    | DisableService
    | StartService
    | StopService,
    Field(discriminator="kind"),
]
