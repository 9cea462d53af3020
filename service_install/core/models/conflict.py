"""
Conflict classification: what currently occupies the install slot.

Exactly one variant is produced per scan. Variants that involve a file
carry its observed mode and owner so the planner can capture prior
state without touching the filesystem again.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from service_install.core.models.service import ServiceHandle


class FileState(BaseModel):
    """Stat snapshot of the file at the target path."""

    model_config = ConfigDict(frozen=True)

    path: Path
    mode: int          # permission bits only
    uid: int
    gid: int
    identical: bool    # byte-for-byte equal to the source executable


class NoConflict(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"
    handle: ServiceHandle | None = None

    @property
    def file(self) -> FileState | None:
        return None


class IdenticalFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["identical_file"] = "identical_file"
    file: FileState
    handle: ServiceHandle | None = None   # our own up-to-date registration, if any


class DifferentFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["different_file"] = "different_file"
    file: FileState

    @property
    def handle(self) -> ServiceHandle | None:
        return None


class RunningProcess(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["running_process"] = "running_process"
    pid: int
    file: FileState

    @property
    def handle(self) -> ServiceHandle | None:
        return None


class ManagedService(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["managed_service"] = "managed_service"
    handle: ServiceHandle
    created_by_us: bool
    file: FileState | None = None
    others: list[ServiceHandle] = Field(default_factory=list)   # further foreign registrations


Conflict = Annotated[
    NoConflict | IdenticalFile | DifferentFile | RunningProcess | ManagedService,
    Field(discriminator="kind"),
]
