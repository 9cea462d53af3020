"""
Domain models: pydantic types for specs, conflicts, steps and services.

All models are re-exported here for convenient access:

    from service_install.core.models import InstallSpec, Conflict, Step, ServiceHandle
"""

from service_install.core.models.conflict import (
    Conflict,
    DifferentFile,
    FileState,
    IdenticalFile,
    ManagedService,
    NoConflict,
    RunningProcess,
)
from service_install.core.models.outcome import StepOutcome
from service_install.core.models.service import (
    ServiceDescriptor,
    ServiceHandle,
    ServiceState,
)
from service_install.core.models.spec import (
    Daily,
    Every,
    InstallMode,
    InstallSpec,
    OnBoot,
    RawInstallSpec,
    Schedule,
    Weekday,
    Weekly,
)
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
    Tense,
    UnregisterService,
    WriteExecutable,
)

__all__ = [
    # conflict.py
    "Conflict",
    "DifferentFile",
    "FileState",
    "IdenticalFile",
    "ManagedService",
    "NoConflict",
    "RunningProcess",
    # outcome.py
    "StepOutcome",
    # service.py
    "ServiceDescriptor",
    "ServiceHandle",
    "ServiceState",
    # spec.py
    "Daily",
    "Every",
    "InstallMode",
    "InstallSpec",
    "OnBoot",
    "RawInstallSpec",
    "Schedule",
    "Weekday",
    "Weekly",
    # step.py
    "BackupFile",
    "CreateDirectory",
    "DeleteFile",
    "DisableService",
    "DiscardBackup",
    "EnableService",
    "Noop",
    "RegisterService",
    "RemoveDirectory",
    "RemoveFile",
    "RestoreBackup",
    "RestoreFile",
    "SetMode",
    "SetOwner",
    "StartService",
    "Step",
    "StopProcess",
    "StopService",
    "Tense",
    "UnregisterService",
    "WriteExecutable",
]
