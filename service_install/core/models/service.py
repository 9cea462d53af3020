"""
Service registration models shared by every backend.

A ``ServiceDescriptor`` is what we want registered; a ``ServiceHandle``
is what a backend reports as actually being there.
"""

from __future__ import annotations

import hashlib
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ServiceState(StrEnum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    RUNNING = "running"
    STOPPED = "stopped"


class ServiceDescriptor(BaseModel):
    """Everything a backend needs to register one service.

    ``artifacts`` maps an artifact key (a unit file name, or ``crontab``)
    to its full rendered content. ``primary`` names the unit that gets
    enabled and started.
    """

    model_config = ConfigDict(frozen=True)

    backend: str
    name: str
    exe_path: str
    primary: str
    artifacts: dict[str, str] = Field(default_factory=dict)
    enableable: bool = True
    startable: bool = True

    @property
    def fingerprint(self) -> str:
        digest = hashlib.sha256()
        for key in sorted(self.artifacts):
            digest.update(key.encode())
            digest.update(b"\0")
            digest.update(self.artifacts[key].encode())
            digest.update(b"\0")
        return digest.hexdigest()


class ServiceHandle(BaseModel):
    """A backend registration as observed.

    ``unit`` is the backend identity: a systemd unit name, or for cron
    the rule line itself. ``created_by_us`` comes only from the marker
    embedded in the artifact.
    """

    model_config = ConfigDict(frozen=True)

    backend: str
    name: str
    unit: str
    exe_path: str | None = None
    created_by_us: bool = False
    enabled: bool = False
    running: bool = False
    descriptor: ServiceDescriptor | None = None   # artifacts as found on disk

    @property
    def states(self) -> set[ServiceState]:
        return {
            ServiceState.ENABLED if self.enabled else ServiceState.DISABLED,
            ServiceState.RUNNING if self.running else ServiceState.STOPPED,
        }

    def matches(self, descriptor: ServiceDescriptor) -> bool:
        """Whether the registration on disk is exactly ``descriptor``."""
        return self.descriptor is not None and (
            self.descriptor.fingerprint == descriptor.fingerprint
        )
