"""
Service backend base: the contract between the engine and init systems.

The engine only talks to systemd or cron through this interface. A
backend is bound to one scope (user or system) when it is built, and a
plan keeps the backend it was validated against for its whole life.

Unlike the tools behind them, backends raise: every failed call
surfaces as ``BackendError`` and the executor decides what to do.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.spec import InstallSpec

MARKER_PREFIX = "# managed-by: service-install"

_NAME_KEY = " name="
_CREATED_KEY = " created="


def marker_line(name: str, created_dirs: Sequence[Path] = ()) -> str:
    """The comment that marks an artifact as ours.

    ``created_dirs`` are directories the install had to create, outermost
    first, joined with ``os.pathsep``. Removal takes them away again.
    """
    line = f"{MARKER_PREFIX}{_NAME_KEY}{name}"
    if created_dirs:
        line += _CREATED_KEY + os.pathsep.join(str(d) for d in created_dirs)
    return line


def marker_name(line: str) -> str | None:
    """Service name from a marker line, or None if ``line`` is not one."""
    line = line.strip()
    prefix = f"{MARKER_PREFIX}{_NAME_KEY}"
    if not line.startswith(prefix):
        return None
    rest = line[len(prefix):]
    return rest.split(_CREATED_KEY, 1)[0].strip() or None


def has_marker(text: str, name: str) -> bool:
    return any(marker_name(line) == name for line in text.splitlines())


def marker_dirs(text: str) -> list[Path]:
    """Directories recorded on the first marker line in ``text``."""
    for line in text.splitlines():
        if marker_name(line) is None:
            continue
        _, sep, dirs = line.strip().partition(_CREATED_KEY)
        return [Path(d) for d in dirs.split(os.pathsep) if d] if sep else []
    return []


def recorded_dirs(descriptor: ServiceDescriptor | None) -> list[Path]:
    """Directories a registration says its install created."""
    if descriptor is None:
        return []
    for text in descriptor.artifacts.values():
        dirs = marker_dirs(text)
        if dirs:
            return dirs
    return []


class ServiceBackend(ABC):
    """Abstract base class for service backends.

    To add a backend:
        1. Subclass ServiceBackend
        2. Implement every abstract method
        3. Register an instance in the BackendRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier ('systemd', 'cron')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the init system is reachable at this backend's scope.

        Should be fast and never raise.
        """

    @abstractmethod
    def describe(self, spec: InstallSpec) -> ServiceDescriptor:
        """Render the registration for ``spec``. Pure: nothing is written."""

    @abstractmethod
    def find_existing(self, name: str) -> ServiceHandle | None:
        """The registration called ``name``, ours or not."""

    @abstractmethod
    def find_by_exe(self, path: Path) -> list[ServiceHandle]:
        """Every registration that runs ``path``. Ours carry ``created_by_us``."""

    @abstractmethod
    def register(self, descriptor: ServiceDescriptor) -> ServiceHandle:
        """Make the registration exactly ``descriptor``."""

    @abstractmethod
    def unregister(self, descriptor: ServiceDescriptor) -> None:
        """Remove every artifact of ``descriptor``."""

    @abstractmethod
    def enable(self, handle: ServiceHandle) -> None: ...

    @abstractmethod
    def disable(self, handle: ServiceHandle) -> None: ...

    @abstractmethod
    def start(self, handle: ServiceHandle) -> None: ...

    @abstractmethod
    def stop(self, handle: ServiceHandle) -> None: ...

    @abstractmethod
    def restart(self, handle: ServiceHandle) -> None: ...

    def handle_for(self, descriptor: ServiceDescriptor) -> ServiceHandle:
        """Handle for a registration we are about to create."""
        return ServiceHandle(
            backend=self.name,
            name=descriptor.name,
            unit=descriptor.primary,
            exe_path=descriptor.exe_path,
            created_by_us=True,
            descriptor=descriptor,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
