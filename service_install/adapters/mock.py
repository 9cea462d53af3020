"""
Mock backend: in-memory service registrations for tests and dry runs.

Behaves like a tiny init system: registrations carry the marker,
enable/start flip state, and any operation can be told to fail.
Every call lands in ``call_log`` as ``(operation, unit)``.
"""

from __future__ import annotations

import os
from pathlib import Path

from service_install.adapters.base import ServiceBackend, has_marker, marker_line
from service_install.core.errors import BackendError
from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.spec import InstallSpec


class MockBackend(ServiceBackend):
    """In-memory backend.

    By default every operation succeeds. Use ``set_failure`` to make an
    operation (optionally on one unit) raise ``BackendError``.
    """

    def __init__(self, backend_name: str = "mock", available: bool = True):
        self._name = backend_name
        self._available = available
        self._units: dict[str, ServiceDescriptor] = {}    # unit -> descriptor
        self._enabled: set[str] = set()
        self._running: set[str] = set()
        self._failures: dict[tuple[str, str | None], str] = {}
        self._call_log: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[tuple[str, str]]:
        return self._call_log

    @property
    def units(self) -> dict[str, ServiceDescriptor]:
        return dict(self._units)

    def is_available(self) -> bool:
        return self._available

    # ── Test helpers ────────────────────────────────────────────

    def set_failure(self, operation: str, unit: str | None = None, error: str = "Mock failure") -> None:
        """Make ``operation`` raise, for one unit or for all of them."""
        self._failures[(operation, unit)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def add_foreign(
        self,
        unit: str,
        exe_path: str,
        enabled: bool = True,
        running: bool = True,
    ) -> ServiceHandle:
        """Plant a registration that service-install did not create."""
        name = unit.rsplit(".", 1)[0]
        self._units[unit] = ServiceDescriptor(
            backend=self._name,
            name=name,
            exe_path=exe_path,
            primary=unit,
            artifacts={unit: f"exec={exe_path}\n"},
        )
        if enabled:
            self._enabled.add(unit)
        if running:
            self._running.add(unit)
        return self._handle(unit)

    def is_enabled(self, unit: str) -> bool:
        return unit in self._enabled

    def is_running(self, unit: str) -> bool:
        return unit in self._running

    # ── ServiceBackend ──────────────────────────────────────────

    def _record(self, operation: str, unit: str) -> None:
        self._call_log.append((operation, unit))
        error = self._failures.get((operation, unit)) or self._failures.get((operation, None))
        if error is not None:
            raise BackendError(error)

    def _handle(self, unit: str) -> ServiceHandle:
        descriptor = self._units[unit]
        return ServiceHandle(
            backend=self._name,
            name=descriptor.name,
            unit=unit,
            exe_path=descriptor.exe_path,
            created_by_us=any(has_marker(a, descriptor.name) for a in descriptor.artifacts.values()),
            enabled=unit in self._enabled,
            running=unit in self._running,
            descriptor=descriptor,
        )

    def describe(self, spec: InstallSpec) -> ServiceDescriptor:
        unit = f"{spec.name}.{self._name}"
        body = "\n".join(
            [
                marker_line(spec.name, spec.created_dirs),
                f"exec={spec.target} {' '.join(spec.args)}".rstrip(),
                f"schedule={spec.schedule or 'none'}",
            ]
        )
        return ServiceDescriptor(
            backend=self._name,
            name=spec.name,
            exe_path=str(spec.target),
            primary=unit,
            artifacts={unit: body + "\n"},
            enableable=spec.schedule is not None,
        )

    def find_existing(self, name: str) -> ServiceHandle | None:
        for unit, descriptor in self._units.items():
            if descriptor.name == name:
                return self._handle(unit)
        return None

    def find_by_exe(self, path: Path) -> list[ServiceHandle]:
        wanted = os.path.realpath(path)
        return [
            handle
            for handle in (self._handle(u) for u in self._units)
            if handle.exe_path
            and os.path.realpath(handle.exe_path) == wanted
        ]

    def register(self, descriptor: ServiceDescriptor) -> ServiceHandle:
        self._record("register", descriptor.primary)
        for unit in [u for u, d in self._units.items() if d.name == descriptor.name]:
            del self._units[unit]
        self._units[descriptor.primary] = descriptor
        return self.handle_for(descriptor)

    def unregister(self, descriptor: ServiceDescriptor) -> None:
        self._record("unregister", descriptor.primary)
        self._units.pop(descriptor.primary, None)
        self._enabled.discard(descriptor.primary)
        self._running.discard(descriptor.primary)

    def enable(self, handle: ServiceHandle) -> None:
        self._record("enable", handle.unit)
        self._enabled.add(handle.unit)

    def disable(self, handle: ServiceHandle) -> None:
        self._record("disable", handle.unit)
        self._enabled.discard(handle.unit)

    def start(self, handle: ServiceHandle) -> None:
        self._record("start", handle.unit)
        self._running.add(handle.unit)

    def stop(self, handle: ServiceHandle) -> None:
        self._record("stop", handle.unit)
        self._running.discard(handle.unit)

    def restart(self, handle: ServiceHandle) -> None:
        self._record("restart", handle.unit)
        self._running.add(handle.unit)

    def reset(self) -> None:
        """Forget every registration, failure and call."""
        self._units.clear()
        self._enabled.clear()
        self._running.clear()
        self._failures.clear()
        self._call_log.clear()
