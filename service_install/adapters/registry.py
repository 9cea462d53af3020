"""
Backend registry: the known service backends, in preference order.

Backend selection happens once, during spec validation: the first
registered backend that is reachable wins unless the caller asked for
one by name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from service_install.adapters.base import ServiceBackend
from service_install.adapters.cron import CommandCrontab, CronBackend
from service_install.adapters.systemd import SystemdBackend
from service_install.core.errors import BackendUnavailable
from service_install.core.models.spec import InstallMode

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Ordered collection of service backends for one install scope."""

    def __init__(self, mode: InstallMode = InstallMode.USER):
        self._mode = mode
        self._backends: dict[str, ServiceBackend] = {}

    @property
    def mode(self) -> InstallMode:
        return self._mode

    def register(self, backend: ServiceBackend) -> None:
        name = backend.name
        if name in self._backends:
            logger.warning("Overwriting existing backend: %s", name)
        self._backends[name] = backend
        logger.debug("Registered backend: %s", name)

    def unregister(self, name: str) -> None:
        self._backends.pop(name, None)

    def get(self, name: str) -> ServiceBackend | None:
        return self._backends.get(name)

    def list_backends(self) -> list[str]:
        return list(self._backends.keys())

    def available(self) -> list[ServiceBackend]:
        """Reachable backends, in preference order."""
        return [b for b in self._backends.values() if b.is_available()]

    def backend_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered backend."""
        return {
            name: {
                "name": name,
                "available": backend.is_available(),
                "type": backend.__class__.__name__,
            }
            for name, backend in self._backends.items()
        }

    def select(self, requested: str | None = None) -> ServiceBackend:
        """Pick the backend to install with.

        Raises:
            BackendUnavailable: The requested backend (or, without a
                request, every backend) is unreachable at this scope.
        """
        if requested is not None:
            backend = self._backends.get(requested)
            if backend is None or not backend.is_available():
                raise BackendUnavailable(requested, self._mode.value)
            return backend

        for backend in self._backends.values():
            if backend.is_available():
                logger.debug("Selected backend %s for %s install", backend.name, self._mode)
                return backend
            logger.debug("Backend %s not available", backend.name)

        raise BackendUnavailable(None, self._mode.value)


def default_registry(
    mode: InstallMode,
    run_as: str | None = None,
    home: Path | None = None,
) -> BackendRegistry:
    """Systemd first, cron as the fallback, bound to ``mode``.

    System installs that run as another user edit that user's crontab.
    """
    registry = BackendRegistry(mode)
    registry.register(SystemdBackend(mode=mode, home=home))
    cron_user = run_as if mode == InstallMode.SYSTEM else None
    registry.register(CronBackend(CommandCrontab(user=cron_user)))
    return registry
