"""
Error taxonomy for install and remove operations.

Validation and conflict errors are raised before anything is touched.
Execution errors carry the failed step and, when rollback itself went
wrong, every rollback failure alongside the original one.

Every error exposes ``cause`` so callers can walk the chain without
digging into ``__cause__`` themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from service_install.core.models.outcome import StepOutcome


class ServiceInstallError(Exception):
    """Base class for everything this package raises on purpose."""

    @property
    def cause(self) -> BaseException | None:
        """The underlying exception, if this error wraps one."""
        return self.__cause__


# ── Spec validation ─────────────────────────────────────────────


class SpecError(ServiceInstallError):
    """The install specification is incomplete or inconsistent."""


class MissingServiceName(SpecError):
    def __init__(self) -> None:
        super().__init__("A service name is required")


class InvalidServiceName(SpecError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Invalid service name {name!r}: use letters, digits and '_.@-' only"
        )
        self.name = name


class SourceNotFile(SpecError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Source executable is not a regular file: {path}")
        self.path = path


class UnknownUser(SpecError):
    def __init__(self, user: str) -> None:
        super().__init__(f"User {user!r} does not exist")
        self.user = user


class ScheduleError(SpecError):
    """A schedule cannot be expressed by the chosen backend."""


class NeedsElevation(ServiceInstallError):
    """The operation needs root. Re-executing with privileges is up to the caller."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Root privileges required: {reason}")
        self.reason = reason


# ── Install location ────────────────────────────────────────────


class LocationError(ServiceInstallError):
    """Problems with the slot the executable should occupy."""


class NoSuitableLocation(LocationError):
    def __init__(self, candidates: list[str]) -> None:
        tried = ", ".join(candidates) or "(none)"
        super().__init__(f"No writable, executable-capable install directory (tried {tried})")
        self.candidates = candidates


class LocationOccupied(LocationError):
    def __init__(self, path: str) -> None:
        super().__init__(
            f"A different file already exists at {path} (pass overwrite to replace it)"
        )
        self.path = path


class NoInstallFound(LocationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No installation of {name!r} managed by service-install was found")
        self.name = name


# ── Conflicts ───────────────────────────────────────────────────


class ConflictError(ServiceInstallError):
    """Something live occupies the slot and policy forbids touching it."""


class ServiceConflict(ConflictError):
    def __init__(self, unit: str, backend: str) -> None:
        super().__init__(
            f"{backend} registration {unit!r} was not created by service-install "
            "(pass overwrite to stop and disable it)"
        )
        self.unit = unit
        self.backend = backend


class ProcessRunning(ConflictError):
    def __init__(self, pid: int, path: str) -> None:
        super().__init__(
            f"Process {pid} is running {path} (pass overwrite or stop_running to stop it)"
        )
        self.pid = pid
        self.path = path


# ── Backends ────────────────────────────────────────────────────


class BackendError(ServiceInstallError):
    """A service backend call failed."""


class BackendUnavailable(BackendError):
    def __init__(self, backend: str | None, mode: str) -> None:
        what = f"Backend {backend!r}" if backend else "No service backend"
        super().__init__(f"{what} is not reachable for {mode} installs")
        self.backend = backend
        self.mode = mode


# ── Execution ───────────────────────────────────────────────────


class PlanError(ServiceInstallError):
    """The plan itself cannot be run (already executed, missing inverse)."""


class StepFailed(ServiceInstallError):
    """A step failed and every completed step was rolled back cleanly."""

    def __init__(self, step_id: str, description: str, error: BaseException) -> None:
        super().__init__(f"Step {step_id} ({description}) failed: {error}")
        self.step_id = step_id
        self.description = description
        self.report: Any = None     # ExecutionReport of the failed attempt


class RollbackError(ServiceInstallError):
    """A step failed and undoing the completed steps failed too.

    ``original`` is the forward failure; ``failures`` holds one
    ``(step_id, description, exception)`` tuple per inverse that failed.
    """

    def __init__(
        self,
        original: BaseException,
        failures: list[tuple[str, str, BaseException]],
    ) -> None:
        lines = [f"{original}", f"Rollback left {len(failures)} step(s) undone:"]
        lines += [f"  {step_id} ({desc}): {err}" for step_id, desc, err in failures]
        super().__init__("\n".join(lines))
        self.original = original
        self.failures = failures
        self.report: Any = None


class AggregateError(ServiceInstallError):
    """Best-effort execution finished with one or more failed steps."""

    def __init__(self, outcomes: list[StepOutcome]) -> None:
        failed = [o for o in outcomes if o.failed]
        lines = [f"{len(failed)} of {len(outcomes)} step(s) failed:"]
        lines += [f"  {o.step_id} ({o.description}): {o.error}" for o in failed]
        super().__init__("\n".join(lines))
        self.outcomes = outcomes

    @property
    def failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.failed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }
