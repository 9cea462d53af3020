"""
Step executor: run a plan all-or-nothing, or best-effort.

``execute`` runs steps in order and remembers each completed step with
its inverse. On the first failure it undoes every completed step in
exact reverse completion order, once, and reports what could not be
undone instead of hiding it. ``best_effort`` attempts every step exactly
once and reports every outcome.

Flow:
    plan → (inverse, apply, push)* → success | rollback → StepFailed | RollbackError
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from service_install.adapters.base import ServiceBackend
from service_install.core.engine.planner import Plan
from service_install.core.engine.steps import apply_step
from service_install.core.errors import PlanError, RollbackError, StepFailed
from service_install.core.models.outcome import StepOutcome
from service_install.core.models.step import DiscardBackup, Step, Tense

logger = logging.getLogger(__name__)

Applier = Callable[[Step, ServiceBackend], None]


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    plan_id: str = ""
    operation: str = ""
    name: str = ""
    backend: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)
    rolled_back: list[StepOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "operation": self.operation,
            "name": self.name,
            "backend": self.backend,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
            "rolled_back": [o.model_dump(mode="json") for o in self.rolled_back],
        }


class RollbackStack:
    """Completed steps of the current attempt, paired with their inverses.

    Grows during forward execution. Drained once, newest first.
    """

    def __init__(self) -> None:
        self._entries: list[tuple[Step, Step]] = []
        self._drained = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def completed(self) -> list[Step]:
        return [step for step, _ in self._entries]

    def push(self, step: Step, inverse: Step) -> None:
        if self._drained:
            raise PlanError("Cannot record steps after rollback")
        self._entries.append((step, inverse))

    def drain(self) -> list[tuple[Step, Step]]:
        if self._drained:
            raise PlanError("Rollback stack already drained")
        self._drained = True
        entries = list(reversed(self._entries))
        self._entries.clear()
        return entries


def _claim(plan: Plan) -> None:
    if plan.executed:
        raise PlanError(f"Plan {plan.plan_id} was already executed; build a new one")
    plan.executed = True


def _run(
    step: Step, backend: ServiceBackend, apply: Applier
) -> tuple[StepOutcome, Exception | None]:
    """Apply one step, turning an exception into a failed outcome."""
    start = time.monotonic()
    try:
        apply(step, backend)
    except Exception as e:
        outcome = StepOutcome.failure(
            step_id=step.id,
            kind=step.kind,
            error=str(e) or type(e).__name__,
            description=step.describe(Tense.ACTIVE),
        )
        outcome.metadata["exception"] = type(e).__name__
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        return outcome, e
    outcome = StepOutcome.success(
        step_id=step.id,
        kind=step.kind,
        description=step.describe(Tense.PAST),
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return outcome, None


def _rollback(
    stack: RollbackStack,
    backend: ServiceBackend,
    report: ExecutionReport,
    apply: Applier,
) -> list[tuple[str, str, BaseException]]:
    failures: list[tuple[str, str, BaseException]] = []
    entries = stack.drain()
    if entries:
        logger.warning("Rolling back %d step(s)", len(entries))

    for step, inverse in entries:
        outcome, exc = _run(inverse, backend, apply)
        report.rolled_back.append(outcome)
        if exc is None:
            logger.warning("↩ %s", inverse.describe(Tense.PAST))
        else:
            logger.error("✗ could not undo %s: %s", step.id, outcome.error)
            failures.append((inverse.id, inverse.describe(), exc))
    return failures


def _discard_backups(plan: Plan, backend: ServiceBackend, apply: Applier) -> None:
    for path in plan.backups:
        outcome, exc = _run(DiscardBackup(backup_path=path), backend, apply)
        if exc is not None:
            logger.warning("Could not discard backup %s: %s", path, outcome.error)


def execute(plan: Plan, *, apply: Applier = apply_step) -> ExecutionReport:
    """Run every step of ``plan``; on failure, undo the completed ones.

    Raises:
        PlanError: The plan already ran, or a step has no inverse.
        StepFailed: A step failed and rollback was clean.
        RollbackError: A step failed and at least one inverse failed too.
    """
    _claim(plan)
    backend = plan.backend
    report = ExecutionReport(
        plan_id=plan.plan_id,
        operation=plan.operation,
        name=plan.name,
        backend=backend.name,
    )
    stack = RollbackStack()
    start = time.monotonic()

    for step in plan.steps:
        try:
            inverse = step.inverse()
        except NotImplementedError as e:
            failures = _rollback(stack, backend, report, apply)
            error = PlanError(f"Step {step.id} has no inverse; refusing to run it")
            if failures:
                raise RollbackError(error, failures) from e
            raise error from e

        outcome, cause = _run(step, backend, apply)
        report.outcomes.append(outcome)

        if cause is None:
            stack.push(step, inverse)
            logger.info("✓ %s", outcome.description)
            continue

        logger.error("✗ %s: %s", outcome.description, outcome.error)
        failed = StepFailed(step.id, step.describe(), cause)
        failed.__cause__ = cause

        failures = _rollback(stack, backend, report, apply)
        report.duration_ms = int((time.monotonic() - start) * 1000)
        failed.report = report
        if failures:
            error = RollbackError(failed, failures)
            error.report = report
            raise error from cause
        raise failed from cause

    _discard_backups(plan, backend, apply)
    report.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("%s of %s: %d step(s) ok", plan.operation, plan.name, report.total)
    return report


@dataclass
class BestEffortReport:
    """Outcome of every step of a best-effort pass, in plan order."""

    plan_id: str = ""
    name: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def pairs(self) -> list[tuple[str, StepOutcome]]:
        return [(o.step_id, o) for o in self.outcomes]

    @property
    def failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def all_ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "name": self.name,
            "status": "ok" if self.all_ok else "partial",
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }


def best_effort(plan: Plan, *, apply: Applier = apply_step) -> BestEffortReport:
    """Attempt every step exactly once, whatever fails along the way."""
    _claim(plan)
    report = BestEffortReport(plan_id=plan.plan_id, name=plan.name)

    for step in plan.steps:
        outcome, _ = _run(step, plan.backend, apply)
        report.outcomes.append(outcome)
        if outcome.ok:
            logger.info("✓ %s", outcome.description)
        else:
            logger.warning("✗ %s: %s", outcome.description, outcome.error)

    _discard_backups(plan, plan.backend, apply)
    return report
