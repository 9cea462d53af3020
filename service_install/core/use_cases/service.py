"""
Service use cases: the builder surface for installing and removing.

    prepare_install(raw) → Plan → install(plan)
    prepare_remove(raw)  → Plan → remove(plan) | best_effort_remove(plan)

Preparing validates and scans but writes nothing. Driving a plan runs it
through the executor and appends one audit entry, whether it succeeded
or not.
"""

from __future__ import annotations

import logging
from pathlib import Path

from service_install.adapters.processes import processes_executing
from service_install.adapters.registry import BackendRegistry
from service_install.core.engine.executor import (
    Applier,
    BestEffortReport,
    ExecutionReport,
    best_effort,
    execute,
)
from service_install.core.engine.planner import (
    Plan,
    build_install_plan,
    build_remove_plan,
)
from service_install.core.engine.steps import apply_step
from service_install.core.errors import (
    AggregateError,
    PlanError,
    RollbackError,
    ServiceInstallError,
    StepFailed,
)
from service_install.core.models import RawInstallSpec
from service_install.core.observability.logging_config import plan_context
from service_install.core.persistence.audit import AuditEntry, AuditWriter
from service_install.core.services.conflicts import ProcessQuery
from service_install.core.services.validator import validate_removal, validate_spec

logger = logging.getLogger(__name__)


# ── Prepare ─────────────────────────────────────────────────────


def prepare_install(
    raw: RawInstallSpec,
    *,
    registry: BackendRegistry | None = None,
    home: Path | None = None,
    privileged: bool | None = None,
    candidates: list[Path] | None = None,
    self_exe: Path | None = None,
    list_processes: ProcessQuery = processes_executing,
) -> Plan:
    """Validate ``raw``, scan the target slot and build the install plan."""
    validated = validate_spec(
        raw,
        registry=registry,
        privileged=privileged,
        home=home,
        candidates=candidates,
        self_exe=self_exe,
    )
    return build_install_plan(validated, list_processes=list_processes, self_exe=self_exe)


def prepare_remove(
    raw: RawInstallSpec,
    *,
    registry: BackendRegistry | None = None,
    home: Path | None = None,
    privileged: bool | None = None,
) -> Plan:
    """Find our registration named ``raw.name`` and plan its teardown."""
    name, _mode, backends = validate_removal(
        raw, registry=registry, privileged=privileged, home=home
    )
    return build_remove_plan(name, backends)


# ── Drive ───────────────────────────────────────────────────────


def _require(plan: Plan, operation: str) -> None:
    if plan.operation != operation:
        raise PlanError(f"Plan {plan.plan_id} is a {plan.operation} plan, not {operation}")


def _target(plan: Plan) -> str:
    if plan.spec is not None:
        return str(plan.spec.target)
    for step in plan.steps:
        path = getattr(step, "path", None)
        if path is not None:
            return str(path)
    return ""


def _audit_report(
    audit: AuditWriter | None,
    plan: Plan,
    report: ExecutionReport | None,
    error: ServiceInstallError | None = None,
) -> None:
    if audit is None:
        return

    entry = AuditEntry(
        plan_id=plan.plan_id,
        operation=plan.operation,
        service=plan.name,
        backend=plan.backend.name,
        target=_target(plan),
        steps_total=plan.total_steps,
    )
    if plan.resolution is not None:
        entry.context["resolution"] = plan.resolution.value

    if report is not None:
        entry.steps_succeeded = report.succeeded
        entry.steps_failed = report.failed
        entry.duration_ms = report.duration_ms
        entry.errors = [o.error for o in report.failures if o.error]
        if report.rolled_back:
            entry.context["rolled_back"] = [o.step_id for o in report.rolled_back]

    if error is None:
        entry.status = "ok"
    elif isinstance(error, RollbackError):
        entry.status = "failed"
        entry.errors.extend(f"rollback {sid}: {err}" for sid, _, err in error.failures)
    elif isinstance(error, StepFailed):
        entry.status = "rolled_back"
    else:
        entry.status = "failed"
        entry.errors.append(str(error))

    audit.write(entry)


def _drive(plan: Plan, apply: Applier, audit: AuditWriter | None) -> ExecutionReport:
    try:
        with plan_context(plan.plan_id):
            report = execute(plan, apply=apply)
    except (StepFailed, RollbackError) as e:
        _audit_report(audit, plan, e.report, e)
        raise
    except PlanError as e:
        _audit_report(audit, plan, None, e)
        raise
    _audit_report(audit, plan, report)
    return report


def install(
    plan: Plan,
    *,
    audit: AuditWriter | None = None,
    apply: Applier = apply_step,
) -> ExecutionReport:
    """Run an install plan all-or-nothing.

    Raises:
        PlanError: Not an install plan, or already executed.
        StepFailed: A step failed; everything done so far was undone.
        RollbackError: A step failed and rollback was incomplete.
    """
    _require(plan, "install")
    logger.info("Installing %s (%d step(s))", plan.name, plan.total_steps)
    return _drive(plan, apply, audit)


def remove(
    plan: Plan,
    *,
    audit: AuditWriter | None = None,
    apply: Applier = apply_step,
) -> ExecutionReport:
    """Run a removal plan all-or-nothing."""
    _require(plan, "remove")
    logger.info("Removing %s (%d step(s))", plan.name, plan.total_steps)
    return _drive(plan, apply, audit)


def best_effort_remove(
    plan: Plan,
    *,
    audit: AuditWriter | None = None,
    apply: Applier = apply_step,
) -> BestEffortReport:
    """Attempt every removal step once, without rollback.

    Raises:
        AggregateError: At least one step failed. Carries every outcome.
    """
    _require(plan, "remove")
    logger.info("Removing %s best-effort (%d step(s))", plan.name, plan.total_steps)
    with plan_context(plan.plan_id):
        report = best_effort(plan, apply=apply)

    if audit is not None:
        failures = report.failures
        audit.write(
            AuditEntry(
                plan_id=plan.plan_id,
                operation="best_effort_remove",
                service=plan.name,
                backend=plan.backend.name,
                target=_target(plan),
                status="ok" if not failures else "partial",
                steps_total=len(report.outcomes),
                steps_succeeded=len(report.outcomes) - len(failures),
                steps_failed=len(failures),
                errors=[o.error for o in failures if o.error],
            )
        )

    if not report.all_ok:
        raise AggregateError(report.outcomes)
    return report
