"""
Tests for the step executor — all-or-nothing runs, rollback and best-effort.

Rollback order is the reverse of completion order. These tests pin it,
including when an inverse fails partway through the rollback.
"""

from pathlib import Path

import pytest

from service_install.adapters.mock import MockBackend
from service_install.core.engine.executor import RollbackStack, best_effort, execute
from service_install.core.engine.planner import Plan
from service_install.core.errors import PlanError, RollbackError, StepFailed
from service_install.core.models.step import BackupFile, Noop, SetMode


class Recorder:
    """Applier that records step ids and fails on request."""

    def __init__(self, fail_on: set[str] | None = None):
        self.applied: list[str] = []
        self.fail_on = fail_on or set()

    def __call__(self, step, backend) -> None:
        self.applied.append(step.id)
        if step.id in self.fail_on:
            raise OSError(f"induced failure at {step.id}")


class Irreversible(Noop):
    def inverse(self):
        raise NotImplementedError("no way back")


def _plan(n: int, backend: MockBackend | None = None) -> Plan:
    steps = [
        SetMode(id=f"{i}:set_mode", path=Path(f"/tmp/f{i}"), mode=0o755, prior_mode=0o644)
        for i in range(1, n + 1)
    ]
    return Plan(
        plan_id="plan-test",
        operation="install",
        name="svc",
        backend=backend or MockBackend(),
        steps=steps,
    )


class TestExecute:
    def test_all_steps_succeed(self):
        recorder = Recorder()
        report = execute(_plan(4), apply=recorder)

        assert recorder.applied == ["1:set_mode", "2:set_mode", "3:set_mode", "4:set_mode"]
        assert report.all_ok
        assert report.status == "ok"
        assert report.total == 4
        assert report.rolled_back == []

    @pytest.mark.parametrize("k", [1, 2, 3, 5])
    def test_failure_at_k_undoes_k_minus_1_to_1(self, k):
        recorder = Recorder(fail_on={f"{k}:set_mode"})

        with pytest.raises(StepFailed) as exc:
            execute(_plan(5), apply=recorder)

        forward = [f"{i}:set_mode" for i in range(1, k + 1)]
        undo = [f"{i}:set_mode~undo" for i in range(k - 1, 0, -1)]
        assert recorder.applied == forward + undo
        assert exc.value.step_id == f"{k}:set_mode"
        assert [o.step_id for o in exc.value.report.rolled_back] == undo

    def test_failed_inverse_does_not_stop_rollback(self):
        recorder = Recorder(fail_on={"4:set_mode", "2:set_mode~undo"})

        with pytest.raises(RollbackError) as exc:
            execute(_plan(5), apply=recorder)

        assert recorder.applied[4:] == [
            "3:set_mode~undo",
            "2:set_mode~undo",
            "1:set_mode~undo",
        ]
        error = exc.value
        assert isinstance(error.original, StepFailed)
        assert [f[0] for f in error.failures] == ["2:set_mode~undo"]
        assert "induced failure at 4:set_mode" in str(error)
        assert error.report.rolled_back[1].failed

    def test_inverse_is_taken_before_the_step_runs(self):
        plan = _plan(2)
        plan.steps.append(Irreversible(id="3:noop"))
        recorder = Recorder()

        with pytest.raises(PlanError):
            execute(plan, apply=recorder)

        # step 3 never ran; steps 1 and 2 were undone
        assert recorder.applied == [
            "1:set_mode",
            "2:set_mode",
            "2:set_mode~undo",
            "1:set_mode~undo",
        ]

    def test_plan_runs_once(self):
        plan = _plan(1)
        execute(plan, apply=Recorder())
        with pytest.raises(PlanError):
            execute(plan, apply=Recorder())

    def test_failed_plan_cannot_be_retried(self):
        plan = _plan(2)
        with pytest.raises(StepFailed):
            execute(plan, apply=Recorder(fail_on={"2:set_mode"}))
        with pytest.raises(PlanError):
            execute(plan, apply=Recorder())

    def test_backups_discarded_on_success(self, tmp_path: Path):
        plan = _plan(0)
        plan.steps.append(
            BackupFile(id="1:backup_file", path=tmp_path / "a", backup_path=tmp_path / "a.bak")
        )
        recorder = Recorder()
        execute(plan, apply=recorder)
        # the discard step is built on the fly and carries no id
        assert recorder.applied == ["1:backup_file", ""]


class TestBestEffort:
    def test_every_step_attempted_once(self):
        recorder = Recorder(fail_on={"2:set_mode", "4:set_mode"})
        report = best_effort(_plan(5), apply=recorder)

        assert recorder.applied == [f"{i}:set_mode" for i in range(1, 6)]
        assert len(report.outcomes) == 5
        assert [o.step_id for o in report.failures] == ["2:set_mode", "4:set_mode"]
        assert not report.all_ok
        assert report.to_dict()["status"] == "partial"

    def test_pairs_follow_plan_order(self):
        report = best_effort(_plan(3), apply=Recorder())
        assert [sid for sid, _ in report.pairs] == ["1:set_mode", "2:set_mode", "3:set_mode"]
        assert report.all_ok

    def test_plan_runs_once(self):
        plan = _plan(1)
        best_effort(plan, apply=Recorder())
        with pytest.raises(PlanError):
            best_effort(plan, apply=Recorder())


class TestRollbackStack:
    def test_drains_newest_first_once(self):
        stack = RollbackStack()
        a, b = Noop(id="a"), Noop(id="b")
        stack.push(a, a.inverse())
        stack.push(b, b.inverse())

        assert [step.id for step, _ in stack.drain()] == ["b", "a"]
        with pytest.raises(PlanError):
            stack.drain()
        with pytest.raises(PlanError):
            stack.push(a, a.inverse())
