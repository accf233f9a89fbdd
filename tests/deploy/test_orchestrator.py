"""Tests for obstack.deploy.orchestrator.

Covers plan validation, the run state machine, critical vs non-critical
failure handling, cancellation, and the reference single-node scenarios.
"""

from __future__ import annotations

import pytest

from obstack.core.errors import InvalidPlanError, OrchestrationError
from obstack.deploy.models import CommandSpec, ProbeKind, ReadinessSpec, Stage, Step
from obstack.deploy.orchestrator import DeploymentOrchestrator, validate_stages
from obstack.deploy.results import EXIT_CODES, FailureReason, RunStatus, StageStatus


def _stage(name: str, ordinal: int, critical: bool = True, steps: tuple[str, ...] = ("run",), **kwargs) -> Stage:
    return Stage(
        name,
        ordinal,
        steps=tuple(Step(f"{name}.{s}", CommandSpec(("true",))) for s in steps),
        critical=critical,
        **kwargs,
    )


def _ready(name: str, port: int) -> ReadinessSpec:
    return ReadinessSpec(name, ProbeKind.TCP, port=port, interval_seconds=0.05, timeout_seconds=0.3)


# ------------------------------------------------------------------ #
# Plan validation
# ------------------------------------------------------------------ #


class TestValidateStages:
    def test_valid(self):
        validate_stages([_stage("a", 1), _stage("b", 2, requires=("a",)), _stage("c", 5)])

    def test_non_increasing_ordinals(self):
        with pytest.raises(InvalidPlanError, match="strictly increasing"):
            validate_stages([_stage("a", 2), _stage("b", 2)])

    def test_duplicate_names(self):
        with pytest.raises(InvalidPlanError, match="Duplicate"):
            validate_stages([_stage("a", 1), _stage("a", 2)])

    def test_forward_requirement(self):
        with pytest.raises(InvalidPlanError, match="not an earlier stage"):
            validate_stages([_stage("a", 1, requires=("b",)), _stage("b", 2)])

    def test_invalid_plan_runs_nothing(self, orchestrator, fake_executor):
        with pytest.raises(InvalidPlanError):
            orchestrator.deploy([_stage("a", 2), _stage("b", 1)])
        assert fake_executor.calls == []


# ------------------------------------------------------------------ #
# State machine
# ------------------------------------------------------------------ #


class TestStateMachine:
    def test_pending_then_terminal(self, orchestrator):
        assert orchestrator.state is RunStatus.PENDING
        assert orchestrator.report is None
        report = orchestrator.deploy([_stage("a", 1)])
        assert orchestrator.state is RunStatus.SUCCEEDED
        assert orchestrator.report is report

    def test_second_deploy_rejected(self, orchestrator):
        orchestrator.deploy([_stage("a", 1)])
        with pytest.raises(OrchestrationError):
            orchestrator.deploy([_stage("a", 1)])

    def test_report_timestamps(self, orchestrator):
        report = orchestrator.deploy([_stage("a", 1)])
        assert report.run_id == "run-test"
        assert report.completed_at is not None
        assert report.duration_seconds >= 0

    def test_empty_plan_succeeds(self, orchestrator):
        report = orchestrator.deploy([])
        assert report.status is RunStatus.SUCCEEDED
        assert report.stages == []


# ------------------------------------------------------------------ #
# Failure handling
# ------------------------------------------------------------------ #


class TestFailureHandling:
    def test_all_non_critical_success_preserves_order(self, orchestrator):
        stages = [_stage(n, i + 1, critical=False) for i, n in enumerate(["a", "b", "c", "d"])]
        report = orchestrator.deploy(stages)
        assert report.status is RunStatus.SUCCEEDED
        assert [r.name for r in report.stages] == ["a", "b", "c", "d"]
        assert report.exit_code == 0

    def test_critical_failure_halts(self, orchestrator, fake_executor):
        fake_executor.fail("b.run")
        report = orchestrator.deploy([_stage("a", 1), _stage("b", 2), _stage("c", 3), _stage("d", 4, critical=False)])
        assert report.status is RunStatus.FAILED_FATAL
        assert [r.name for r in report.stages] == ["a", "b"]
        assert all(r.ordinal <= 2 for r in report.stages)
        assert report.not_run == ["c", "d"]
        assert "c.run" not in fake_executor.calls
        assert report.exit_code == EXIT_CODES[RunStatus.FAILED_FATAL]

    def test_non_critical_failure_continues(self, orchestrator, fake_executor):
        fake_executor.fail("b.run")
        report = orchestrator.deploy([_stage("a", 1), _stage("b", 2, critical=False), _stage("c", 3)])
        assert report.status is RunStatus.FAILED_PARTIAL
        assert [r.status for r in report.stages] == [StageStatus.SUCCESS, StageStatus.FAILED, StageStatus.SUCCESS]
        assert "c.run" in fake_executor.calls
        assert report.not_run == []

    def test_requires_failed_stage_is_skipped(self, orchestrator, fake_executor):
        fake_executor.fail("a.run")
        report = orchestrator.deploy(
            [_stage("a", 1, critical=False), _stage("b", 2, critical=False, requires=("a",)), _stage("c", 3)]
        )
        assert report.status is RunStatus.FAILED_PARTIAL
        b = report.stage("b")
        assert b.status is StageStatus.SKIPPED
        assert b.reason is FailureReason.DEPENDENCY_FAILED
        assert "b.run" not in fake_executor.calls
        assert report.stage("c").status is StageStatus.SUCCESS

    def test_exit_codes_distinct(self):
        assert len(set(EXIT_CODES.values())) == 3
        assert EXIT_CODES[RunStatus.SUCCEEDED] == 0


# ------------------------------------------------------------------ #
# Cancellation
# ------------------------------------------------------------------ #


class TestCancellation:
    def test_cancel_during_readiness(self, orchestrator, fake_probe, fake_executor):
        fake_probe.on_wait = lambda spec: orchestrator.cancel()
        stages = [
            _stage("a", 1, post_readiness=_ready("a-port", 1)),
            _stage("b", 2, critical=False),
            _stage("c", 3, critical=False),
        ]
        report = orchestrator.deploy(stages)
        assert report.cancelled
        assert report.status is RunStatus.FAILED_FATAL
        assert report.stage("a").reason is FailureReason.CANCELLED
        assert report.not_run == ["b", "c"]
        assert fake_executor.calls == ["a.run"]

    def test_cancel_before_deploy_runs_nothing(self, orchestrator, fake_executor):
        orchestrator.cancel()
        report = orchestrator.deploy([_stage("a", 1), _stage("b", 2)])
        assert report.cancelled
        assert report.stages == []
        assert report.not_run == ["a", "b"]
        assert fake_executor.calls == []
        assert report.status is RunStatus.FAILED_FATAL

    def test_cancel_after_last_stage_keeps_result(self, orchestrator, fake_executor, monkeypatch):
        run_step = fake_executor.run_step

        def run_then_cancel(step):
            outcome = run_step(step)
            orchestrator.cancel()
            return outcome

        monkeypatch.setattr(fake_executor, "run_step", run_then_cancel)
        report = orchestrator.deploy([_stage("a", 1)])
        assert report.status is RunStatus.SUCCEEDED
        assert not report.cancelled
        assert report.not_run == []

    def test_cancel_between_stages(self, orchestrator, fake_executor, monkeypatch):
        run_step = fake_executor.run_step

        def run_then_cancel(step):
            outcome = run_step(step)
            orchestrator.cancel()
            return outcome

        monkeypatch.setattr(fake_executor, "run_step", run_then_cancel)
        report = orchestrator.deploy([_stage("a", 1), _stage("b", 2, critical=False)])
        assert report.cancelled
        assert report.status is RunStatus.FAILED_FATAL
        assert report.stage("a").succeeded
        assert report.not_run == ["b"]


# ------------------------------------------------------------------ #
# Reference scenarios: cluster ob, tenant test, password 123456
# ------------------------------------------------------------------ #


def _scenario_stages() -> list[Stage]:
    return [
        _stage("storage-bringup", 1, steps=("launch",), post_readiness=_ready("observer", 2881)),
        _stage("proxy-bringup", 2, steps=("launch",), post_readiness=_ready("obproxy", 2883)),
        _stage("grant-optional-user", 3, critical=False, steps=("grant",)),
    ]


class TestScenarios:
    def test_optional_grant_fails(self, orchestrator, fake_executor, deploy_config):
        assert (deploy_config.cluster_name, deploy_config.tenant_name, deploy_config.password) == (
            "ob", "test", "123456",
        )
        fake_executor.fail("grant-optional-user.grant", exit_code=1)

        report = orchestrator.deploy(_scenario_stages())

        assert report.status is RunStatus.FAILED_PARTIAL
        assert len(report.stages) == 3
        assert [r.status for r in report.stages[:2]] == [StageStatus.SUCCESS, StageStatus.SUCCESS]
        assert report.stages[2].status is StageStatus.FAILED
        assert report.stages[2].reason is FailureReason.NON_ZERO_EXIT
        assert report.exit_code == EXIT_CODES[RunStatus.FAILED_PARTIAL]

    def test_storage_never_ready(self, orchestrator, fake_executor, fake_probe):
        fake_probe.never_ready.add("observer")

        report = orchestrator.deploy(_scenario_stages())

        assert report.status is RunStatus.FAILED_FATAL
        assert len(report.stages) == 1
        assert report.stages[0].status is StageStatus.FAILED
        assert report.stages[0].reason is FailureReason.POSTCONDITION_NOT_READY
        assert fake_executor.calls == ["storage-bringup.launch"]
        assert report.not_run == ["proxy-bringup", "grant-optional-user"]
        assert report.exit_code == EXIT_CODES[RunStatus.FAILED_FATAL]


class TestConstruction:
    def test_run_id_generated(self, stage_runner):
        assert DeploymentOrchestrator(stage_runner).run_id
