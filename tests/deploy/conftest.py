"""
Fakes for stage, orchestrator and scenario tests.

``FakeExecutor`` and ``FakeProbe`` stand in for the process and readiness
layers so the orchestration logic can be exercised without spawning
anything. Both record what they were asked to do.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import pytest

from obstack.deploy.models import ReadinessSpec, Step
from obstack.deploy.orchestrator import DeploymentOrchestrator
from obstack.deploy.render import ConfigRenderer
from obstack.deploy.results import (
    CommandOutcome,
    FailureReason,
    ProbeStatus,
    ReadinessOutcome,
    StepOutcome,
)
from obstack.deploy.runner import StageRunner


class FakeExecutor:
    """Succeeds every step unless told otherwise by step name."""

    def __init__(self) -> None:
        self.exit_codes: dict[str, int | None] = {}
        self.stdout: dict[str, str] = {}
        self.reasons: dict[str, FailureReason] = {}
        self.calls: list[str] = []

    def fail(self, step: str, exit_code: int | None = 1, reason: FailureReason | None = None) -> None:
        self.exit_codes[step] = exit_code
        if reason is not None:
            self.reasons[step] = reason

    def run_step(self, step: Step) -> StepOutcome:
        self.calls.append(step.name)
        exit_code = self.exit_codes.get(step.name, 0)
        reason = self.reasons.get(step.name)
        if reason is None and exit_code != 0:
            reason = FailureReason.NON_ZERO_EXIT
        outcome = CommandOutcome(
            command=step.name,
            exit_code=exit_code,
            stdout=self.stdout.get(step.name, ""),
            stderr="" if exit_code == 0 else f"{step.name} failed\n",
            reason=reason,
            error=None if exit_code == 0 else f"Exited with code {exit_code}",
        )
        return StepOutcome.from_outcome(step.name, outcome, step.succeeded(outcome))


class FakeProbe:
    """Reports READY for every readiness spec not listed in ``never_ready``."""

    def __init__(self) -> None:
        self.never_ready: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.on_wait: Callable[[ReadinessSpec], None] | None = None

    def wait_until_ready(
        self,
        spec: ReadinessSpec,
        cancel: threading.Event | None = None,
        phase: str = "post",
    ) -> ReadinessOutcome:
        self.calls.append((spec.name, phase))
        if self.on_wait is not None:
            self.on_wait(spec)
        if cancel is not None and cancel.is_set():
            status = ProbeStatus.CANCELLED
        elif spec.name in self.never_ready:
            status = ProbeStatus.TIMED_OUT
        else:
            status = ProbeStatus.READY
        return ReadinessOutcome(
            name=spec.name,
            target=spec.target,
            phase=phase,
            status=status,
            attempts=1 if status is ProbeStatus.READY else 3,
            elapsed_seconds=0.0 if status is ProbeStatus.READY else spec.timeout_seconds,
            detail="connection refused" if status is ProbeStatus.TIMED_OUT else "",
        )


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def stage_runner(fake_executor, fake_probe, deploy_config) -> StageRunner:
    return StageRunner(fake_executor, fake_probe, ConfigRenderer(), deploy_config)  # type: ignore[arg-type]


@pytest.fixture
def orchestrator(stage_runner) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(stage_runner, run_id="run-test")
