"""Deployment orchestration for obstack.

``DeploymentOrchestrator`` owns the ordered stage list of one run. It runs
stages strictly in ordinal order, one at a time, and decides after each one
whether the run continues:

    ┌──────────┐  deploy()  ┌─────────┐   all SUCCESS      ┌───────────────┐
    │ PENDING  │──────────▶│ RUNNING │───────────────────▶│ SUCCEEDED     │
    └──────────┘            └─────────┘                    └───────────────┘
                                 │  critical stage failed  ┌───────────────┐
                                 ├───────────────────────▶│ FAILED_FATAL  │
                                 │  (or cancel())          └───────────────┘
                                 │  non-critical failed    ┌───────────────┐
                                 └───────────────────────▶│ FAILED_PARTIAL│
                                                           └───────────────┘

Why This Matters:
    A bring-up mixes "must succeed for anything after it to make sense"
    stages (the observer never became reachable) with "best effort" ones
    (one optional GRANT failed). The per-stage ``critical`` flag separates
    them: a critical failure halts the run and lists what was not attempted;
    a non-critical failure is recorded and the next stage still runs.

Architecture Decisions:
    - Single thread, no parallelism: later stages rely on files, processes
      and listeners created by earlier ones.
    - Stage failures arrive as data (``StageResult``), never as exceptions,
      so a non-critical failure cannot unwind the run by accident.
    - One orchestrator, one run: terminal states are final and ``deploy()``
      cannot be called twice. Retrying a whole deployment is an operator
      decision.
    - ``cancel()`` is safe to call from another thread or a signal handler:
      it only sets the event shared with the runner and probe.
    - A cancel only marks the report ``cancelled`` when it interrupted a
      stage or kept one from starting. A request that lands after the last
      stage finished leaves the result as it was.

Related Modules:
    - :mod:`obstack.deploy.runner` — Runs each stage
    - :mod:`obstack.deploy.aggregator` — Builds the final report
    - :mod:`obstack.deploy.plan` — Builds the OceanBase stage list

Tags:
    orchestrator, deployment, state-machine, critical, pipeline
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from obstack.core.errors import InvalidPlanError, OrchestrationError
from obstack.core.logging import LogContext, get_logger
from obstack.deploy.aggregator import ResultAggregator
from obstack.deploy.models import Stage
from obstack.deploy.results import (
    DeploymentReport,
    FailureReason,
    RunStatus,
    StageResult,
    StageStatus,
)
from obstack.deploy.runner import StageRunner

logger = get_logger(__name__)


def validate_stages(stages: Sequence[Stage]) -> None:
    """Reject plans with non-increasing ordinals, duplicate names or forward requirements."""
    seen: set[str] = set()
    previous: Stage | None = None
    for stage in stages:
        if stage.name in seen:
            raise InvalidPlanError(f"Duplicate stage name {stage.name!r}").with_context(stage=stage.name)
        if previous is not None and stage.ordinal <= previous.ordinal:
            raise InvalidPlanError(
                f"Stage ordinals must be strictly increasing: {previous.name!r} ({previous.ordinal}) "
                f"is followed by {stage.name!r} ({stage.ordinal})"
            ).with_context(stage=stage.name)
        for required in stage.requires:
            if required not in seen:
                raise InvalidPlanError(
                    f"Stage {stage.name!r} requires {required!r}, which is not an earlier stage"
                ).with_context(stage=stage.name)
        seen.add(stage.name)
        previous = stage


class DeploymentOrchestrator:
    """Runs a stage list in order and produces the ``DeploymentReport``.

    Parameters
    ----------
    runner
        Executes individual stages. Its ``cancel_event`` is what ``cancel()``
        sets.
    aggregator
        Builds the report from stage results.
    run_id
        Identifier bound into every log line of the run.

    Example::

        orchestrator = DeploymentOrchestrator(runner)
        report = orchestrator.deploy(stages)
        sys.exit(report.exit_code)
    """

    def __init__(
        self,
        runner: StageRunner,
        aggregator: ResultAggregator | None = None,
        run_id: str | None = None,
    ) -> None:
        self.runner = runner
        self.aggregator = aggregator or ResultAggregator()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._state = RunStatus.PENDING
        self._report: DeploymentReport | None = None

    @property
    def state(self) -> RunStatus:
        return self._state

    @property
    def report(self) -> DeploymentReport | None:
        """The final report, available once the run is terminal."""
        return self._report if self._state.is_terminal else None

    def cancel(self) -> None:
        """Abort the run: interrupts any readiness wait, no further stages start."""
        if not self.runner.cancel_event.is_set():
            logger.warning("deployment.cancel_requested", run_id=self.run_id)
        self.runner.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.runner.cancel_event.is_set()

    def deploy(self, stages: Sequence[Stage]) -> DeploymentReport:
        """Run ``stages`` in ordinal order and return the terminal report."""
        if self._state is not RunStatus.PENDING:
            raise OrchestrationError(
                f"Orchestrator already used (state={self._state.value}); build a new one per run"
            ).with_context(run_id=self.run_id)
        validate_stages(stages)

        self._state = RunStatus.RUNNING
        results: list[StageResult] = []
        statuses: dict[str, StageStatus] = {}
        not_run: list[str] = []
        interrupted = False

        with LogContext(run_id=self.run_id):
            logger.info("deployment.started", stages=len(stages))
            started_at = datetime.now(UTC).isoformat()

            for index, stage in enumerate(stages):
                if self.cancelled:
                    not_run = [s.name for s in stages[index:]]
                    interrupted = True
                    break

                result = self.runner.run(stage, statuses)
                results.append(result)
                statuses[stage.name] = result.status

                if result.reason is FailureReason.CANCELLED:
                    not_run = [s.name for s in stages[index + 1:]]
                    interrupted = True
                    break
                if stage.critical and result.status is not StageStatus.SUCCESS:
                    not_run = [s.name for s in stages[index + 1:]]
                    logger.error(
                        "deployment.halted",
                        stage=stage.name,
                        reason=result.reason.value if result.reason else None,
                        not_run=not_run,
                    )
                    break
                if result.status is not StageStatus.SUCCESS:
                    logger.warning("deployment.continuing", stage=stage.name, status=result.status.value)

            report = self.aggregator.summarize(
                results,
                not_run=not_run,
                cancelled=interrupted,
                run_id=self.run_id,
            )
            report.mark_complete(started_at=started_at)
            self._report = report
            self._state = report.status

            logger.info(
                "deployment.completed",
                status=report.status.value,
                stages_run=len(results),
                not_run=len(not_run),
                duration_s=round(report.duration_seconds, 3),
            )
        return report
