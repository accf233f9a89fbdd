"""Stage execution for obstack deployments.

``StageRunner.run()`` turns one ``Stage`` into one ``StageResult``:

    requires met? ──no──▶ SKIPPED (DEPENDENCY_FAILED)
        │
    pre-readiness ──not ready──▶ FAILED (PRECONDITION_NOT_READY), no steps run
        │
    render + write files ──missing field──▶ FAILED (MISSING_FIELD)
        │
    steps, in order ──first failure──▶ FAILED (step's reason), rest not run
        │
    post-readiness ──not ready──▶ FAILED (POSTCONDITION_NOT_READY)
        │
    SUCCESS

When a stage fails its ``diagnostics`` steps run and their outcomes are
attached to the result; they never change the status.

Steps within one stage are a single logical unit of work (e.g. "set the
password, then verify it"), so the first failing step ends the stage.

Nothing in here raises for a failed step or stage: failures are recorded in
the ``StageResult`` and handed back to the orchestrator, which decides
whether the run continues.

Related Modules:
    - :mod:`obstack.deploy.orchestrator` — Calls ``run()`` once per stage
    - :mod:`obstack.deploy.executor` — Runs steps and diagnostics
    - :mod:`obstack.deploy.probe` — Readiness waits
    - :mod:`obstack.deploy.render` — Renders stage files

Tags:
    stage, runner, readiness, steps, diagnostics
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from obstack.core.errors import MissingFieldError
from obstack.core.logging import get_logger
from obstack.deploy.executor import CommandExecutor
from obstack.deploy.models import ReadinessSpec, RenderedFile, Stage
from obstack.deploy.probe import ReadinessProbe
from obstack.deploy.render import ConfigRenderer
from obstack.deploy.results import (
    FailureReason,
    ProbeStatus,
    StageResult,
    StageStatus,
)

logger = get_logger(__name__)


class StageRunner:
    """Executes one bring-up stage at a time.

    Parameters
    ----------
    executor
        Runs steps and diagnostics.
    probe
        Waits on readiness gates.
    renderer
        Renders stage files.
    config
        Deployment config that stage files are rendered against.
    cancel_event
        Shared with the orchestrator; setting it aborts any in-progress
        readiness wait.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        probe: ReadinessProbe,
        renderer: ConfigRenderer | None = None,
        config: Any = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.executor = executor
        self.probe = probe
        self.renderer = renderer or ConfigRenderer()
        self.config = config
        self.cancel_event = cancel_event or threading.Event()

    def run(self, stage: Stage, prior: Mapping[str, StageStatus] | None = None) -> StageResult:
        """Run ``stage`` and return its result. ``prior`` maps earlier stage names to status."""
        result = StageResult(name=stage.name, ordinal=stage.ordinal, critical=stage.critical)
        logger.info(
            "stage.started",
            stage=stage.name,
            ordinal=stage.ordinal,
            critical=stage.critical,
            steps=len(stage.steps),
        )

        self._execute(stage, result, prior or {})

        if result.status is StageStatus.FAILED and stage.diagnostics:
            self._collect_diagnostics(stage, result)

        result.mark_complete()
        log = logger.info if result.status is StageStatus.SUCCESS else logger.warning
        log(
            "stage.completed",
            stage=stage.name,
            status=result.status.value,
            reason=result.reason.value if result.reason else None,
            failed_step=result.failed_step,
            duration_s=round(result.duration_seconds, 3),
        )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _execute(self, stage: Stage, result: StageResult, prior: Mapping[str, StageStatus]) -> None:
        unmet = [name for name in stage.requires if prior.get(name) is not StageStatus.SUCCESS]
        if unmet:
            result.status = StageStatus.SKIPPED
            result.reason = FailureReason.DEPENDENCY_FAILED
            result.error = f"Required stage(s) did not succeed: {', '.join(unmet)}"
            return

        if stage.pre_readiness and not self._wait(stage.pre_readiness, result, "pre"):
            return

        for rendered in stage.files:
            if not self._write_file(rendered, result):
                return

        for step in stage.steps:
            if self.cancel_event.is_set():
                result.fail(FailureReason.CANCELLED, "Deployment cancelled before step ran", step=step.name)
                return
            outcome = self.executor.run_step(step)
            result.steps.append(outcome)
            logger.info(
                "step.completed",
                stage=stage.name,
                step=step.name,
                succeeded=outcome.succeeded,
                exit_code=outcome.exit_code,
                duration_s=round(outcome.duration_seconds, 3),
            )
            if not outcome.succeeded:
                reason = outcome.reason or FailureReason.UNEXPECTED_OUTPUT
                result.fail(reason, outcome.error or f"Step {step.name!r} failed", step=step.name)
                return

        if stage.post_readiness:
            self._wait(stage.post_readiness, result, "post")

    def _wait(self, spec: ReadinessSpec, result: StageResult, phase: str) -> bool:
        outcome = self.probe.wait_until_ready(spec, cancel=self.cancel_event, phase=phase)
        result.readiness.append(outcome)
        if outcome.ready:
            return True
        if outcome.status is ProbeStatus.CANCELLED:
            result.fail(FailureReason.CANCELLED, f"Readiness wait {spec.name!r} cancelled")
        elif phase == "pre":
            result.fail(
                FailureReason.PRECONDITION_NOT_READY,
                f"{spec.target} not ready after {spec.timeout_seconds:g}s: {outcome.detail}",
            )
        else:
            result.fail(
                FailureReason.POSTCONDITION_NOT_READY,
                f"{spec.target} not ready after {spec.timeout_seconds:g}s: {outcome.detail}",
            )
        return False

    def _write_file(self, rendered: RenderedFile, result: StageResult) -> bool:
        name = rendered.destination.name
        try:
            if rendered.format == "json":
                text = self.renderer.render_json(rendered.template, self.config, name=name)  # type: ignore[arg-type]
            else:
                text = self.renderer.render(rendered.template, self.config, name=name)  # type: ignore[arg-type]
        except MissingFieldError as exc:
            result.fail(FailureReason.MISSING_FIELD, exc.message)
            return False

        try:
            rendered.destination.parent.mkdir(parents=True, exist_ok=True)
            rendered.destination.write_text(text, encoding="utf-8")
        except OSError as exc:
            result.fail(FailureReason.CONFIG_WRITE_FAILURE, f"Could not write {rendered.destination}: {exc}")
            return False

        result.files.append(str(rendered.destination))
        logger.info("config.written", stage=result.name, path=str(rendered.destination))
        return True

    def _collect_diagnostics(self, stage: Stage, result: StageResult) -> None:
        for step in stage.diagnostics:
            result.diagnostics.append(self.executor.run_step(step))
