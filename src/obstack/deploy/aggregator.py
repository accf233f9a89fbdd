"""Result aggregation for obstack deployments.

Collects ``StageResult`` objects into a ``DeploymentReport``, derives the
overall status and renders the human-readable summary.

Status derivation:
    - SUCCEEDED      every stage result is SUCCESS
    - FAILED_FATAL   a critical stage failed (or was skipped), or the run was cancelled
    - FAILED_PARTIAL anything else (non-critical failures, skipped stages)

The summary names every stage with its status, and for each failed stage the
reason, the failed step, the error and the tail of its captured output. Stages
that never ran because the run halted are listed at the end.

``summarize()`` is deterministic: the same results always produce the same
status and byte-identical summary text (no wall-clock values are rendered).

Tags:
    aggregator, report, summary, status, rendering
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from obstack.deploy.results import (
    DeploymentReport,
    RunStatus,
    StageResult,
    StageStatus,
    StepOutcome,
)

EXCERPT_LINES = 10


def _tail(text: str, lines: int = EXCERPT_LINES) -> list[str]:
    return text.strip().splitlines()[-lines:]


class ResultAggregator:
    """Builds a ``DeploymentReport`` from stage results."""

    def __init__(self, excerpt_lines: int = EXCERPT_LINES) -> None:
        self.excerpt_lines = excerpt_lines

    def summarize(
        self,
        results: Sequence[StageResult],
        not_run: Iterable[str] = (),
        cancelled: bool = False,
        run_id: str = "",
    ) -> DeploymentReport:
        """Aggregate ``results`` into a terminal report."""
        report = DeploymentReport(
            run_id=run_id,
            status=self.derive_status(results, cancelled),
            stages=list(results),
            not_run=list(not_run),
            cancelled=cancelled,
        )
        report.summary = self.render_text(report)
        return report

    @staticmethod
    def derive_status(results: Sequence[StageResult], cancelled: bool = False) -> RunStatus:
        if cancelled or any(r.critical and r.status is not StageStatus.SUCCESS for r in results):
            return RunStatus.FAILED_FATAL
        if all(r.status is StageStatus.SUCCESS for r in results):
            return RunStatus.SUCCEEDED
        return RunStatus.FAILED_PARTIAL

    # ------------------------------------------------------------------
    # Text rendering
    # ------------------------------------------------------------------

    def render_text(self, report: DeploymentReport) -> str:
        ok = sum(1 for s in report.stages if s.status is StageStatus.SUCCESS)
        total = len(report.stages) + len(report.not_run)
        lines = [f"Deployment {report.status.value}: {ok}/{total} stages succeeded"]

        width = max((len(s.name) for s in report.stages), default=0)
        for stage in report.stages:
            kind = "critical" if stage.critical else "optional"
            line = f"  [{stage.ordinal:02d}] {stage.name:<{width}}  {stage.status.value:<7}  {kind}"
            if stage.reason:
                line += f"  {stage.reason.value}"
            if stage.failed_step:
                line += f"  step={stage.failed_step}"
            lines.append(line)
            if stage.status is not StageStatus.SUCCESS:
                lines.extend(self._stage_details(stage))

        if report.not_run:
            why = "cancelled" if report.cancelled else "halted after critical failure"
            lines.append(f"Not run ({why}): {', '.join(report.not_run)}")

        return "\n".join(lines)

    def _stage_details(self, stage: StageResult) -> list[str]:
        indent = "       "
        details = []
        if stage.error:
            details.append(f"{indent}{stage.error}")
        failed = stage.failed_step_outcome
        if failed is not None:
            details.extend(self._output_excerpt(failed, indent))
        for probe in stage.readiness:
            if not probe.ready:
                details.append(
                    f"{indent}readiness {probe.name} ({probe.phase}) {probe.status.value} "
                    f"after {probe.attempts} attempt(s)"
                )
        for diag in stage.diagnostics:
            details.append(f"{indent}diagnostic {diag.name} (exit {diag.exit_code}):")
            details.extend(self._output_excerpt(diag, indent + "  ", labels=False))
        return details

    def _output_excerpt(self, outcome: StepOutcome, indent: str, labels: bool = True) -> list[str]:
        lines = []
        for label, text in (("stdout", outcome.stdout), ("stderr", outcome.stderr)):
            tail = _tail(text, self.excerpt_lines)
            if not tail:
                continue
            if labels:
                lines.append(f"{indent}{label}:")
            lines.extend(f"{indent}  | {line}" for line in tail)
        return lines
