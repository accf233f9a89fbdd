"""Report artifacts for obstack deployments.

Writes a finished ``DeploymentReport`` to a self-contained ``{run_id}/``
directory that can be archived from the container or uploaded as a CI
artifact.

Output Structure::

    {output_dir}/{run_id}/
    ├── report.json          # DeploymentReport.model_dump_json()
    ├── summary.txt          # the rendered text summary
    └── stages/
        ├── 01-config-server.log
        ├── 03-storage-bringup.log
        └── ...

The per-stage logs carry the *full* captured output of every step and
diagnostic; the summary only shows excerpts.

Tags:
    logs, collector, artifacts, reporting, structured-output
"""

from __future__ import annotations

from pathlib import Path

from obstack.core.logging import get_logger
from obstack.deploy.results import DeploymentReport, StageResult, StepOutcome

logger = get_logger(__name__)


class LogCollector:
    """Writes deployment report artifacts under ``{output_dir}/{run_id}/``.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def stages_dir(self) -> Path:
        """Get or create the directory for per-stage logs."""
        d = self.run_dir / "stages"
        d.mkdir(parents=True, exist_ok=True)
        return d

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def write_report(self, report: DeploymentReport) -> Path:
        """Write every artifact for ``report``; returns the run directory."""
        self.write_json(report)
        self.write_summary(report)
        for stage in report.stages:
            self.write_stage_log(stage)
        logger.info("report.written", path=str(self.run_dir), stages=len(report.stages))
        return self.run_dir

    def write_json(self, report: DeploymentReport) -> Path:
        """Write machine-readable report JSON."""
        path = self.run_dir / "report.json"
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        return path

    def write_summary(self, report: DeploymentReport) -> Path:
        path = self.run_dir / "summary.txt"
        path.write_text(report.summary + "\n", encoding="utf-8")
        return path

    def write_stage_log(self, stage: StageResult) -> Path:
        """Write one stage's full captured output."""
        path = self.stages_dir() / f"{stage.ordinal:02d}-{stage.name}.log"
        path.write_text(self._stage_text(stage), encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    @staticmethod
    def _stage_text(stage: StageResult) -> str:
        lines = [
            f"stage: {stage.name}",
            f"ordinal: {stage.ordinal}",
            f"critical: {str(stage.critical).lower()}",
            f"status: {stage.status.value}",
        ]
        if stage.reason:
            lines.append(f"reason: {stage.reason.value}")
        if stage.failed_step:
            lines.append(f"failed_step: {stage.failed_step}")
        if stage.error:
            lines.append(f"error: {stage.error}")
        for path in stage.files:
            lines.append(f"wrote: {path}")
        for probe in stage.readiness:
            lines.append(
                f"readiness {probe.name} ({probe.phase}): {probe.status.value} "
                f"attempts={probe.attempts} elapsed={probe.elapsed_seconds:.1f}s target={probe.target}"
            )
            if probe.detail:
                lines.append(f"  last: {probe.detail}")
        for outcome in stage.steps:
            lines.extend(_outcome_block("step", outcome))
        for outcome in stage.diagnostics:
            lines.extend(_outcome_block("diagnostic", outcome))
        return "\n".join(lines) + "\n"


def _outcome_block(kind: str, outcome: StepOutcome) -> list[str]:
    lines = [
        "",
        f"=== {kind} {outcome.name} ===",
        f"$ {outcome.command}",
        f"exit_code: {outcome.exit_code}  duration: {outcome.duration_seconds:.2f}s",
    ]
    if outcome.reason:
        lines.append(f"reason: {outcome.reason.value}")
    if outcome.error:
        lines.append(f"error: {outcome.error}")
    if outcome.stdout:
        lines.append("--- stdout ---")
        lines.append(outcome.stdout.rstrip("\n"))
    if outcome.stderr:
        lines.append("--- stderr ---")
        lines.append(outcome.stderr.rstrip("\n"))
    return lines
