"""Result models for obstack deployments.

Pydantic v2 models capturing what actually happened during a run. They form
a composition hierarchy: ``CommandOutcome`` (one process) → ``StepOutcome``
(one step, success policy applied) → ``StageResult`` (one stage, plus any
readiness waits and diagnostics) → ``DeploymentReport`` (the whole run).

Why This Matters:
    A failed bring-up has to say exactly which stage and which step broke,
    what the command printed, and what was never attempted because of it.
    CI wants an exit code, operators want readable text, log shippers want
    JSON. The report supports all three via ``exit_code``,
    ``summary`` and ``model_dump_json()``.

Key Concepts:
    FailureReason: Why a step or stage failed (LAUNCH_FAILURE, TIMEOUT,
        NON_ZERO_EXIT, PRECONDITION_NOT_READY, ...).
    StageStatus: SUCCESS, FAILED, SKIPPED.
    RunStatus: PENDING → RUNNING → SUCCEEDED | FAILED_PARTIAL | FAILED_FATAL.
    DeploymentReport.exit_code: 0 / 2 / 1 for the three terminal states.

Architecture Decisions:
    - ``mark_complete()`` pattern: the producer finalises timestamps and
      duration when it is done.
    - Captured output is stored in full here; excerpts are taken only when
      rendering the human-readable summary.

Tags:
    results, models, pydantic, deployment, status, reporting, exit-codes
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FailureReason(str, Enum):
    """Why a step or stage did not succeed."""

    LAUNCH_FAILURE = "LAUNCH_FAILURE"  # Process could not be started
    TIMEOUT = "TIMEOUT"  # Killed after exceeding its time budget
    NON_ZERO_EXIT = "NON_ZERO_EXIT"  # Ran to completion, signalled failure
    UNEXPECTED_OUTPUT = "UNEXPECTED_OUTPUT"  # Exit 0 but success predicate rejected output
    PRECONDITION_NOT_READY = "PRECONDITION_NOT_READY"
    POSTCONDITION_NOT_READY = "POSTCONDITION_NOT_READY"
    MISSING_FIELD = "MISSING_FIELD"  # Template referenced an absent config field
    CONFIG_WRITE_FAILURE = "CONFIG_WRITE_FAILURE"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"  # A required earlier stage did not succeed
    CANCELLED = "CANCELLED"


class StageStatus(str, Enum):
    """Status of a single stage."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RunStatus(str, Enum):
    """Status of a whole deployment run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED_PARTIAL = "FAILED_PARTIAL"
    FAILED_FATAL = "FAILED_FATAL"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED_PARTIAL, RunStatus.FAILED_FATAL)


class ProbeStatus(str, Enum):
    """Outcome of a readiness wait."""

    READY = "READY"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.FAILED_FATAL: 1,
    RunStatus.FAILED_PARTIAL: 2,
}
"""Process exit code per terminal run status."""

CONFIG_ERROR_EXIT_CODE = 3
"""Exit code when the configuration could not be constructed or rendered."""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed(started_at: str, completed_at: str) -> float:
    start = datetime.fromisoformat(started_at)
    end = datetime.fromisoformat(completed_at)
    return (end - start).total_seconds()


# ---------------------------------------------------------------------------
# Command / step outcomes
# ---------------------------------------------------------------------------


class CommandOutcome(BaseModel):
    """Raw result of running one external command."""

    command: str = ""  # Display form, secrets redacted
    exit_code: int | None = None  # None when never launched or killed
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    reason: FailureReason | None = None
    error: str | None = None

    @property
    def launched(self) -> bool:
        return self.reason is not FailureReason.LAUNCH_FAILURE

    @property
    def timed_out(self) -> bool:
        return self.reason is FailureReason.TIMEOUT


class StepOutcome(BaseModel):
    """Result of one step, with its success policy applied."""

    name: str
    command: str = ""
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    succeeded: bool = False
    reason: FailureReason | None = None
    error: str | None = None

    @classmethod
    def from_outcome(cls, name: str, outcome: CommandOutcome, succeeded: bool) -> StepOutcome:
        reason = outcome.reason
        if not succeeded and reason is None:
            reason = FailureReason.UNEXPECTED_OUTPUT
        return cls(
            name=name,
            command=outcome.command,
            exit_code=outcome.exit_code,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            duration_seconds=outcome.duration_seconds,
            succeeded=succeeded,
            reason=None if succeeded else reason,
            error=outcome.error,
        )


class ReadinessOutcome(BaseModel):
    """Result of one readiness wait."""

    name: str
    target: str = ""
    phase: str = "post"  # "pre" or "post"
    status: ProbeStatus = ProbeStatus.TIMED_OUT
    attempts: int = 0
    elapsed_seconds: float = 0.0
    detail: str = ""  # Last observation (error text or command output)

    @property
    def ready(self) -> bool:
        return self.status is ProbeStatus.READY


# ---------------------------------------------------------------------------
# Stage / run results
# ---------------------------------------------------------------------------


class StageResult(BaseModel):
    """Result of running (or skipping) one stage."""

    name: str
    ordinal: int
    critical: bool = True
    status: StageStatus = StageStatus.SUCCESS
    reason: FailureReason | None = None
    failed_step: str | None = None
    error: str | None = None
    steps: list[StepOutcome] = Field(default_factory=list)
    readiness: list[ReadinessOutcome] = Field(default_factory=list)
    diagnostics: list[StepOutcome] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCESS

    @property
    def failed_step_outcome(self) -> StepOutcome | None:
        if self.failed_step is None:
            return None
        for outcome in self.steps:
            if outcome.name == self.failed_step:
                return outcome
        return None

    def fail(self, reason: FailureReason, error: str | None = None, step: str | None = None) -> None:
        """Record the stage as failed."""
        self.status = StageStatus.FAILED
        self.reason = reason
        self.error = error
        self.failed_step = step

    def mark_complete(self) -> None:
        """Finalise completion timestamp and duration."""
        self.completed_at = _now()
        self.duration_seconds = _elapsed(self.started_at, self.completed_at)


class DeploymentReport(BaseModel):
    """The final, structured record of one deployment run."""

    run_id: str = ""
    status: RunStatus = RunStatus.PENDING
    stages: list[StageResult] = Field(default_factory=list)
    not_run: list[str] = Field(default_factory=list)
    cancelled: bool = False
    summary: str = ""
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def exit_code(self) -> int:
        """Process exit code for this report's status."""
        if not self.status.is_terminal:
            raise ValueError(f"Report is not terminal (status={self.status.value})")
        return EXIT_CODES[self.status]

    @property
    def failed_stages(self) -> list[StageResult]:
        return [s for s in self.stages if s.status is StageStatus.FAILED]

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def mark_complete(self, started_at: str | None = None) -> None:
        """Finalise run timestamps and duration."""
        if started_at:
            self.started_at = started_at
        self.completed_at = _now()
        self.duration_seconds = _elapsed(self.started_at, self.completed_at)
