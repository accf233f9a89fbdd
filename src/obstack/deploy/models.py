"""Stage, step and readiness specifications.

Frozen dataclasses describing *what* a deployment does. They are built once
from a ``DeploymentConfig`` (see :mod:`obstack.deploy.plan`) before the run
starts and are never mutated; everything produced while running lives in
:mod:`obstack.deploy.results`.

Key Concepts:
    CommandSpec: A process invocation (argv, cwd, env, optional stdin).
    QuerySpec: A SQL statement plus connection parameters, executed through
        the configured client binary.
    Step: One atomic action with a success policy (exit code zero, or a
        custom predicate over the captured outcome).
    ReadinessSpec: A polled condition (TCP port, command/query, process)
        gating entry to or exit from a stage.
    RenderedFile: Configuration text rendered from the config and written
        before a stage's steps run.
    Stage: Ordered steps with a ``critical`` flag, optional readiness gates,
        optional diagnostics and optional ``requires`` on earlier stages.

Architecture Decisions:
    - Frozen dataclasses (not Pydantic): specs are built by code, not parsed
      from user input, and carry callables.
    - Success predicates receive the whole ``CommandOutcome`` so a step can
      check output as well as the exit code.

Tags:
    stage, step, readiness, specs, models, dataclass
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from obstack.deploy.probe import ProbeObservation
    from obstack.deploy.results import CommandOutcome


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandSpec:
    """A single external process invocation."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    input: str | None = None
    """Text written to the process's stdin."""
    detach: bool = False
    """The command leaves a daemon running. Output is captured through temporary
    files instead of pipes, so the daemon cannot hold the step open."""

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec.argv must not be empty")
        object.__setattr__(self, "argv", tuple(self.argv))


@dataclass(frozen=True)
class QuerySpec:
    """A SQL statement plus the connection it runs on."""

    sql: str
    host: str = "127.0.0.1"
    port: int = 2881
    user: str | None = "root"
    """None sends no ``-u`` (the binlog service takes none)."""
    password: str | None = None
    database: str | None = None
    flags: tuple[str, ...] = ("-A",)


Command = CommandSpec | QuerySpec


# ---------------------------------------------------------------------------
# Success predicates
# ---------------------------------------------------------------------------


def exit_code_zero(outcome: CommandOutcome) -> bool:
    """Default success policy."""
    return outcome.exit_code == 0


def output_contains(text: str) -> Callable[[CommandOutcome], bool]:
    """Succeed on exit code zero when stdout contains ``text``."""

    def _check(outcome: CommandOutcome) -> bool:
        return outcome.exit_code == 0 and text in outcome.stdout

    _check.__name__ = f"output_contains({text!r})"
    return _check


def output_not_empty(outcome: CommandOutcome) -> bool:
    """Succeed on exit code zero with at least one line of output (a row came back)."""
    return outcome.exit_code == 0 and bool(outcome.stdout.strip())


@dataclass(frozen=True)
class Step:
    """One atomic executable action within a stage."""

    name: str
    command: Command
    timeout_seconds: float = 300.0
    success: Callable[[CommandOutcome], bool] | None = None
    """None means exit-code-zero."""

    def succeeded(self, outcome: CommandOutcome) -> bool:
        if outcome.exit_code is None:
            return False
        return (self.success or exit_code_zero)(outcome)


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


class ProbeKind(str, Enum):
    """What a readiness probe polls."""

    TCP = "tcp"  # Can a TCP connection be opened?
    COMMAND = "command"  # Does a command / query succeed?
    PROCESS = "process"  # Is a matching process running?


@dataclass(frozen=True)
class ReadinessSpec:
    """A polled readiness condition with a hard timeout."""

    name: str
    kind: ProbeKind
    host: str = "127.0.0.1"
    port: int | None = None
    command: Command | None = None
    process_name: str | None = None
    interval_seconds: float = 5.0
    timeout_seconds: float = 120.0
    ready: Callable[[ProbeObservation], bool] | None = None
    """Predicate over the observation; None means the probe action succeeded."""

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.timeout_seconds < 0:
            raise ValueError("timeout_seconds must not be negative")
        if self.kind is ProbeKind.TCP and self.port is None:
            raise ValueError(f"TCP readiness {self.name!r} needs a port")
        if self.kind is ProbeKind.COMMAND and self.command is None:
            raise ValueError(f"Command readiness {self.name!r} needs a command")
        if self.kind is ProbeKind.PROCESS and not self.process_name:
            raise ValueError(f"Process readiness {self.name!r} needs a process_name")

    @property
    def target(self) -> str:
        """Human-readable description of what is polled."""
        if self.kind is ProbeKind.TCP:
            return f"tcp://{self.host}:{self.port}"
        if self.kind is ProbeKind.PROCESS:
            return f"process:{self.process_name}"
        if isinstance(self.command, QuerySpec):
            return f"query@{self.command.host}:{self.command.port}"
        return "command"


# ---------------------------------------------------------------------------
# Rendered configuration files
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderedFile:
    """Configuration rendered from the deployment config and written to disk."""

    destination: Path
    template: str | Mapping[str, Any]
    format: str = "text"  # "text" or "json"

    def __post_init__(self) -> None:
        if self.format not in ("text", "json"):
            raise ValueError(f"Unknown rendered file format: {self.format!r}")
        if self.format == "text" and not isinstance(self.template, str):
            raise ValueError("Text templates must be strings")
        object.__setattr__(self, "destination", Path(self.destination))


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Stage:
    """One named phase of the deployment pipeline."""

    name: str
    ordinal: int
    steps: tuple[Step, ...] = ()
    critical: bool = True
    pre_readiness: ReadinessSpec | None = None
    post_readiness: ReadinessSpec | None = None
    files: tuple[RenderedFile, ...] = ()
    diagnostics: tuple[Step, ...] = ()
    """Run only when the stage fails; outcomes are kept for the report."""
    requires: tuple[str, ...] = ()
    """Earlier stages that must have succeeded for this one to run."""
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "files", tuple(self.files))
        object.__setattr__(self, "diagnostics", tuple(self.diagnostics))
        object.__setattr__(self, "requires", tuple(self.requires))
