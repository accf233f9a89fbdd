"""obstack.deploy — staged bring-up of an OceanBase observer, obproxy and binlog service.

Takes a cold container to a query-able database by running an ordered list
of stages. Each stage is a short sequence of commands or SQL statements,
optionally gated by readiness polls, and flagged critical or not. The run
ends in one auditable ``DeploymentReport`` and a process exit code.

Why This Matters:
    The shell entrypoint this replaces used fixed sleeps, ignored the exit
    codes it printed and kept going after the observer never came up. A
    failure three stages later then looked like a proxy problem. Here every
    wait is bounded, every command's outcome is captured, and a critical
    failure stops the run with the failing stage and step named.

Key Concepts:
    DeploymentConfig: Frozen Pydantic model (cluster, tenant, password,
        sizing, ports, paths, timeouts).
    Stage / Step / ReadinessSpec: Frozen descriptions of what to run.
    CommandExecutor: One external process per call, outcome as data.
    ReadinessProbe: Bounded, cancellable fixed-interval polling.
    ConfigRenderer: ``${field}`` templates → config text, fails on gaps.
    StageRunner: One stage → one ``StageResult``.
    DeploymentOrchestrator: Stage list → ``DeploymentReport``.
    ResultAggregator: Status derivation and the text summary.
    LogCollector: Writes report artifacts to ``{output_dir}/{run_id}/``.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                  DeploymentOrchestrator                      │
    ├──────────────────────────────────────────────────────────────┤
    │                       StageRunner                            │
    ├──────────────────┬──────────────────────┬────────────────────┤
    │  CommandExecutor │    ReadinessProbe    │   ConfigRenderer   │
    ├──────────────────┴──────────────────────┴────────────────────┤
    │   ResultAggregator │ LogCollector │ Result Models            │
    └──────────────────────────────────────────────────────────────┘

Related Modules:
    - :mod:`obstack.deploy.plan` — The OceanBase stage list
    - :mod:`obstack.cli.deploy` — CLI commands (``obstack deploy``)

Tags:
    deploy, oceanbase, obproxy, binlog, orchestration, readiness, stages

Example:
    >>> from obstack.deploy import DeploymentConfig, build_stages
    >>> config = DeploymentConfig(cluster_name="ob", node_ip="127.0.0.1")
    >>> [s.name for s in build_stages(config)][:3]
    ['config-server', 'prepare-store', 'storage-bringup']
"""

from __future__ import annotations

from obstack.deploy.aggregator import ResultAggregator
from obstack.deploy.collector import LogCollector
from obstack.deploy.config import DeploymentConfig, PathConfig, PortConfig, TimeoutConfig
from obstack.deploy.executor import CommandExecutor
from obstack.deploy.models import (
    CommandSpec,
    ProbeKind,
    QuerySpec,
    ReadinessSpec,
    RenderedFile,
    Stage,
    Step,
)
from obstack.deploy.orchestrator import DeploymentOrchestrator
from obstack.deploy.plan import build_orchestrator, build_stages, render_artifacts
from obstack.deploy.probe import ReadinessProbe
from obstack.deploy.render import ConfigRenderer
from obstack.deploy.results import (
    CommandOutcome,
    DeploymentReport,
    FailureReason,
    ReadinessOutcome,
    RunStatus,
    StageResult,
    StageStatus,
    StepOutcome,
)
from obstack.deploy.runner import StageRunner

__all__ = [
    "CommandExecutor",
    "CommandOutcome",
    "CommandSpec",
    "ConfigRenderer",
    "DeploymentConfig",
    "DeploymentOrchestrator",
    "DeploymentReport",
    "FailureReason",
    "LogCollector",
    "PathConfig",
    "PortConfig",
    "ProbeKind",
    "QuerySpec",
    "ReadinessOutcome",
    "ReadinessProbe",
    "ReadinessSpec",
    "RenderedFile",
    "ResultAggregator",
    "RunStatus",
    "Stage",
    "StageResult",
    "StageRunner",
    "StageStatus",
    "Step",
    "StepOutcome",
    "TimeoutConfig",
    "build_orchestrator",
    "build_stages",
    "render_artifacts",
]
