"""
CLI: ``obstack deploy`` — run, inspect and render the OceanBase bring-up.

Usage::

    obstack deploy run                         # config from environment
    obstack deploy run --config ob.json        # config from a JSON file
    obstack deploy run --json                  # report as JSON on stdout
    obstack deploy run --hold                  # keep the container alive afterwards

    obstack deploy plan                        # table of stages
    obstack deploy render                      # rendered option strings and deploy.conf.json

Exit codes of ``deploy run``: 0 succeeded, 2 a non-critical stage failed,
1 a critical stage failed or the run was cancelled, 3 the configuration
could not be loaded or rendered.
"""

from __future__ import annotations

import json
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from obstack.core.errors import ObstackError
from obstack.core.logging import configure_logging, get_logger
from obstack.deploy.collector import LogCollector
from obstack.deploy.config import DeploymentConfig
from obstack.deploy.orchestrator import DeploymentOrchestrator
from obstack.deploy.plan import build_orchestrator, build_stages, render_artifacts
from obstack.deploy.results import CONFIG_ERROR_EXIT_CODE, DeploymentReport, RunStatus, StageStatus

app = typer.Typer(no_args_is_help=True)
console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

_STATUS_STYLE = {
    StageStatus.SUCCESS: "green",
    StageStatus.FAILED: "red",
    StageStatus.SKIPPED: "yellow",
}

_RUN_STYLE = {
    RunStatus.SUCCEEDED: "bold green",
    RunStatus.FAILED_PARTIAL: "bold yellow",
    RunStatus.FAILED_FATAL: "bold red",
}


# ── Shared helpers ───────────────────────────────────────────────────────


def _config_error(exc: ObstackError) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red] ({type(exc).__name__}): {exc.message}")
    raise typer.Exit(code=CONFIG_ERROR_EXIT_CODE)


def _load_config(config_file: Path | None, output_dir: str | None = None) -> DeploymentConfig:
    """Config from ``--config`` if given, otherwise from the environment."""
    overrides: dict[str, Any] = {}
    if output_dir:
        overrides["output_dir"] = Path(output_dir)
    try:
        if config_file is not None:
            return DeploymentConfig.from_file(config_file, **overrides)
        return DeploymentConfig.from_env(**overrides)
    except ObstackError as exc:
        _config_error(exc)


@contextmanager
def _cancel_on_signals(orchestrator: DeploymentOrchestrator) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``orchestrator.cancel()`` for the duration of the block."""

    def handler(signum: int, frame: Any) -> None:
        logger.warning("signal.received", signal=signal.Signals(signum).name)
        orchestrator.cancel()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _hold(interval: float, stop: threading.Event) -> None:
    """Keep the process alive, logging a heartbeat, until ``stop`` is set."""
    logger.info("hold.started", interval_s=interval)
    while not stop.wait(interval):
        logger.info("hold.heartbeat")
    logger.info("hold.stopped")


# ── Run ──────────────────────────────────────────────────────────────────


@app.command("run")
def deploy_run(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="JSON config file (default: environment)."),
    output_dir: str | None = typer.Option(None, "--output", "-o", help="Directory for report artifacts."),
    json_out: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    hold: bool = typer.Option(False, "--hold/--no-hold", help="Keep running after the deployment until interrupted."),
    hold_interval: float = typer.Option(30.0, "--hold-interval", help="Heartbeat interval in seconds while holding."),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level."),
    log_json: bool | None = typer.Option(None, "--log-json/--log-console", help="Log format (default: JSON when not a TTY)."),
) -> None:
    """Run the full bring-up and exit with the report's exit code."""
    configure_logging(level=log_level, json_format=log_json)
    config = _load_config(config_file, output_dir)
    logger.info("deploy.config", **config.describe())

    try:
        stages = build_stages(config)
    except ObstackError as exc:
        _config_error(exc)

    cancel = threading.Event()
    orchestrator = build_orchestrator(config, cancel_event=cancel)

    with _cancel_on_signals(orchestrator):
        report = orchestrator.deploy(stages)
        run_dir = LogCollector(config.output_dir, config.run_id).write_report(report)

        if json_out:
            typer.echo(report.model_dump_json(indent=2))
        else:
            _print_report(report)
            console.print(f"[dim]artifacts: {run_dir}[/]")

        if hold and not report.cancelled:
            _hold(hold_interval, cancel)

    raise typer.Exit(code=report.exit_code)


# ── Info commands ────────────────────────────────────────────────────────


@app.command("plan")
def deploy_plan(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="JSON config file (default: environment)."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the stages a run would execute, in order."""
    config = _load_config(config_file)
    try:
        stages = build_stages(config)
    except ObstackError as exc:
        _config_error(exc)

    if json_out:
        out = [
            {
                "ordinal": s.ordinal,
                "name": s.name,
                "critical": s.critical,
                "steps": [step.name for step in s.steps],
                "pre_readiness": s.pre_readiness.target if s.pre_readiness else None,
                "post_readiness": s.post_readiness.target if s.post_readiness else None,
                "requires": list(s.requires),
                "description": s.description,
            }
            for s in stages
        ]
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title=f"Deployment plan — cluster {config.cluster_name}, tenant {config.tenant_name}")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold cyan")
    table.add_column("Critical")
    table.add_column("Steps")
    table.add_column("Readiness")
    table.add_column("Requires")

    for s in stages:
        gates = []
        if s.pre_readiness:
            gates.append(f"pre {s.pre_readiness.target}")
        if s.post_readiness:
            gates.append(f"post {s.post_readiness.target}")
        table.add_row(
            str(s.ordinal),
            s.name,
            "yes" if s.critical else "[dim]no[/]",
            ", ".join(step.name for step in s.steps),
            "\n".join(gates) or "—",
            ", ".join(s.requires) or "—",
        )

    console.print(table)


@app.command("render")
def deploy_render(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="JSON config file (default: environment)."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Print the rendered configuration artifacts (secrets included)."""
    config = _load_config(config_file)
    try:
        artifacts = render_artifacts(config)
    except ObstackError as exc:
        _config_error(exc)

    if json_out:
        typer.echo(json.dumps(artifacts, indent=2))
        return

    for name, text in artifacts.items():
        console.rule(f"[bold]{name}[/]")
        console.print(text.rstrip("\n"), markup=False, highlight=False)


# ── Output formatters ────────────────────────────────────────────────────


def _print_report(report: DeploymentReport) -> None:
    """Pretty-print a DeploymentReport."""
    table = Table(title=f"Deployment {report.run_id}")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Critical")
    table.add_column("Reason")
    table.add_column("Failed step")
    table.add_column("Time")

    for s in report.stages:
        style = _STATUS_STYLE.get(s.status, "white")
        table.add_row(
            str(s.ordinal),
            s.name,
            f"[{style}]{s.status.value}[/{style}]",
            "yes" if s.critical else "no",
            s.reason.value if s.reason else "—",
            s.failed_step or "—",
            f"{s.duration_seconds:.1f}s",
        )
    for name in report.not_run:
        table.add_row("", name, "[dim]NOT RUN[/]", "", "", "", "")

    console.print(table)
    console.print(report.summary, markup=False, highlight=False)
    style = _RUN_STYLE.get(report.status, "white")
    console.print(f"\n[{style}]{report.status.value}[/] — exit code {report.exit_code}")
