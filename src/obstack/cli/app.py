"""
Root Typer application for the obstack CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from obstack import __version__

app = Typer(
    name="obstack",
    help="obstack — staged bring-up of an OceanBase observer, obproxy and binlog service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("obstack-deploy")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"obstack {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """obstack CLI — deploy, plan and render an OceanBase stack."""


# ── Sub-command registration ─────────────────────────────────────────────

from obstack.cli.deploy import app as deploy_app  # noqa: E402

app.add_typer(deploy_app, name="deploy", help="Run, plan and render the deployment.")
