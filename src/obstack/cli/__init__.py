"""
CLI layer for obstack.

Provides a Typer application whose sub-commands delegate to
``obstack.deploy``. All deployment logic lives there; this package handles
only terminal transport: argument parsing, signal handling, coloured output
and table formatting.

Entry point::

    obstack --help
"""

from obstack.cli.app import app

__all__ = ["app"]
