"""Command execution for obstack deployments.

Runs exactly one external process per call: either a plain command
(``CommandSpec``) or a SQL statement sent through the client binary
(``QuerySpec``). Captures stdout, stderr, exit status and duration.

Key Concepts:
    CommandExecutor.execute(): Command + timeout → ``CommandOutcome``.
        Never raises for outcomes of the command itself; the three failure
        modes come back as data:

        - ``LAUNCH_FAILURE``: the binary could not be started
        - ``TIMEOUT``: killed after exceeding its time budget
        - ``NON_ZERO_EXIT``: ran to completion and signalled failure

    CommandExecutor.run_step(): Applies a step's success policy and returns
        a ``StepOutcome``.
    query_argv(): Turns a ``QuerySpec`` into an ``obclient`` invocation.

Architecture Decisions:
    - subprocess.run with ``timeout``: the child is killed when the budget
      is exceeded and whatever it printed so far is kept.
    - ``CommandSpec.detach``: launch commands that leave a daemon behind
      capture through temporary files. With pipes the daemon inherits the
      write ends and ``run()`` would wait for it until the timeout.
    - No retries here. Waiting for a service is the job of
      :mod:`obstack.deploy.probe`; deciding what a failure means is the job
      of the stage runner.
    - Secrets passed via ``redact`` never reach the logged or stored command
      line.

Related Modules:
    - :mod:`obstack.deploy.probe` — Uses the executor for command/query probes
    - :mod:`obstack.deploy.runner` — Runs each stage's steps through it

Tags:
    executor, subprocess, commands, sql, obclient, timeout
"""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import time
from collections.abc import Iterable
from contextlib import ExitStack
from typing import IO, Any

from obstack.core.logging import get_logger
from obstack.deploy.models import Command, CommandSpec, QuerySpec, Step
from obstack.deploy.results import CommandOutcome, FailureReason, StepOutcome

logger = get_logger(__name__)

REDACTED = "******"


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _read(stream: IO[str]) -> str:
    stream.seek(0)
    return stream.read()


class CommandExecutor:
    """Runs single external commands and SQL statements.

    Parameters
    ----------
    client_binary
        SQL client used for ``QuerySpec`` commands (``obclient``).
    redact
        Secret values replaced by ``******`` in displayed commands and
        captured output.

    Example::

        executor = CommandExecutor(redact=["123456"])
        outcome = executor.execute(QuerySpec("SELECT 1", port=2881), timeout=10)
        if outcome.reason is None:
            print(outcome.stdout)
    """

    def __init__(self, client_binary: str = "obclient", redact: Iterable[str] = ()) -> None:
        self.client_binary = client_binary
        self._secrets = tuple(sorted({s for s in redact if s}, key=len, reverse=True))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(self, command: Command, timeout: float) -> CommandOutcome:
        """Run ``command`` to completion or kill it after ``timeout`` seconds."""
        argv = self.argv(command)
        display = self.display(command)
        spec = command if isinstance(command, CommandSpec) else None
        env = {**os.environ, **spec.env} if spec and spec.env else None
        detach = bool(spec and spec.detach)

        logger.debug("command.exec", command=display, timeout=timeout, detach=detach)
        start = time.monotonic()
        with ExitStack() as stack:
            if detach:
                out = stack.enter_context(tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace"))
                err = stack.enter_context(tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace"))
                streams: dict[str, Any] = {"stdout": out, "stderr": err}
            else:
                streams = {"capture_output": True}
            try:
                proc = subprocess.run(
                    argv,
                    text=True,
                    timeout=timeout,
                    cwd=spec.cwd if spec else None,
                    env=env,
                    input=spec.input if spec else None,
                    **streams,
                )
            except subprocess.TimeoutExpired as exc:
                duration = time.monotonic() - start
                logger.warning("command.timeout", command=display, timeout=timeout)
                stdout, stderr = (_read(out), _read(err)) if detach else (exc.stdout, exc.stderr)
                return CommandOutcome(
                    command=display,
                    exit_code=None,
                    stdout=self.redact(_as_text(stdout)),
                    stderr=self.redact(_as_text(stderr)),
                    duration_seconds=duration,
                    reason=FailureReason.TIMEOUT,
                    error=f"Command timed out after {timeout:g}s",
                )
            except OSError as exc:
                duration = time.monotonic() - start
                logger.warning("command.launch_failed", command=display, error=str(exc))
                return CommandOutcome(
                    command=display,
                    exit_code=None,
                    duration_seconds=duration,
                    reason=FailureReason.LAUNCH_FAILURE,
                    error=self.redact(f"Could not start {argv[0]!r}: {exc}"),
                )
            stdout, stderr = (_read(out), _read(err)) if detach else (proc.stdout, proc.stderr)

        duration = time.monotonic() - start
        outcome = CommandOutcome(
            command=display,
            exit_code=proc.returncode,
            stdout=self.redact(stdout or ""),
            stderr=self.redact(stderr or ""),
            duration_seconds=duration,
            reason=None if proc.returncode == 0 else FailureReason.NON_ZERO_EXIT,
            error=None if proc.returncode == 0 else f"Exited with code {proc.returncode}",
        )
        logger.debug(
            "command.finished",
            command=display,
            exit_code=proc.returncode,
            duration_s=round(duration, 3),
        )
        return outcome

    def run_step(self, step: Step) -> StepOutcome:
        """Execute a step and apply its success policy."""
        outcome = self.execute(step.command, step.timeout_seconds)
        return StepOutcome.from_outcome(step.name, outcome, step.succeeded(outcome))

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def argv(self, command: Command) -> list[str]:
        """Full argument vector for a command."""
        if isinstance(command, QuerySpec):
            return query_argv(command, self.client_binary)
        return list(command.argv)

    def display(self, command: Command) -> str:
        """Shell-quoted command line with secrets redacted."""
        return self.redact(shlex.join(self.argv(command)))

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text


def query_argv(query: QuerySpec, client_binary: str = "obclient") -> list[str]:
    """Build the client invocation for a SQL statement.

    Mirrors ``obclient -h127.0.0.1 -uroot -P2881 -A -e "SELECT 1;"``.
    """
    argv = [client_binary, f"-h{query.host}", f"-P{query.port}"]
    if query.user:
        argv.append(f"-u{query.user}")
    if query.password:
        argv.append(f"-p{query.password}")
    if query.database:
        argv.append(f"-D{query.database}")
    argv.extend(query.flags)
    argv.extend(["-e", query.sql])
    return argv
