"""Readiness polling for obstack deployments.

Bring-up of an external service is asynchronous and the services do not
announce "done". The original entrypoint slept a fixed 120 seconds and
hoped; ``ReadinessProbe`` replaces that with a bounded poll: issue the probe
action, check the ready predicate, wait one interval, repeat until ready or
out of time.

Key Concepts:
    ReadinessProbe.wait_until_ready(): ``ReadinessSpec`` → ``ReadinessOutcome``
        with status READY, TIMED_OUT or CANCELLED.
    ProbeObservation: What one attempt saw (success flag, detail text and,
        for command probes, the full ``CommandOutcome``).

Probe actions:
    - ``tcp``: can a TCP connection to host:port be opened?
    - ``command``: does a command / query exit 0 (or satisfy ``ready``)?
    - ``process``: does ``pgrep -f <name>`` find a process?

Architecture Decisions:
    - Fixed interval, no backoff: the dominant cost is the service's own
      startup time, and a fixed interval keeps behaviour deterministic.
    - The first attempt happens immediately, so an already-ready target
      returns without waiting a full interval.
    - Waiting is ``threading.Event.wait(interval)``: a blocking wait with
      periodic wake that returns as soon as the caller sets the event.
    - The last wait is clipped to the deadline, and command probes get at
      most the remaining budget as their timeout, so a never-ready target
      returns TIMED_OUT within one interval of the configured timeout.

Related Modules:
    - :mod:`obstack.deploy.executor` — Runs command and process probes
    - :mod:`obstack.deploy.runner` — Gates stages on probe outcomes

Tags:
    readiness, probe, polling, health-check, tcp, timeout, cancellation
"""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass

from obstack.core.logging import get_logger
from obstack.deploy.executor import CommandExecutor
from obstack.deploy.models import Command, CommandSpec, ProbeKind, ReadinessSpec
from obstack.deploy.results import CommandOutcome, ProbeStatus, ReadinessOutcome

logger = get_logger(__name__)

_MIN_ATTEMPT_TIMEOUT = 0.1


@dataclass(frozen=True)
class ProbeObservation:
    """What a single probe attempt observed."""

    ok: bool
    detail: str = ""
    outcome: CommandOutcome | None = None

    @property
    def output(self) -> str:
        return self.outcome.stdout if self.outcome else ""


class ReadinessProbe:
    """Polls a readiness target at a fixed interval up to a timeout.

    Parameters
    ----------
    executor
        Used for command and process probes.

    Example::

        probe = ReadinessProbe(CommandExecutor())
        spec = ReadinessSpec("observer-port", ProbeKind.TCP, port=2881,
                             interval_seconds=5, timeout_seconds=300)
        outcome = probe.wait_until_ready(spec)
        if not outcome.ready:
            ...
    """

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor or CommandExecutor()

    def wait_until_ready(
        self,
        spec: ReadinessSpec,
        cancel: threading.Event | None = None,
        phase: str = "post",
    ) -> ReadinessOutcome:
        """Block until ``spec`` is ready, times out, or ``cancel`` is set."""
        cancel = cancel or threading.Event()
        start = time.monotonic()
        deadline = start + spec.timeout_seconds
        attempts = 0
        detail = ""

        logger.info(
            "probe.waiting",
            probe=spec.name,
            target=spec.target,
            interval_s=spec.interval_seconds,
            timeout_s=spec.timeout_seconds,
        )

        def finish(status: ProbeStatus) -> ReadinessOutcome:
            outcome = ReadinessOutcome(
                name=spec.name,
                target=spec.target,
                phase=phase,
                status=status,
                attempts=attempts,
                elapsed_seconds=time.monotonic() - start,
                detail=detail,
            )
            log = logger.info if status is ProbeStatus.READY else logger.warning
            log(
                "probe.finished",
                probe=spec.name,
                status=status.value,
                attempts=attempts,
                elapsed_s=round(outcome.elapsed_seconds, 3),
            )
            return outcome

        while True:
            if cancel.is_set():
                return finish(ProbeStatus.CANCELLED)

            attempts += 1
            remaining = deadline - time.monotonic()
            observation = self.observe(spec, max(remaining, _MIN_ATTEMPT_TIMEOUT))
            detail = observation.detail
            logger.debug("probe.attempt", probe=spec.name, attempt=attempts, ok=observation.ok)

            if self._is_ready(spec, observation):
                return finish(ProbeStatus.READY)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return finish(ProbeStatus.TIMED_OUT)
            if cancel.wait(min(spec.interval_seconds, remaining)):
                return finish(ProbeStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Probe actions
    # ------------------------------------------------------------------

    def observe(self, spec: ReadinessSpec, budget: float) -> ProbeObservation:
        """Issue one probe action, spending at most ``budget`` seconds."""
        if spec.kind is ProbeKind.TCP:
            return self._observe_tcp(spec, budget)
        if spec.kind is ProbeKind.PROCESS:
            command = CommandSpec(("pgrep", "-f", spec.process_name or ""))
            return self._observe_command(command, budget)
        assert spec.command is not None
        return self._observe_command(spec.command, budget)

    @staticmethod
    def _observe_tcp(spec: ReadinessSpec, budget: float) -> ProbeObservation:
        timeout = max(_MIN_ATTEMPT_TIMEOUT, min(spec.interval_seconds, budget))
        try:
            with socket.create_connection((spec.host, spec.port), timeout=timeout):
                return ProbeObservation(ok=True, detail=f"connected to {spec.host}:{spec.port}")
        except OSError as exc:
            return ProbeObservation(ok=False, detail=f"{spec.host}:{spec.port}: {exc}")

    def _observe_command(self, command: Command, budget: float) -> ProbeObservation:
        outcome = self.executor.execute(command, timeout=budget)
        detail = (outcome.stdout or outcome.stderr or outcome.error or "").strip()
        return ProbeObservation(ok=outcome.exit_code == 0, detail=detail[-500:], outcome=outcome)

    @staticmethod
    def _is_ready(spec: ReadinessSpec, observation: ProbeObservation) -> bool:
        if spec.ready is not None:
            return bool(spec.ready(observation))
        return observation.ok
