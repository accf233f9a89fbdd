"""Tests for obstack.deploy.probe against loopback sockets and local processes."""

from __future__ import annotations

import shutil
import socket
import subprocess
import sys
import threading
import time
import uuid

import pytest

from obstack.deploy.models import ProbeKind, ReadinessSpec
from obstack.deploy.probe import ProbeObservation, ReadinessProbe
from obstack.deploy.results import ProbeStatus


@pytest.fixture
def listening_port():
    """A loopback port with a listener accepting connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class TestTcpReadiness:
    def test_immediately_ready(self, listening_port):
        spec = ReadinessSpec("port", ProbeKind.TCP, port=listening_port, interval_seconds=1.0, timeout_seconds=10)
        start = time.monotonic()
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.status is ProbeStatus.READY
        assert outcome.attempts == 1
        assert time.monotonic() - start < 1.0

    def test_never_ready_times_out_near_timeout(self, closed_port):
        spec = ReadinessSpec("port", ProbeKind.TCP, port=closed_port, interval_seconds=0.1, timeout_seconds=0.5)
        start = time.monotonic()
        outcome = ReadinessProbe().wait_until_ready(spec)
        elapsed = time.monotonic() - start
        assert outcome.status is ProbeStatus.TIMED_OUT
        assert outcome.attempts > 1
        assert 0.5 <= elapsed < 0.5 + 0.1 + 0.5
        assert outcome.detail

    def test_becomes_ready_later(self, closed_port):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        def start_listening():
            server.bind(("127.0.0.1", closed_port))
            server.listen(1)

        timer = threading.Timer(0.3, start_listening)
        timer.start()
        try:
            spec = ReadinessSpec("port", ProbeKind.TCP, port=closed_port, interval_seconds=0.05, timeout_seconds=5)
            outcome = ReadinessProbe().wait_until_ready(spec)
        finally:
            timer.cancel()
            server.close()
        assert outcome.status is ProbeStatus.READY
        assert outcome.attempts > 1


class TestCancellation:
    def test_cancel_returns_promptly(self, closed_port):
        spec = ReadinessSpec("port", ProbeKind.TCP, port=closed_port, interval_seconds=1.0, timeout_seconds=30)
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()
        start = time.monotonic()
        outcome = ReadinessProbe().wait_until_ready(spec, cancel=cancel, phase="pre")
        assert outcome.status is ProbeStatus.CANCELLED
        assert outcome.phase == "pre"
        assert time.monotonic() - start < 2.0

    def test_already_cancelled_makes_no_attempt(self, listening_port):
        spec = ReadinessSpec("port", ProbeKind.TCP, port=listening_port)
        cancel = threading.Event()
        cancel.set()
        outcome = ReadinessProbe().wait_until_ready(spec, cancel=cancel)
        assert outcome.status is ProbeStatus.CANCELLED
        assert outcome.attempts == 0


class TestCommandReadiness:
    def test_command_success(self, py):
        spec = ReadinessSpec("cmd", ProbeKind.COMMAND, command=py("print('1')"), interval_seconds=0.1, timeout_seconds=10)
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.ready
        assert outcome.detail == "1"

    def test_command_failure_times_out(self, py):
        spec = ReadinessSpec(
            "cmd", ProbeKind.COMMAND, command=py("import sys; sys.exit(1)"), interval_seconds=0.1, timeout_seconds=1.0
        )
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.status is ProbeStatus.TIMED_OUT

    def test_ready_predicate_over_output(self, py):
        spec = ReadinessSpec(
            "cmd",
            ProbeKind.COMMAND,
            command=py("print('status=starting')"),
            interval_seconds=0.1,
            timeout_seconds=0.5,
            ready=lambda obs: "status=active" in obs.output,
        )
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.status is ProbeStatus.TIMED_OUT
        assert outcome.detail == "status=starting"


@pytest.mark.skipif(shutil.which("pgrep") is None, reason="pgrep not installed")
class TestProcessReadiness:
    @pytest.fixture
    def sleeper(self):
        """A live process whose command line carries a unique marker."""
        marker = f"obstack-sleeper-{uuid.uuid4().hex}"
        proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)", marker])
        yield marker
        proc.kill()
        proc.wait()

    def test_running_process_is_ready(self, sleeper):
        spec = ReadinessSpec(
            "sleeper", ProbeKind.PROCESS, process_name=sleeper, interval_seconds=0.1, timeout_seconds=5
        )
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.status is ProbeStatus.READY
        assert outcome.target == f"process:{sleeper}"

    def test_absent_process_times_out(self):
        name = f"obstack-absent-{uuid.uuid4().hex}"
        spec = ReadinessSpec("absent", ProbeKind.PROCESS, process_name=name, interval_seconds=0.1, timeout_seconds=0.5)
        outcome = ReadinessProbe().wait_until_ready(spec)
        assert outcome.status is ProbeStatus.TIMED_OUT
        assert outcome.attempts > 1


class TestSpecValidation:
    def test_tcp_needs_port(self):
        with pytest.raises(ValueError, match="needs a port"):
            ReadinessSpec("p", ProbeKind.TCP)

    def test_command_needs_command(self):
        with pytest.raises(ValueError, match="needs a command"):
            ReadinessSpec("p", ProbeKind.COMMAND)

    def test_process_needs_name(self):
        with pytest.raises(ValueError, match="process_name"):
            ReadinessSpec("p", ProbeKind.PROCESS)

    def test_interval_positive(self):
        with pytest.raises(ValueError, match="interval_seconds"):
            ReadinessSpec("p", ProbeKind.TCP, port=1, interval_seconds=0)

    def test_target(self):
        assert ReadinessSpec("p", ProbeKind.TCP, port=2881).target == "tcp://127.0.0.1:2881"
        assert ReadinessSpec("p", ProbeKind.PROCESS, process_name="observer").target == "process:observer"


class TestObservation:
    def test_output_without_outcome(self):
        assert ProbeObservation(ok=True).output == ""
