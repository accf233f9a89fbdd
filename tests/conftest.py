"""
Shared pytest fixtures and configuration for obstack tests.

This module provides:
- Location-based markers (``integration`` for tests that spawn local
  processes or open sockets, ``unit`` for everything else)
- A deterministic ``DeploymentConfig`` writing into a temporary directory
- A helper that builds ``python -c`` commands for real subprocess tests

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(deploy_config, py):
            step = Step("ok", py("pass"))
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Ensure obstack package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from obstack.deploy.config import DeploymentConfig, PortConfig, TimeoutConfig  # noqa: E402
from obstack.deploy.models import CommandSpec  # noqa: E402

INTEGRATION_MODULES = {"test_executor", "test_probe", "test_deploy_cli"}


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their module."""
    for item in items:
        module = Path(str(item.fspath)).stem
        if module in INTEGRATION_MODULES:
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Config fixtures
# =============================================================================


@pytest.fixture
def deploy_config(tmp_path: Path) -> DeploymentConfig:
    """
    The reference single-node config: cluster ``ob``, tenant ``test``,
    password ``123456``, default ports, fast timeouts.
    """
    return DeploymentConfig(
        cluster_name="ob",
        tenant_name="test",
        password="123456",
        node_ip="10.0.0.5",
        run_id="run-test",
        ports=PortConfig(client=2881, rpc=2882, proxy=2883),
        timeouts=TimeoutConfig(poll_interval=0.05, observer_start=0.3, proxy_start=0.3),
        paths={"binlog_env_dir": str(tmp_path / "binlog-env")},
        output_dir=tmp_path / "out",
    )


# =============================================================================
# Subprocess helpers
# =============================================================================


@pytest.fixture
def py() -> Callable[[str], CommandSpec]:
    """Build a ``CommandSpec`` running a Python snippet in a fresh interpreter."""

    def _build(code: str) -> CommandSpec:
        return CommandSpec((sys.executable, "-c", code))

    return _build
