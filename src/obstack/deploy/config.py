"""Configuration models for obstack deployments.

Provides the single, immutable ``DeploymentConfig`` that every stage, step
and template reads from. It is built once at process start (from environment
variables, a JSON file, or keyword arguments) and never mutated afterwards.

Why This Matters:
    The container entrypoint that this replaces read ``CLUSTER_NAME``,
    ``TENANT_NAME``, ``PASSWORD`` and friends from the environment at the top
    of a shell script and then relied on them implicitly in every command.
    Here the same variables are parsed exactly once into a frozen model and
    passed explicitly to the components that need them.

Key Concepts:
    DeploymentConfig: Frozen Pydantic model. Cluster/tenant identity,
        credentials, storage sizing, ports, filesystem paths and timeouts.
    PortConfig / PathConfig / TimeoutConfig: Nested frozen groups.
    from_env(): Reads the original container variables plus ``OBSTACK_*``
        overrides. Precedence: kwargs > env vars > field defaults.
    from_file(): Loads a JSON document, then applies kwargs.

Architecture Decisions:
    - Pydantic v2 with ``frozen=True``: assignment after construction raises,
      which is how "read-only after construction" is enforced.
    - from_env() classmethod: explicit env-var parsing rather than
      ``pydantic-settings``, keeping the dependency surface small.
    - Structural failures (bad JSON, wrong types) surface as
      ``InvalidConfigError``; domain legality of values (is this a legal
      port?) is left to the services consuming them.

Related Modules:
    - :mod:`obstack.deploy.render` — Resolves ``${...}`` placeholders against this model
    - :mod:`obstack.deploy.plan` — Builds the stage list from this model

Tags:
    config, settings, pydantic, deployment, environment, oceanbase
"""

from __future__ import annotations

import hashlib
import json
import os
import socket
import uuid
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from obstack.core.errors import InvalidConfigError, MissingConfigError


def _default_node_ip() -> str:
    """Best-effort equivalent of ``hostname -i``."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "127.0.0.1"


class PortConfig(BaseModel):
    """Network ports of the deployed services."""

    model_config = ConfigDict(frozen=True)

    client: int = Field(default=2881, description="Observer SQL (JDBC) port")
    rpc: int = Field(default=2882, description="Observer internal RPC port")
    proxy: int = Field(default=2883, description="obproxy SQL port")
    config_server: int = Field(default=8080, description="Config server HTTP port")
    binlog: int = Field(default=2983, description="Binlog service SQL port")


class PathConfig(BaseModel):
    """Filesystem locations and external binaries."""

    model_config = ConfigDict(frozen=True)

    observer_binary: str = "/home/admin/oceanbase/bin/observer"
    obproxy_binary: str = "/home/admin/obproxy/bin/obproxy"
    client_binary: str = "obclient"
    config_server_command: list[str] = Field(
        default_factory=lambda: ["obd", "cluster", "start", "config-server"],
    )
    home: str = "/home/admin/oceanbase"
    data_dir: str = "/data/1"
    log_dir: str = "/data/log1"
    obproxy_home: str = "/home/admin/obproxy"
    binlog_env_dir: str = "/home/ds/oblogproxy/env"


class TimeoutConfig(BaseModel):
    """Time budgets, in seconds."""

    model_config = ConfigDict(frozen=True)

    command: float = Field(default=300.0, gt=0, description="Default per-command timeout")
    bootstrap: float = Field(default=900.0, gt=0, description="Cluster bootstrap statement timeout")
    observer_start: float = Field(default=300.0, ge=0, description="Observer readiness timeout")
    proxy_start: float = Field(default=120.0, ge=0, description="obproxy readiness timeout")
    binlog_start: float = Field(default=180.0, ge=0, description="Binlog service readiness timeout")
    config_server_start: float = Field(default=60.0, ge=0, description="Config server readiness timeout")
    poll_interval: float = Field(default=5.0, gt=0, description="Readiness poll interval")


class DeploymentConfig(BaseModel):
    """Configuration for one OceanBase bring-up run.

    Example::

        config = DeploymentConfig(
            cluster_name="ob",
            tenant_name="test",
            password="123456",
            ports=PortConfig(client=2881, rpc=2882, proxy=2883),
        )
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    cluster_name: str = Field(default="ob", description="OceanBase cluster name")
    tenant_name: str = Field(default="test", description="Business tenant to create")
    password: str = Field(default="123456", description="root / proxyro / tenant password")
    zone: str = Field(default="zone1", description="Single zone name")

    # Storage sizing
    datafile_size: str = "2G"
    log_disk_size: str = "4G"
    memory_limit: str = "6G"
    system_memory: str = "1G"
    unit_memory_size: str = "2G"
    unit_log_disk_size: str = "2G"

    # Networking
    host: str = Field(default="127.0.0.1", description="Address services bind/connect on")
    node_ip: str = Field(default="", description="Address other nodes reach this host on")
    ports: PortConfig = Field(default_factory=PortConfig)

    # Execution
    run_as: str | None = Field(
        default="admin",
        description="OS user that launches observer/obproxy (None runs as current user)",
    )
    paths: PathConfig = Field(default_factory=PathConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    # Output
    output_dir: Path = Field(
        default=Path("deploy-results"),
        description="Directory for the report and per-stage logs",
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="before")
    @classmethod
    def _set_defaults(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("run_id"):
                data["run_id"] = uuid.uuid4().hex[:12]
            if not data.get("node_ip"):
                data["node_ip"] = _default_node_ip()
        return data

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def password_sha1(self) -> str:
        """SHA1 of the password, as obproxy expects for ``observer_sys_password``."""
        return hashlib.sha1(self.password.encode("utf-8")).hexdigest()

    @property
    def store_path(self) -> str:
        """Observer store directory for this cluster."""
        return f"{self.paths.home}/store/{self.cluster_name}"

    @property
    def config_server_base(self) -> str:
        return f"http://{self.host}:{self.ports.config_server}/services"

    @property
    def rootservice_url(self) -> str:
        """Config server URL the observer registers its root service with."""
        return (
            f"{self.config_server_base}?Action=ObRootServiceInfo"
            f"&User_ID=alibaba&UID=admin&ObCluster={self.cluster_name}"
        )

    @property
    def obproxy_config_url(self) -> str:
        """Config server URL obproxy reads its cluster list from."""
        return f"{self.config_server_base}?Action=GetObProxyConfig&User_ID=alibaba&UID=admin"

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never appear in logs or reports."""
        return tuple(s for s in (self.password, self.password_sha1) if s)

    def describe(self) -> dict[str, Any]:
        """Configuration banner for logs, with the password masked."""
        return {
            "cluster": self.cluster_name,
            "tenant": self.tenant_name,
            "password": "******",
            "observer": self.paths.observer_binary,
            "obproxy": self.paths.obproxy_binary,
            "ports": f"client={self.ports.client}, rpc={self.ports.rpc}, proxy={self.ports.proxy}",
            "storage": f"datafile={self.datafile_size}, log_disk={self.log_disk_size}",
        }

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, **values: Any) -> DeploymentConfig:
        """Construct a config, turning validation errors into ``InvalidConfigError``.

        Raises ``MissingConfigError`` when cluster name, tenant name or password is empty.
        """
        try:
            config = cls(**values)
        except ValidationError as exc:
            first = exc.errors()[0]
            key = ".".join(str(p) for p in first.get("loc", ())) or "config"
            raise InvalidConfigError(
                key,
                first.get("input"),
                message=f"Invalid configuration for {key}: {first.get('msg')}",
                cause=exc,
            ) from exc
        for key in ("cluster_name", "tenant_name", "password"):
            if not getattr(config, key):
                raise MissingConfigError(key)
        return config

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> DeploymentConfig:
        """Create config from the container environment variables.

        Recognises the variables of the original entrypoint (``CLUSTER_NAME``,
        ``TENANT_NAME``, ``PASSWORD``, ``DATAFILE_SIZE``, ``LOG_DISK_SIZE``,
        ``OBSERVER_PATCHED``, ``OBPROXY_PATCHED``) plus ``OBSTACK_*``
        overrides for ports, timeouts and output.
        """
        env = os.environ if environ is None else environ
        env_map = {
            "cluster_name": "CLUSTER_NAME",
            "tenant_name": "TENANT_NAME",
            "password": "PASSWORD",
            "datafile_size": "DATAFILE_SIZE",
            "log_disk_size": "LOG_DISK_SIZE",
            "memory_limit": "OBSTACK_MEMORY_LIMIT",
            "host": "OBSTACK_HOST",
            "node_ip": "OBSTACK_NODE_IP",
            "run_as": "OBSTACK_RUN_AS",
            "output_dir": "OBSTACK_OUTPUT_DIR",
            "run_id": "OBSTACK_RUN_ID",
        }
        port_map = {
            "client": "OBSTACK_CLIENT_PORT",
            "rpc": "OBSTACK_RPC_PORT",
            "proxy": "OBSTACK_PROXY_PORT",
            "config_server": "OBSTACK_CONFIG_SERVER_PORT",
            "binlog": "OBSTACK_BINLOG_PORT",
        }
        path_map = {
            "observer_binary": "OBSERVER_PATCHED",
            "obproxy_binary": "OBPROXY_PATCHED",
            "client_binary": "OBSTACK_CLIENT_BINARY",
            "binlog_env_dir": "OBSTACK_BINLOG_ENV_DIR",
        }
        timeout_map = {
            "observer_start": "OBSTACK_OBSERVER_START_TIMEOUT",
            "proxy_start": "OBSTACK_PROXY_START_TIMEOUT",
            "poll_interval": "OBSTACK_POLL_INTERVAL",
        }

        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = env.get(env_var)
            if env_val is not None:
                if field_name == "run_as" and env_val.strip() == "":
                    values[field_name] = None
                else:
                    values[field_name] = env_val

        for group, mapping in (("ports", port_map), ("paths", path_map), ("timeouts", timeout_map)):
            group_values = {
                field_name: env[env_var]
                for field_name, env_var in mapping.items()
                if env.get(env_var) is not None
            }
            if group_values:
                values[group] = group_values

        values.update(overrides)
        return cls.build(**values)

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> DeploymentConfig:
        """Create config from a JSON document."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise InvalidConfigError("config_file", str(path), message=f"Config file not found: {path}", cause=exc) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise InvalidConfigError("config_file", str(path), message=f"Config file {path} is not valid JSON: {exc}", cause=exc) from exc
        if not isinstance(data, dict):
            raise InvalidConfigError("config_file", str(path), message=f"Config file {path} must contain a JSON object")
        data.update(overrides)
        return cls.build(**data)
