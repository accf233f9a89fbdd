"""The OceanBase single-node bring-up plan.

Turns a ``DeploymentConfig`` into the ordered list of stages that take a
cold container to a query-able observer, obproxy and binlog service:

    ┌──────────────────┐    ┌───────────────┐    ┌──────────────────┐
    │ 1 config-server  │───▶│ 2 prepare-    │───▶│ 3 storage-       │
    │   (obd)          │    │   store       │    │   bringup        │
    └──────────────────┘    └───────────────┘    └────────┬─────────┘
                                                          │ SELECT 1
    ┌──────────────────┐    ┌───────────────┐    ┌────────▼─────────┐
    │ 7 tenant-create  │◀───│ 6 proxy-user* │◀───│ 5 cluster-       │◀── 4 resource-check*
    └────────┬─────────┘    └───────────────┘    │   bootstrap      │
             │                                   └──────────────────┘
    ┌────────▼─────────┐    ┌───────────────┐    ┌──────────────────┐
    │ 8 tenant-        │───▶│ 9 proxy-      │───▶│ 10 binlog-deploy │
    │   password*      │    │   bringup     │    └────────┬─────────┘
    └──────────────────┘    └───────────────┘             │
                        ┌──────────────────────┐ ┌────────▼─────────┐
                        │ 11 proxy-binlog-     │ │ 12 binlog-       │
                        │    config*           │ │    registration* │
                        └──────────────────────┘ └──────────────────┘

    * non-critical: failure is recorded, the run continues

Why This Matters:
    The container entrypoint this replaces slept a fixed 120 seconds after
    launching the observer, ran eight SQL statements with ``set +e`` and
    printed a table of exit codes nobody acted on. Here every wait is a
    bounded readiness poll, every statement is a step with a captured
    outcome, and the stages whose failure makes the rest meaningless
    (storage, bootstrap, tenant, proxy, binlog deploy) halt the run.

Key Concepts:
    build_stages(): Config → ``list[Stage]``. Option strings and SQL are
        rendered here, so an incomplete config fails before anything runs.
    render_artifacts(): The rendered configuration text (observer and
        obproxy option strings, binlog ``deploy.conf.json``), used for
        validation and by ``obstack deploy render``.
    build_orchestrator(): Wires executor, probe, renderer, runner and
        orchestrator for a config.

Architecture Decisions:
    - Launch and filesystem commands run through ``su - <run_as> -c`` when
      ``run_as`` is set (the services refuse to run as root), otherwise
      through ``sh -c`` as the current user.
    - Package installation and ``chown`` are left to the image build.

Related Modules:
    - :mod:`obstack.deploy.templates` — Option and SQL templates
    - :mod:`obstack.deploy.orchestrator` — Runs the stage list

Tags:
    plan, oceanbase, obproxy, binlog, stages, bring-up
"""

from __future__ import annotations

import shlex
import threading
from pathlib import Path

from obstack.deploy.aggregator import ResultAggregator
from obstack.deploy.config import DeploymentConfig
from obstack.deploy.executor import CommandExecutor
from obstack.deploy.models import (
    CommandSpec,
    ProbeKind,
    QuerySpec,
    ReadinessSpec,
    RenderedFile,
    Stage,
    Step,
    output_not_empty,
)
from obstack.deploy.orchestrator import DeploymentOrchestrator
from obstack.deploy.probe import ReadinessProbe
from obstack.deploy.render import ConfigRenderer
from obstack.deploy.runner import StageRunner
from obstack.deploy.templates import (
    BINLOG_DEPLOY_CONF,
    OBPROXY_OPTIONS,
    OBSERVER_OPTIONS,
    SQL,
)

BINLOG_CONF_NAME = "deploy.conf.json"

_STORE_LINKS = (
    ("data_dir", "etc3"),
    ("data_dir", "sstable"),
    ("data_dir", "slog"),
    ("log_dir", "clog"),
    ("log_dir", "etc2"),
)


def _shell(config: DeploymentConfig, script: str, detach: bool = False) -> CommandSpec:
    if config.run_as:
        return CommandSpec(("su", "-", config.run_as, "-c", script), detach=detach)
    return CommandSpec(("sh", "-c", script), detach=detach)


def _sql(renderer: ConfigRenderer, config: DeploymentConfig, key: str) -> str:
    return renderer.render(SQL[key], config, name=f"sql:{key}")


def render_artifacts(config: DeploymentConfig, renderer: ConfigRenderer | None = None) -> dict[str, str]:
    """Render every configuration artifact the plan writes or passes on a command line.

    Raises ``MissingFieldError`` if the config leaves any referenced field unset.
    """
    renderer = renderer or ConfigRenderer()
    return {
        "observer-options": renderer.render_options(OBSERVER_OPTIONS, config, name="observer options"),
        "obproxy-options": renderer.render_options(OBPROXY_OPTIONS, config, name="obproxy options"),
        BINLOG_CONF_NAME: renderer.render_json(BINLOG_DEPLOY_CONF, config, name=BINLOG_CONF_NAME),
    }


def build_stages(config: DeploymentConfig, renderer: ConfigRenderer | None = None) -> list[Stage]:
    """Build the ordered bring-up stages for ``config``."""
    renderer = renderer or ConfigRenderer()
    artifacts = render_artifacts(config, renderer)
    sql = {key: _sql(renderer, config, key) for key in SQL}

    t = config.timeouts
    p = config.paths
    ports = config.ports
    q = shlex.quote
    cluster = config.cluster_name
    store = config.store_path

    def query(statement: str, port: int = ports.client, **kwargs) -> QuerySpec:
        return QuerySpec(sql=statement, host=config.host, port=port, **kwargs)

    def sys_query(statement: str, port: int = ports.client) -> QuerySpec:
        return query(statement, port=port, user="root@sys" if port == ports.proxy else "root",
                     password=config.password)

    process_list = Step("process-list", CommandSpec(("ps", "aux")), timeout_seconds=30)

    # 1. config server
    config_server = Stage(
        name="config-server",
        ordinal=1,
        description="Start the OceanBase configuration server",
        steps=(
            Step("start-config-server", CommandSpec(tuple(p.config_server_command)), t.command),
        ),
        post_readiness=ReadinessSpec(
            "config-server-port",
            ProbeKind.TCP,
            host=config.host,
            port=ports.config_server,
            interval_seconds=t.poll_interval,
            timeout_seconds=t.config_server_start,
        ),
    )

    # 2. store directories
    cluster_data = f"{p.data_dir}/{cluster}"
    cluster_log = f"{p.log_dir}/{cluster}"
    clean = " ".join(
        [
            "rm -rf",
            q(cluster_data),
            q(cluster_log),
            q(store),
            f"{q(p.home)}/log/*",
            f"{q(p.home)}/etc/*config*",
        ]
    )
    create = "mkdir -p " + " ".join(
        q(d)
        for d in (
            f"{cluster_data}/etc3",
            f"{cluster_data}/sstable",
            f"{cluster_data}/slog",
            f"{cluster_log}/clog",
            f"{cluster_log}/etc2",
            store,
        )
    )
    links = tuple(
        Step(
            f"link-{name}",
            _shell(
                config,
                f"ln -sfn {q(cluster_data if root == 'data_dir' else cluster_log)}/{name} {q(store)}/{name}",
            ),
            t.command,
        )
        for root, name in _STORE_LINKS
    )
    prepare_store = Stage(
        name="prepare-store",
        ordinal=2,
        description="Recreate the cluster's data, log and store directories",
        steps=(
            Step("clean-store", _shell(config, clean), t.command),
            Step("create-dirs", _shell(config, create), t.command),
            *links,
        ),
    )

    # 3. observer
    observer_cmd = shlex.join(
        [
            p.observer_binary,
            "-I", config.host,
            "-p", str(ports.client),
            "-P", str(ports.rpc),
            "-z", config.zone,
            "-n", cluster,
            "-d", f"{store}/",
            "-c", "1000",
            "-o", artifacts["observer-options"],
        ]
    )
    storage = Stage(
        name="storage-bringup",
        ordinal=3,
        description="Launch the observer and wait until it answers SQL",
        steps=(
            Step("launch-observer", _shell(config, f"cd {q(store)} && {observer_cmd}", detach=True), t.command),
        ),
        post_readiness=ReadinessSpec(
            "observer-sql",
            ProbeKind.COMMAND,
            host=config.host,
            port=ports.client,
            command=query(sql["ping"]),
            interval_seconds=t.poll_interval,
            timeout_seconds=t.observer_start,
        ),
        diagnostics=(
            process_list,
            Step("observer-log", CommandSpec(("tail", "-n", "10", f"{store}/log/observer.log")), 30),
        ),
    )

    # 4. resources
    resource_check = Stage(
        name="resource-check",
        ordinal=4,
        critical=False,
        description="Record memory and disk headroom before bootstrap",
        steps=(
            Step("memory", CommandSpec(("free", "-h")), 30),
            Step("disk", CommandSpec(("df", "-h")), 30),
        ),
    )

    # 5. bootstrap; the session timeout only holds within one client session
    bootstrap = Stage(
        name="cluster-bootstrap",
        ordinal=5,
        description="Bootstrap the cluster and set the root password",
        steps=(
            Step("bootstrap", query(f"{sql['session_timeout']} {sql['bootstrap']}"), t.bootstrap),
            Step("root-password", query(sql["root_password"]), t.command),
        ),
        diagnostics=(
            Step("observer-log", CommandSpec(("tail", "-n", "10", f"{store}/log/observer.log")), 30),
        ),
    )

    # 6. proxyro
    proxy_user = Stage(
        name="proxy-user",
        ordinal=6,
        critical=False,
        description="Create the proxyro user obproxy connects as",
        steps=(
            Step("create-proxyro", sys_query(sql["create_proxyro"]), t.command),
            Step("grant-proxyro", sys_query(sql["grant_proxyro"]), t.command),
        ),
    )

    # 7. tenant
    tenant_create = Stage(
        name="tenant-create",
        ordinal=7,
        description=f"Create tenant {config.tenant_name}",
        steps=(
            Step("create-unit", sys_query(sql["create_unit"]), t.command),
            Step("create-pool", sys_query(sql["create_pool"]), t.command),
            Step("create-tenant", sys_query(f"{sql['session_timeout']} {sql['create_tenant']}"), t.bootstrap),
        ),
    )

    # 8. tenant root password
    tenant_user = f"root@{config.tenant_name}"
    tenant_password = Stage(
        name="tenant-password",
        ordinal=8,
        critical=False,
        description=f"Set and verify the root password of tenant {config.tenant_name}",
        steps=(
            Step("set-password", query(sql["tenant_password"], user=tenant_user), t.command),
            Step(
                "verify-password",
                query(sql["ping"], user=tenant_user, password=config.password),
                t.command,
                success=output_not_empty,
            ),
        ),
    )

    # 9. obproxy
    obproxy_cmd = shlex.join(
        [
            p.obproxy_binary,
            "-r", f"{config.host}:{ports.client}",
            "-p", str(ports.proxy),
            "-o", artifacts["obproxy-options"],
            "-c", cluster,
        ]
    )
    proxy = Stage(
        name="proxy-bringup",
        ordinal=9,
        description="Launch obproxy and wait until it routes SQL",
        steps=(
            Step(
                "launch-obproxy",
                _shell(config, f"cd {q(p.obproxy_home)} && {obproxy_cmd}", detach=True),
                t.command,
            ),
        ),
        post_readiness=ReadinessSpec(
            "obproxy-sql",
            ProbeKind.COMMAND,
            host=config.host,
            port=ports.proxy,
            command=sys_query(sql["ping"], port=ports.proxy),
            interval_seconds=t.poll_interval,
            timeout_seconds=t.proxy_start,
        ),
        diagnostics=(
            process_list,
            Step("obproxy-log", CommandSpec(("tail", "-n", "10", f"{p.obproxy_home}/log/obproxy.log")), 30),
        ),
    )

    # 10. binlog service
    binlog_deploy = Stage(
        name="binlog-deploy",
        ordinal=10,
        description="Write deploy.conf.json and deploy the binlog service",
        files=(RenderedFile(Path(p.binlog_env_dir) / BINLOG_CONF_NAME, BINLOG_DEPLOY_CONF, "json"),),
        steps=(
            Step(
                "deploy-binlog",
                CommandSpec(
                    ("sh", "-c", f". /etc/profile; sh deploy.sh -m deploy -f {BINLOG_CONF_NAME}"),
                    cwd=p.binlog_env_dir,
                ),
                t.command,
            ),
        ),
        diagnostics=(process_list,),
    )

    # 11. obproxy binlog settings
    proxy_binlog = Stage(
        name="proxy-binlog-config",
        ordinal=11,
        critical=False,
        requires=("proxy-bringup",),
        description="Point obproxy at the binlog service",
        steps=(
            Step("binlog-service-ip", sys_query(sql["proxy_binlog_service"], port=ports.proxy), t.command),
            Step("init-sql", sys_query(sql["proxy_init_sql"], port=ports.proxy), t.command),
        ),
    )

    # 12. binlog for tenant
    registration = Stage(
        name="binlog-registration",
        ordinal=12,
        critical=False,
        requires=("binlog-deploy",),
        description=f"Create the binlog for tenant {cluster}.{config.tenant_name}",
        pre_readiness=ReadinessSpec(
            "binlog-port",
            ProbeKind.TCP,
            host=config.host,
            port=ports.binlog,
            interval_seconds=t.poll_interval,
            timeout_seconds=t.binlog_start,
        ),
        steps=(
            Step(
                "create-binlog",
                query(sql["create_binlog"], port=ports.binlog, user=None, flags=("-A", "-c")),
                t.command,
            ),
        ),
    )

    return [
        config_server,
        prepare_store,
        storage,
        resource_check,
        bootstrap,
        proxy_user,
        tenant_create,
        tenant_password,
        proxy,
        binlog_deploy,
        proxy_binlog,
        registration,
    ]


def build_orchestrator(
    config: DeploymentConfig,
    cancel_event: threading.Event | None = None,
) -> DeploymentOrchestrator:
    """Wire the deployment components for ``config``."""
    executor = CommandExecutor(client_binary=config.paths.client_binary, redact=config.secrets)
    runner = StageRunner(
        executor,
        ReadinessProbe(executor),
        renderer=ConfigRenderer(),
        config=config,
        cancel_event=cancel_event,
    )
    return DeploymentOrchestrator(runner, ResultAggregator(), run_id=config.run_id)
