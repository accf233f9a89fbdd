"""Configuration and statement templates for the OceanBase bring-up.

Every value here is rendered by :class:`obstack.deploy.render.ConfigRenderer`
against a ``DeploymentConfig``; placeholders use ``${dotted.path}``.

Templates:
    OBSERVER_OPTIONS: observer ``-o`` option string.
    OBPROXY_OPTIONS: obproxy ``-o`` option string.
    BINLOG_DEPLOY_CONF: the binlog service's ``deploy.conf.json``.
    SQL: named SQL statements issued by the plan.
"""

from __future__ import annotations

OBSERVER_OPTIONS: dict[str, str] = {
    "memory_limit": "${memory_limit}",
    "__min_full_resource_pool_memory": "1073741824",
    "system_memory": "${system_memory}",
    "datafile_size": "${datafile_size}",
    "max_syslog_file_count": "2",
    "log_disk_size": "${log_disk_size}",
    "obconfig_url": "${rootservice_url}",
}

OBPROXY_OPTIONS: dict[str, str] = {
    "observer_sys_password": "${password_sha1}",
    "enable_strict_kernel_release": "false",
    "enable_cluster_checkout": "false",
    "enable_metadb_used": "false",
    "obproxy_config_server_url": "${obproxy_config_url}",
}

BINLOG_DEPLOY_CONF: dict[str, str] = {
    "host": "${host}",
    "node_ip": "${node_ip}",
    "port": "${ports.proxy}",
    "user": "root@sys",
    "password": "${password}",
    "database": "",
    "sys_user": "root",
    "sys_password": "${password}",
    "supervise_start": "false",
    "init_schema": "",
}

SQL: dict[str, str] = {
    "ping": "SELECT 1;",
    "session_timeout": "SET SESSION ob_query_timeout=1000000000;",
    "bootstrap": 'ALTER SYSTEM BOOTSTRAP ZONE "${zone}" SERVER "${host}:${ports.rpc}";',
    "root_password": 'ALTER USER root IDENTIFIED BY "${password}";',
    "create_proxyro": 'CREATE USER proxyro IDENTIFIED BY "${password}";',
    "grant_proxyro": "GRANT SELECT ON *.* TO proxyro;",
    "create_unit": (
        'CREATE RESOURCE UNIT unit_cf_min MEMORY_SIZE = "${unit_memory_size}", '
        'MAX_CPU = 1, MIN_CPU = 1, LOG_DISK_SIZE = "${unit_log_disk_size}", '
        "MAX_IOPS = 10000, MIN_IOPS = 10000, IOPS_WEIGHT=1;"
    ),
    "create_pool": (
        'CREATE RESOURCE POOL rs_pool_1 UNIT="unit_cf_min", UNIT_NUM=1, '
        'ZONE_LIST=("${zone}");'
    ),
    "create_tenant": (
        "CREATE TENANT IF NOT EXISTS ${tenant_name} PRIMARY_ZONE=\"${zone}\", "
        'RESOURCE_POOL_LIST=("rs_pool_1") set OB_TCP_INVITED_NODES="%", '
        "lower_case_table_names = 1;"
    ),
    "tenant_password": "ALTER USER root IDENTIFIED BY '${password}';",
    "proxy_binlog_service": 'ALTER PROXYCONFIG SET binlog_service_ip="${host}:${ports.binlog}";',
    "proxy_init_sql": 'ALTER PROXYCONFIG SET init_sql="set _show_ddl_in_compat_mode = 1;";',
    "create_binlog": (
        "CREATE BINLOG FOR TENANT ${cluster_name}.${tenant_name} "
        'WITH CLUSTER URL "${rootservice_url}";'
    ),
}
