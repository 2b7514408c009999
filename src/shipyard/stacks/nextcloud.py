"""Built-in Nextcloud stack.

Nextcloud backed by MariaDB, Redis and a MinIO object store, published
through an edge-terminated route. The app image installs Nextcloud on first
start; everything after that is done by post-deploy ``occ`` steps.

Parameters (override with ``--set``):

    nextcloud_image                 App image
    bucket                          Object store bucket for user files
    office_enabled                  Install the Office integration
    office_url                      WOPI URL of the Office server
    allow_unchecked_data_directory  Disable the data directory permission check
"""

from __future__ import annotations

from typing import Any

from shipyard.models.deployment import DeploymentSpec

OCC = "/var/www/html/occ"
TRUSTED_PROXIES = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")

DEFAULT_PARAMETERS: dict[str, Any] = {
    "nextcloud_image": "quay.io/ryan_nix/nextcloud-openshift:latest",
    "bucket": "nextcloud",
    "office_enabled": False,
    "office_url": "",
    "allow_unchecked_data_directory": False,
}


def occ(*args: str) -> list[str]:
    """Argv for an ``occ`` invocation inside the app container."""
    return ["php", OCC, *args]


def _shell(*commands: str) -> list[str]:
    return ["sh", "-c", " && ".join(commands)]


def _system_set(key: str, value: str, value_type: str | None = None) -> str:
    command = f"php {OCC} config:system:set {key} --value={value}"
    if value_type:
        command += f" --type={value_type}"
    return command


def _secret_ref(secret: str, key: str) -> dict[str, str]:
    return {"secret": secret, "key": key}


def _object_store() -> dict[str, Any]:
    return {
        "name": "files",
        "kind": "object-store",
        "image": "quay.io/minio/minio:latest",
        "args": ["server", "/data", "--console-address", ":9001"],
        "port": 9000,
        "additional_ports": {"console": 9001},
        "env": {
            "MINIO_ROOT_USER": _secret_ref("files-credentials", "root-user"),
            "MINIO_ROOT_PASSWORD": _secret_ref("files-credentials", "root-password"),
            "MC_CONFIG_DIR": "/tmp/.mc",
        },
        "resources": {
            "requests": {"cpu": "100m", "memory": "256Mi"},
            "limits": {"memory": "1Gi"},
        },
        "storage": {"size": "20Gi", "mount_path": "/data"},
        "health_check": {"type": "tcp", "port": 9000},
        "secrets": [
            {
                "name": "files-credentials",
                "static": {"root-user": "minioadmin"},
                "fields": ["root-password"],
            }
        ],
        "post_deploy": [
            {
                "name": "create-bucket",
                "command": _shell(
                    "mc alias set local http://localhost:9000 "
                    '"$MINIO_ROOT_USER" "$MINIO_ROOT_PASSWORD" >/dev/null',
                    "mc mb --ignore-existing local/{{ bucket }}",
                ),
                "fatal": True,
            }
        ],
    }


def _database() -> dict[str, Any]:
    return {
        "name": "db",
        "kind": "database",
        "image": "quay.io/sclorg/mariadb-1011-c9s:latest",
        "port": 3306,
        "env": {
            "MYSQL_USER": _secret_ref("db-credentials", "database-user"),
            "MYSQL_PASSWORD": _secret_ref("db-credentials", "database-password"),
            "MYSQL_ROOT_PASSWORD": _secret_ref(
                "db-credentials", "database-root-password"
            ),
            "MYSQL_DATABASE": _secret_ref("db-credentials", "database-name"),
        },
        "resources": {
            "requests": {"cpu": "100m", "memory": "256Mi"},
            "limits": {"memory": "1Gi"},
        },
        "storage": {"size": "5Gi", "mount_path": "/var/lib/mysql/data"},
        "health_check": {"type": "tcp", "port": 3306},
        "secrets": [
            {
                "name": "db-credentials",
                "static": {"database-user": "nextcloud", "database-name": "nextcloud"},
                "fields": ["database-password", "database-root-password"],
            }
        ],
    }


def _cache() -> dict[str, Any]:
    return {
        "name": "cache",
        "kind": "cache",
        "image": "quay.io/sclorg/redis-6-c9s:latest",
        "port": 6379,
        "env": {"REDIS_PASSWORD": _secret_ref("cache-credentials", "password")},
        "resources": {
            "requests": {"cpu": "50m", "memory": "64Mi"},
            "limits": {"memory": "256Mi"},
        },
        "health_check": {"type": "tcp", "port": 6379},
        "secrets": [{"name": "cache-credentials", "fields": ["password"]}],
    }


def _app() -> dict[str, Any]:
    trusted_domains = [
        "localhost",
        "127.0.0.1",
        "{{ hostname }}",
        "nextcloud",
        "nextcloud.{{ namespace }}.svc.cluster.local",
    ]
    return {
        "name": "nextcloud",
        "kind": "app",
        "image": "{{ nextcloud_image }}",
        "replicas": "{{ replicas }}",
        "port": 8080,
        "env": {
            "NC_MYSQL_HOST": "db",
            "NC_MYSQL_PORT": "3306",
            "NC_MYSQL_DATABASE": _secret_ref("db-credentials", "database-name"),
            "NC_MYSQL_USER": _secret_ref("db-credentials", "database-user"),
            "NC_MYSQL_PASSWORD": _secret_ref("db-credentials", "database-password"),
            "NC_REDIS_HOST": "cache",
            "NC_REDIS_PORT": "6379",
            "NC_REDIS_PASSWORD": _secret_ref("cache-credentials", "password"),
            "NC_S3_KEY": _secret_ref("files-credentials", "root-user"),
            "NC_S3_SECRET": _secret_ref("files-credentials", "root-password"),
            "NEXTCLOUD_ADMIN_USER": _secret_ref("nextcloud-admin", "admin-user"),
            "NEXTCLOUD_ADMIN_PASSWORD": _secret_ref(
                "nextcloud-admin", "admin-password"
            ),
            "NEXTCLOUD_TRUSTED_DOMAINS": "{{ hostname }}",
        },
        "resources": {
            "requests": {"cpu": "250m", "memory": "512Mi"},
            "limits": {"memory": "2Gi"},
        },
        "storage": {"size": "10Gi", "mount_path": "/var/www/html"},
        "health_check": {
            "type": "http",
            "path": "/status.php",
            "port": 8080,
            "scheme": "http",
            "host_header": "localhost",
        },
        "depends_on": ["db", "cache", "files"],
        "secrets": [
            {
                "name": "nextcloud-admin",
                "static": {"admin-user": "admin"},
                "fields": ["admin-password"],
            }
        ],
        "exec_ready": [
            "sh",
            "-c",
            f"php {OCC} status --output=json | grep -q '\"installed\":true'",
        ],
        "post_deploy": [
            {
                "name": "trusted-domains",
                "command": _shell(
                    *(
                        f"php {OCC} config:system:set trusted_domains {index} "
                        f"--value={domain}"
                        for index, domain in enumerate(trusted_domains)
                    )
                ),
                "fatal": True,
            },
            {
                "name": "trusted-proxies",
                "command": _shell(
                    *(
                        f"php {OCC} config:system:set trusted_proxies {index} "
                        f"--value={cidr}"
                        for index, cidr in enumerate(TRUSTED_PROXIES)
                    )
                ),
                "fatal": False,
            },
            {
                "name": "overwrite-protocol",
                "command": occ(
                    "config:system:set", "overwriteprotocol", "--value=https"
                ),
                "fatal": False,
            },
            {
                "name": "redis-memcache",
                "command": _shell(
                    _system_set("redis host", "cache"),
                    _system_set("redis port", "6379", "integer"),
                    _system_set("redis password", '"$NC_REDIS_PASSWORD"'),
                    _system_set("memcache.local", "'\\OC\\Memcache\\APCu'"),
                    _system_set("memcache.distributed", "'\\OC\\Memcache\\Redis'"),
                    _system_set("memcache.locking", "'\\OC\\Memcache\\Redis'"),
                ),
                "fatal": False,
            },
            {
                "name": "object-store",
                "command": _shell(
                    _system_set(
                        "objectstore class", "'\\OC\\Files\\ObjectStore\\S3'"
                    ),
                    _system_set("objectstore arguments bucket", "{{ bucket }}"),
                    _system_set("objectstore arguments hostname", "files"),
                    _system_set("objectstore arguments port", "9000", "integer"),
                    _system_set("objectstore arguments key", '"$NC_S3_KEY"'),
                    _system_set("objectstore arguments secret", '"$NC_S3_SECRET"'),
                    _system_set("objectstore arguments use_ssl", "false", "boolean"),
                    _system_set(
                        "objectstore arguments use_path_style", "true", "boolean"
                    ),
                    _system_set("objectstore arguments region", "us-east-1"),
                ),
                "fatal": True,
            },
            {
                "name": "install-office",
                "command": occ("app:install", "richdocuments"),
                "fatal": False,
                "when": "office_enabled",
                "timeout": 600,
            },
            {
                "name": "office-wopi-url",
                "command": occ(
                    "config:app:set",
                    "richdocuments",
                    "wopi_url",
                    "--value={{ office_url }}",
                ),
                "fatal": False,
                "when": "office_enabled",
                "requires": ["install-office"],
            },
            {
                "name": "skip-data-directory-check",
                "command": occ(
                    "config:system:set",
                    "check_data_directory_permissions",
                    "--value=false",
                    "--type=boolean",
                ),
                "fatal": False,
                "when": "allow_unchecked_data_directory",
            },
        ],
    }


def _route() -> dict[str, Any]:
    return {
        "name": "route",
        "kind": "route",
        "depends_on": ["nextcloud"],
        "route": {"service": "nextcloud", "target_port": 8080},
        "health_check": {"type": "http", "path": "/status.php", "verify_tls": False},
    }


def nextcloud_document(name: str = "nextcloud") -> dict[str, Any]:
    """The stack as a plain document, in the layout of ``deployment.yaml``."""
    return {
        "name": name,
        "description": "Nextcloud with MariaDB, Redis and MinIO object storage",
        "parameters": dict(DEFAULT_PARAMETERS),
        "components": [_object_store(), _database(), _cache(), _app(), _route()],
    }


def nextcloud_stack(name: str = "nextcloud") -> DeploymentSpec:
    """Validated Nextcloud deployment."""
    return DeploymentSpec.model_validate(nextcloud_document(name))
