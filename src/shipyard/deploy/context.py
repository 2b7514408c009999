"""Resolution of cluster context into run parameters.

Namespace and hostname are resolved once, before anything is applied, and
frozen into a DeployParameters object that every stage receives.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import yaml

from shipyard.deploy.clusters.base import BaseCluster
from shipyard.lib.errors import ClusterError, ConfigError
from shipyard.lib.logging_config import get_logger
from shipyard.models.deployment import ComponentKind, DeploymentSpec, DeployParameters

logger = get_logger(__name__)

RESERVED_KEYS = ("namespace", "hostname", "storage_class", "replicas")


def parse_set_values(pairs: Iterable[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs from the command line.

    Values are read as YAML scalars, so ``true`` and ``3`` become a bool and
    an int.

    Raises:
        ConfigError: If a pair has no ``=`` or an empty key.
    """
    values: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError("--set", f"Expected key=value, got {pair!r}")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        if isinstance(value, (dict, list)):
            value = raw
        values[key] = value
    return values


def _existing_route_host(
    cluster: BaseCluster, spec: DeploymentSpec, namespace: str
) -> str | None:
    for component in spec.components:
        if component.kind != ComponentKind.ROUTE:
            continue
        try:
            route = cluster.get(
                "route.openshift.io/v1", "Route", component.name, namespace
            )
        except ClusterError as exc:
            logger.debug(f"Cannot read route {component.name}: {exc}")
            continue
        host = ((route or {}).get("spec") or {}).get("host")
        if host:
            return str(host)
    return None


def resolve_namespace(
    spec: DeploymentSpec,
    cluster: BaseCluster | None = None,
    namespace: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> str:
    """Resolve the target namespace: flag, ``--set``, parameters, kubeconfig.

    Raises:
        ConfigError: If no source names a namespace.
    """
    ns = namespace or (overrides or {}).get("namespace") or spec.parameters.get(
        "namespace"
    )
    if not ns and cluster is not None:
        ns = cluster.current_namespace()
    if not ns:
        raise ConfigError(
            "namespace",
            "Cannot determine the target namespace. Pass --namespace or set a "
            "namespace on the current kubeconfig context.",
        )
    return str(ns)


def resolve_parameters(
    spec: DeploymentSpec,
    cluster: BaseCluster | None = None,
    namespace: str | None = None,
    hostname: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> DeployParameters:
    """Resolve the parameters of a run.

    Precedence: explicit arguments, then ``overrides`` (``--set``), then the
    deployment's own ``parameters``, then the cluster.

    Namespace falls back to the client's current namespace. Hostname falls
    back to the host of an existing route, then to
    ``<deployment>-<namespace>.<apps domain>``.

    Args:
        spec: Deployment description
        cluster: Cluster backend, or None to resolve offline
        namespace: Namespace from the command line
        hostname: Hostname from the command line
        overrides: Values from ``--set``

    Raises:
        ConfigError: If the namespace, or the hostname of a deployment with
            routes, cannot be determined.
    """
    values: dict[str, Any] = {**spec.parameters, **(overrides or {})}

    ns = resolve_namespace(spec, cluster, namespace, overrides)

    host = hostname or values.get("hostname")
    needs_host = any(c.kind == ComponentKind.ROUTE for c in spec.components)
    if not host and cluster is not None:
        host = _existing_route_host(cluster, spec, ns)
        if host:
            logger.info(f"Using hostname {host} from existing route")
        else:
            domain = cluster.apps_domain()
            if domain:
                host = f"{spec.name}-{ns}.{domain}"
                logger.info(f"Derived hostname {host}")
    if needs_host and not host:
        raise ConfigError(
            "hostname",
            "Cannot determine the public hostname. Pass --hostname.",
        )

    try:
        replicas = int(values.get("replicas", 1))
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            "replicas", f"Not an integer: {values['replicas']!r}"
        ) from exc
    if replicas < 0:
        raise ConfigError("replicas", f"Must be >= 0, got {replicas}")

    extra = {k: v for k, v in values.items() if k not in RESERVED_KEYS}
    return DeployParameters(
        namespace=ns,
        hostname=str(host) if host else None,
        storage_class=values.get("storage_class") or None,
        replicas=replicas,
        values=extra,
    )
