"""Cluster API backends for Shipyard."""

from __future__ import annotations

from shipyard.deploy.clusters.base import (
    BaseCluster,
    ExecResult,
    ProbeResult,
    resource_ref,
)
from shipyard.models.config import RunSettings


def create_cluster(settings: RunSettings) -> BaseCluster:
    """Create the cluster backend for a run.

    Raises:
        ClusterSDKNotInstalledError: If the kubernetes client is missing.
        ClusterError: If no cluster configuration can be loaded.
    """
    from shipyard.deploy.clusters.kubernetes import KubernetesCluster

    return KubernetesCluster(kubeconfig=settings.kubeconfig, context=settings.context)


__all__ = [
    "BaseCluster",
    "ExecResult",
    "ProbeResult",
    "create_cluster",
    "resource_ref",
]
