"""Component state tracking, persisted in a ConfigMap.

The state document records, per component, the hash of the desired
documents, the resource versions returned by the last mutating calls, the
last readiness result and the configuration steps already completed. It is
written only when its content changes, so a converged run performs no
mutating calls.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from shipyard.config.defaults import MANAGED_BY, STATE_CONFIGMAP_SUFFIX
from shipyard.deploy.clusters.base import BaseCluster
from shipyard.lib.errors import ClusterError, DeploymentError
from shipyard.lib.logging_config import get_logger
from shipyard.models.deployment_state import ComponentState, DeploymentState

logger = get_logger(__name__)

STATE_VERSION = "1.0"
STATE_KEY = "state.json"


def compute_config_hash(payload: Any) -> str:
    """Compute a deterministic hash over JSON-serializable data."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def state_configmap_name(deployment: str) -> str:
    """Return the name of the ConfigMap holding a deployment's state."""
    return f"{deployment}{STATE_CONFIGMAP_SUFFIX}"


def _state_document(namespace: str, state: DeploymentState) -> dict[str, Any]:
    payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": state_configmap_name(state.deployment),
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/part-of": state.deployment,
                "app.kubernetes.io/managed-by": MANAGED_BY,
            },
        },
        "data": {STATE_KEY: payload},
    }


def load_state(
    cluster: BaseCluster, namespace: str, deployment: str
) -> DeploymentState:
    """Load deployment state from the cluster.

    Returns an empty state when no state ConfigMap exists yet.
    """
    name = state_configmap_name(deployment)
    try:
        configmap = cluster.get("v1", "ConfigMap", name, namespace)
    except ClusterError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read deployment state {name}: {exc}",
        ) from exc

    content = ((configmap or {}).get("data") or {}).get(STATE_KEY, "")
    if not content.strip():
        return DeploymentState(version=STATE_VERSION, deployment=deployment)

    try:
        state = DeploymentState.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment state format in ConfigMap {name}: {exc}",
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def save_state(cluster: BaseCluster, namespace: str, state: DeploymentState) -> bool:
    """Persist deployment state if it differs from what is stored.

    Returns:
        True if a create or patch call was made.
    """
    document = _state_document(namespace, state)
    name = document["metadata"]["name"]
    try:
        existing = cluster.get("v1", "ConfigMap", name, namespace)
        if existing is None:
            cluster.create(document)
            logger.debug(f"Created state ConfigMap {name}")
            return True
        if (existing.get("data") or {}) == document["data"]:
            return False
        cluster.patch(document)
        logger.debug(f"Updated state ConfigMap {name}")
        return True
    except ClusterError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to write deployment state to {name}: {exc}",
        ) from exc


def delete_state(cluster: BaseCluster, namespace: str, deployment: str) -> bool:
    """Delete the state ConfigMap of a deployment."""
    return cluster.delete(
        "v1", "ConfigMap", state_configmap_name(deployment), namespace
    )


def update_component_state(
    state: DeploymentState, name: str, record: ComponentState
) -> bool:
    """Store a component record unless its content is unchanged.

    Returns:
        True if the state was modified.
    """
    existing = state.components.get(name)
    if record.same_content(existing):
        return False

    now = datetime.now(timezone.utc)
    created_at = record.created_at or (existing.created_at if existing else None) or now
    state.components[name] = record.model_copy(
        update={"created_at": created_at, "updated_at": now}
    )
    return True
