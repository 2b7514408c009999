"""Unit tests for deployment state helpers."""

from __future__ import annotations

import json

import pytest
from fake_cluster import FakeCluster

from shipyard.deploy.state import (
    STATE_KEY,
    compute_config_hash,
    delete_state,
    load_state,
    save_state,
    state_configmap_name,
    update_component_state,
)
from shipyard.lib.errors import ClusterError, DeploymentError
from shipyard.models.deployment_state import ComponentState, DeploymentState


def _record(**overrides: object) -> ComponentState:
    values: dict[str, object] = {
        "spec_hash": "sha256:deadbeef",
        "resource_versions": {"Deployment/db": "12"},
        "ready": True,
        "last_observed": "1/1 replicas available",
        "completed_steps": {"migrate": "sha256:cafe"},
    }
    values.update(overrides)
    return ComponentState.model_validate(values)


class TestComputeConfigHash:
    """Tests for compute_config_hash()."""

    def test_hash_is_stable_across_key_order(self) -> None:
        """Key order does not change the hash."""
        first = compute_config_hash({"a": 1, "b": {"c": 2, "d": 3}})
        second = compute_config_hash({"b": {"d": 3, "c": 2}, "a": 1})

        assert first == second
        assert first.startswith("sha256:")

    def test_hash_changes_with_content(self) -> None:
        """Different content produces a different hash."""
        assert compute_config_hash({"image": "a:1"}) != compute_config_hash(
            {"image": "a:2"}
        )


class TestStateConfigMap:
    """Tests for loading and saving state in a ConfigMap."""

    def test_configmap_name(self) -> None:
        """The state ConfigMap is named after the deployment."""
        assert state_configmap_name("cloud") == "cloud-shipyard-state"

    def test_load_missing_returns_empty_state(self) -> None:
        """A namespace without a state ConfigMap yields empty state."""
        state = load_state(FakeCluster(), "demo", "cloud")

        assert state.deployment == "cloud"
        assert state.version == "1.0"
        assert state.components == {}

    def test_save_and_load_round_trip(self) -> None:
        """Saved component state is read back unchanged."""
        cluster = FakeCluster()
        state = DeploymentState(deployment="cloud", components={"db": _record()})

        assert save_state(cluster, "demo", state) is True
        loaded = load_state(cluster, "demo", "cloud")

        assert loaded.components["db"].resource_versions == {"Deployment/db": "12"}
        assert loaded.components["db"].completed_steps == {"migrate": "sha256:cafe"}
        stored = cluster.stored("ConfigMap", "cloud-shipyard-state")
        assert stored["metadata"]["labels"]["app.kubernetes.io/part-of"] == "cloud"
        assert json.loads(stored["data"][STATE_KEY])["deployment"] == "cloud"

    def test_save_unchanged_state_makes_no_call(self) -> None:
        """Saving identical state again does not patch the ConfigMap."""
        cluster = FakeCluster()
        state = DeploymentState(deployment="cloud", components={"db": _record()})
        save_state(cluster, "demo", state)
        cluster.reset_calls()

        assert save_state(cluster, "demo", state) is False
        assert cluster.mutations == []

    def test_save_changed_state_patches(self) -> None:
        """Changed state is written with a patch."""
        cluster = FakeCluster()
        state = DeploymentState(deployment="cloud", components={"db": _record()})
        save_state(cluster, "demo", state)
        state.components["db"] = _record(ready=False)

        assert save_state(cluster, "demo", state) is True
        assert cluster.mutations[-1] == ("patch", "ConfigMap/cloud-shipyard-state")

    def test_invalid_state_raises(self) -> None:
        """Corrupt state content raises DeploymentError."""
        cluster = FakeCluster()
        cluster.put(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": "cloud-shipyard-state", "namespace": "demo"},
                "data": {STATE_KEY: '{"components": 3}'},
            }
        )

        with pytest.raises(DeploymentError, match="Invalid deployment state"):
            load_state(cluster, "demo", "cloud")

    def test_read_failure_raises(self) -> None:
        """API errors while reading state raise DeploymentError."""
        cluster = FakeCluster()
        cluster.fail(
            "get",
            "ConfigMap/cloud-shipyard-state",
            ClusterError("get", "forbidden", status=403),
        )

        with pytest.raises(DeploymentError, match="Failed to read deployment state"):
            load_state(cluster, "demo", "cloud")

    def test_delete_state(self) -> None:
        """delete_state reports whether a ConfigMap was removed."""
        cluster = FakeCluster()
        save_state(cluster, "demo", DeploymentState(deployment="cloud"))

        assert delete_state(cluster, "demo", "cloud") is True
        assert delete_state(cluster, "demo", "cloud") is False


class TestUpdateComponentState:
    """Tests for update_component_state()."""

    def test_new_record_sets_timestamps(self) -> None:
        """A new record gets created_at and updated_at."""
        state = DeploymentState(deployment="cloud")

        assert update_component_state(state, "db", _record()) is True
        stored = state.components["db"]
        assert stored.created_at is not None
        assert stored.updated_at is not None

    def test_same_content_is_not_an_update(self) -> None:
        """An identical record leaves state untouched."""
        state = DeploymentState(deployment="cloud")
        update_component_state(state, "db", _record())
        before = state.components["db"]

        assert update_component_state(state, "db", _record()) is False
        assert state.components["db"] is before

    def test_changed_record_keeps_created_at(self) -> None:
        """An update keeps the original creation time."""
        state = DeploymentState(deployment="cloud")
        update_component_state(state, "db", _record())
        created_at = state.components["db"].created_at

        assert update_component_state(state, "db", _record(ready=False)) is True
        assert state.components["db"].created_at == created_at
        assert state.components["db"].ready is False
