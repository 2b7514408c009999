"""Unit tests for ResourceApplier and admission message parsing."""

from __future__ import annotations

from typing import Any

import pytest
from fake_cluster import FakeCluster

from shipyard.config.defaults import SPEC_HASH_ANNOTATION
from shipyard.deploy.applier import (
    APPLY_ORDER,
    ResourceApplier,
    apply_rank,
    find_drift,
    parse_violations,
)
from shipyard.lib.errors import ApplyError, ClusterError
from shipyard.models.config import RetryConfig
from shipyard.models.deployment_state import Outcome

SCC_MESSAGE = (
    'pods "db-5d8f7-" is forbidden: unable to validate against any security '
    "context constraint: [provider \"anyuid\": Forbidden: not usable by user or "
    "serviceaccount, spec.containers[0].securityContext.runAsUser: Invalid "
    "value: 0: must be in the ranges: [1000680000, 1000689999], "
    'provider "restricted-v2": Forbidden: not usable by user or serviceaccount]'
)


def _config_map(name: str = "settings", **data: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": "demo"},
        "data": data or {"mode": "fast"},
    }


def _service() -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "db", "namespace": "demo"},
        "spec": {"ports": [{"port": 3306}]},
    }


@pytest.fixture
def applier(cluster: FakeCluster) -> ResourceApplier:
    """Applier that never sleeps between retries."""
    return ResourceApplier(cluster, retry=RetryConfig(), sleep=lambda _: None)


@pytest.mark.unit
class TestApplyOne:
    """Tests for create-or-patch of a single document."""

    def test_missing_resource_created_with_hash(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A missing resource is created and stamped with its hash."""
        result = applier.apply_one(_config_map())

        assert result.outcome == Outcome.APPLIED
        assert result.resource_version is not None
        annotations = cluster.stored("ConfigMap", "settings")["metadata"][
            "annotations"
        ]
        assert annotations[SPEC_HASH_ANNOTATION].startswith("sha256:")

    def test_same_hash_makes_no_call(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """An unchanged document results in no mutating call."""
        applier.apply_one(_config_map())
        cluster.reset_calls()

        result = applier.apply_one(_config_map())

        assert result.outcome == Outcome.UNCHANGED
        assert cluster.mutations == []

    def test_changed_document_patched(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A document with a new hash is merge-patched."""
        applier.apply_one(_config_map())
        cluster.reset_calls()

        result = applier.apply_one(_config_map(mode="safe"))

        assert result.outcome == Outcome.APPLIED
        assert cluster.mutations == [("patch", "ConfigMap/settings")]
        assert cluster.stored("ConfigMap", "settings")["data"] == {"mode": "safe"}

    def test_outside_edit_reverted(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A live edit under an unchanged hash is patched back."""
        applier.apply_one(_service())
        cluster.stored("Service", "db")["spec"]["ports"] = [{"port": 9999}]
        cluster.reset_calls()

        result = applier.apply_one(_service())

        assert result.outcome == Outcome.APPLIED
        assert result.drift == ("spec.ports[0].port",)
        assert cluster.mutations == [("patch", "Service/db")]
        assert cluster.stored("Service", "db")["spec"]["ports"] == [{"port": 3306}]

    def test_server_fields_are_not_drift(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """Fields only the server sets leave the resource unchanged."""
        applier.apply_one(_service())
        live = cluster.stored("Service", "db")
        live["spec"]["clusterIP"] = "172.30.0.12"
        live["metadata"]["uid"] = "5c1e"
        cluster.reset_calls()

        result = applier.apply_one(_service())

        assert result.outcome == Outcome.UNCHANGED
        assert cluster.mutations == []

    def test_inspect_reports_without_mutating(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """inspect() reports missing resources and drifted paths only."""
        assert applier.inspect(_config_map()) is None
        applier.apply_one(_config_map())
        assert applier.inspect(_config_map()) == []

        cluster.stored("ConfigMap", "settings")["data"]["mode"] = "slow"
        cluster.reset_calls()

        assert applier.inspect(_config_map()) == ["data.mode"]
        assert cluster.mutations == []

    def test_input_document_not_modified(self, applier: ResourceApplier) -> None:
        """The caller's document is not stamped in place."""
        document = _config_map()

        applier.apply_one(document)

        assert "annotations" not in document["metadata"]

    def test_rejection_becomes_apply_error(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """An admission rejection carries the violated constraints."""
        cluster.fail(
            "create", "ConfigMap/settings", ClusterError("create", SCC_MESSAGE, 403)
        )

        with pytest.raises(ApplyError) as exc_info:
            applier.apply_one(_config_map())

        error = exc_info.value
        assert error.resource == "ConfigMap/settings"
        assert error.transient is False
        assert len(error.violations) == 1
        assert "runAsUser" in error.violations[0]

    def test_transient_error_retried(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A transient error on create is retried."""
        original = cluster.create
        failures = iter([ClusterError("create", "503", 503, transient=True)])

        def flaky(document: dict[str, Any]) -> dict[str, Any]:
            error = next(failures, None)
            if error is not None:
                raise error
            return original(document)

        cluster.create = flaky  # type: ignore[method-assign]

        result = applier.apply_one(_config_map())

        assert result.outcome == Outcome.APPLIED
        assert cluster.has("ConfigMap", "settings")

    def test_conflict_on_create_compares_existing(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A create conflict falls back to comparing the existing object."""
        original_get = cluster.get
        calls = {"count": 0}

        def stale_get(*args: Any) -> dict[str, Any] | None:
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return original_get(*args)

        applier.apply_one(_config_map())
        cluster.get = stale_get  # type: ignore[method-assign]
        cluster.reset_calls()

        result = applier.apply_one(_config_map())

        assert result.outcome == Outcome.UNCHANGED
        assert cluster.mutations == [("create", "ConfigMap/settings")]


@pytest.mark.unit
class TestApply:
    """Tests for applying document lists."""

    def test_documents_applied_in_kind_order(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """Services follow config maps regardless of input order."""
        result = applier.apply([_service(), _config_map()])

        assert [r.ref for r in result.resources] == [
            "ConfigMap/settings",
            "Service/db",
        ]
        assert result.outcome == Outcome.APPLIED
        assert set(result.mutated) == {"ConfigMap/settings", "Service/db"}

    def test_failure_leaves_earlier_documents(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """A rejected document does not roll back earlier ones."""
        cluster.fail("create", "Service/db", ClusterError("create", "invalid", 422))

        with pytest.raises(ApplyError):
            applier.apply([_config_map(), _service()])

        assert cluster.has("ConfigMap", "settings")

    def test_unchanged_list(
        self, cluster: FakeCluster, applier: ResourceApplier
    ) -> None:
        """Reapplying identical documents is UNCHANGED with nothing mutated."""
        applier.apply([_config_map(), _service()])

        result = applier.apply([_config_map(), _service()])

        assert result.outcome == Outcome.UNCHANGED
        assert result.mutated == {}


@pytest.mark.unit
class TestParseViolations:
    """Tests for parse_violations()."""

    def test_scc_message(self) -> None:
        """Only usable-provider violations are kept from SCC messages."""
        violations = parse_violations(SCC_MESSAGE)

        assert violations == [
            "spec.containers[0].securityContext.runAsUser: Invalid value: 0: "
            "must be in the ranges: [1000680000, 1000689999]"
        ]

    def test_pod_security_message(self) -> None:
        """Pod security admission violations are split on top-level commas."""
        message = (
            'pods "app" is forbidden: violates PodSecurity "restricted:latest": '
            'allowPrivilegeEscalation != false (container "app" must set '
            "securityContext.allowPrivilegeEscalation=false), runAsNonRoot != true"
        )

        violations = parse_violations(message)

        assert len(violations) == 2
        assert violations[0].startswith("allowPrivilegeEscalation != false")
        assert violations[1] == "runAsNonRoot != true"

    def test_other_message(self) -> None:
        """Unrelated messages have no violations."""
        assert parse_violations("connection refused") == []

    def test_apply_rank(self) -> None:
        """Unknown kinds sort after every known kind."""
        assert apply_rank("Secret") == 0
        assert apply_rank("Route") == len(APPLY_ORDER) - 1
        assert apply_rank("CronJob") == len(APPLY_ORDER)


@pytest.mark.unit
class TestFindDrift:
    """Tests for find_drift()."""

    def test_matching_subset(self) -> None:
        """Extra live fields are not drift."""
        desired = {"spec": {"replicas": 1}}
        live = {"spec": {"replicas": 1, "strategy": {}}, "status": {"ready": 1}}

        assert find_drift(desired, live) == []

    def test_changed_and_removed_fields(self) -> None:
        """Changed scalars and removed keys are reported by path."""
        desired = {"spec": {"replicas": 1, "selector": {"app": "db"}}}
        live = {"spec": {"replicas": 0}}

        assert find_drift(desired, live) == ["spec.replicas", "spec.selector"]

    def test_empty_desired_value_may_be_absent(self) -> None:
        """A server may drop empty values without causing drift."""
        assert find_drift({"metadata": {"labels": {}}}, {"metadata": {}}) == []

    def test_lists_compared_by_position(self) -> None:
        """List elements are compared in order and by length."""
        desired = {"containers": [{"name": "app", "image": "app:1"}]}

        assert find_drift(
            desired, {"containers": [{"name": "app", "image": "evil:latest"}]}
        ) == ["containers[0].image"]
        assert find_drift(desired, {"containers": []}) == ["containers"]
