"""Tests for custom exception hierarchy in shipyard.lib.errors."""

from shipyard.lib.errors import (
    ApplyError,
    ClusterError,
    ClusterSDKNotInstalledError,
    ConfigError,
    ConfigStepError,
    ConflictError,
    DeploymentError,
    DockerNotAvailableError,
    FileNotFoundError,
    ReadinessTimeoutError,
    ShipyardError,
    TemplateError,
)


class TestShipyardError:
    """Tests for base ShipyardError exception."""

    def test_shipyard_error_creates_with_message(self) -> None:
        """Test that ShipyardError can be created with a message."""
        error = ShipyardError("Test error message")
        assert str(error) == "Test error message"
        assert isinstance(error, Exception)

    def test_all_errors_share_base(self) -> None:
        """Test that every Shipyard error is a ShipyardError."""
        errors = [
            ConfigError("f", "m"),
            FileNotFoundError("deployment.yaml", "m"),
            TemplateError("app", "m"),
            ClusterError("get", "m"),
            ApplyError("Deployment/app", "m"),
            ReadinessTimeoutError("Deployment/app", "pending"),
            ConfigStepError("app", "step", 1),
            DeploymentError("destroy", "m"),
            ClusterSDKNotInstalledError(),
        ]
        assert all(isinstance(error, ShipyardError) for error in errors)


class TestConfigError:
    """Tests for ConfigError exception."""

    def test_config_error_formats_message_with_field(self) -> None:
        """Test that ConfigError includes the field in its message."""
        error = ConfigError("namespace", "Cannot determine the target namespace")
        assert str(error) == (
            "Configuration error in 'namespace': Cannot determine the target namespace"
        )
        assert error.field == "namespace"


class TestClusterErrors:
    """Tests for ClusterError and ConflictError."""

    def test_cluster_error_defaults(self) -> None:
        """Test that cluster errors are non-transient by default."""
        error = ClusterError("patch", "forbidden", status=403)
        assert error.status == 403
        assert error.transient is False
        assert str(error) == "Cluster patch failed: forbidden"

    def test_conflict_error_is_409(self) -> None:
        """Test that ConflictError carries status 409 and the resource."""
        error = ConflictError("Secret/db-credentials")
        assert isinstance(error, ClusterError)
        assert error.status == 409
        assert error.resource == "Secret/db-credentials"
        assert "already exists" in str(error)


class TestApplyError:
    """Tests for ApplyError exception."""

    def test_apply_error_lists_violations(self) -> None:
        """Test that violated constraints are listed one per line."""
        error = ApplyError(
            "Deployment/db",
            "pods is forbidden",
            violations=["runAsUser: Invalid value: 0", "capabilities.add: NET_RAW"],
        )
        message = str(error)
        assert message.startswith("Failed to apply Deployment/db: pods is forbidden")
        assert "Violated constraints:" in message
        assert "  - runAsUser: Invalid value: 0" in message
        assert "  - capabilities.add: NET_RAW" in message

    def test_apply_error_without_violations(self) -> None:
        """Test that the message has no constraint list without violations."""
        error = ApplyError("Service/db", "invalid port")
        assert "Violated" not in str(error)
        assert error.violations == []


class TestReadinessTimeoutError:
    """Tests for ReadinessTimeoutError exception."""

    def test_message_includes_last_observed_state(self) -> None:
        """Test that the message carries the last observed state."""
        error = ReadinessTimeoutError("Deployment/db", "0/1 replicas available", 300)
        assert str(error) == (
            "Deployment/db not ready after 300s; last observed: 0/1 replicas available"
        )
        assert isinstance(error, TimeoutError)


class TestConfigStepError:
    """Tests for ConfigStepError exception."""

    def test_message_with_exit_code_and_output(self) -> None:
        """Test the message for a step that ran and failed."""
        error = ConfigStepError("nextcloud", "object-store", 1, "bucket missing")
        assert str(error) == (
            "Step 'object-store' on 'nextcloud' failed (exit code 1): bucket missing"
        )

    def test_message_for_step_never_run(self) -> None:
        """Test the message for a step that never ran."""
        error = ConfigStepError("nextcloud", "trusted-domains", None)
        assert str(error) == "Step 'trusted-domains' on 'nextcloud' failed (not run)"


class TestDeploymentError:
    """Tests for DeploymentError and DockerNotAvailableError."""

    def test_deployment_error_keeps_context(self) -> None:
        """Test that extra context is kept on the exception."""
        error = DeploymentError("destroy", "cannot list", kind="Route")
        assert str(error) == "destroy failed: cannot list"
        assert error.context == {"kind": "Route"}

    def test_docker_not_available(self) -> None:
        """Test DockerNotAvailableError mentions the daemon."""
        error = DockerNotAvailableError()
        assert isinstance(error, DeploymentError)
        assert error.operation == "build"
        assert "Docker is not available" in str(error)
