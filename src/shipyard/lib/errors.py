"""Custom exception hierarchy for Shipyard configuration and reconciliation."""

from __future__ import annotations

from typing import Any


class ShipyardError(Exception):
    """Base exception for all Shipyard errors.

    All Shipyard-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI and the reconciler.
    """

    pass


class ConfigError(ShipyardError):
    """Exception raised for configuration errors.

    This exception is raised when a deployment description cannot be loaded,
    parsed, or validated. It carries the offending field so users can find
    and fix the problem.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class FileNotFoundError(ShipyardError):
    """Exception raised when a deployment file is not found.

    Attributes:
        path: Path to the file that was not found
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Initialize FileNotFoundError with path and message.

        Args:
            path: Path to the file that was not found
            message: Descriptive error message, optionally with suggestions
        """
        self.path = path
        self.message = message
        super().__init__(f"File not found: {path}\n{message}")


class TemplateError(ShipyardError):
    """Exception raised when a component cannot be rendered.

    Raised for missing parameters and for placeholders left unresolved after
    rendering. Never retried: the deployment description must be fixed.

    Attributes:
        component: Component whose manifests failed to render
        message: Description of the rendering failure
    """

    def __init__(self, component: str, message: str) -> None:
        """Create a template error for a component."""
        self.component = component
        self.message = message
        super().__init__(f"Cannot render component '{component}': {message}")


class ClusterError(ShipyardError):
    """Exception raised when a cluster API call fails.

    Attributes:
        operation: Cluster operation that failed (get, create, patch, ...)
        message: Human-readable error message
        status: HTTP status returned by the API server, if any
        transient: Whether the failure is a transient I/O error worth retrying
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status: int | None = None,
        transient: bool = False,
    ) -> None:
        """Create a cluster error."""
        self.operation = operation
        self.message = message
        self.status = status
        self.transient = transient
        super().__init__(f"Cluster {operation} failed: {message}")


class ConflictError(ClusterError):
    """Exception raised when a create call hits an existing object (HTTP 409)."""

    def __init__(self, resource: str) -> None:
        """Create a conflict error for a resource reference."""
        self.resource = resource
        super().__init__(
            operation="create",
            message=f"{resource} already exists",
            status=409,
        )


class ClusterSDKNotInstalledError(ShipyardError):
    """Exception raised when the Kubernetes client library is not installed."""

    def __init__(self, sdk_name: str = "kubernetes") -> None:
        """Create an error describing the missing client library."""
        self.sdk_name = sdk_name
        super().__init__(
            f"The '{sdk_name}' package is required to talk to the cluster.\n"
            f"Install it with: pip install {sdk_name}"
        )


class ApplyError(ShipyardError):
    """Exception raised when the cluster rejects a resource.

    Carries enough detail to identify which security constraint was
    violated when the rejection comes from admission (SCC or pod security).

    Attributes:
        resource: Resource reference, e.g. ``Deployment/nextcloud``
        cause: Rejection message returned by the API server
        violations: Individual security constraint violations, if any
        transient: Whether the failure is a transient I/O error
    """

    def __init__(
        self,
        resource: str,
        cause: str,
        violations: list[str] | None = None,
        transient: bool = False,
    ) -> None:
        """Create an apply error for a rejected resource."""
        self.resource = resource
        self.cause = cause
        self.violations = violations or []
        self.transient = transient
        message = f"Failed to apply {resource}: {cause}"
        if self.violations:
            details = "\n".join(f"  - {v}" for v in self.violations)
            message = f"{message}\nViolated constraints:\n{details}"
        super().__init__(message)


class ReadinessTimeoutError(ShipyardError, TimeoutError):
    """Exception raised when a readiness predicate does not hold by its deadline.

    Attributes:
        resource: Resource reference that never became ready
        last_observed_state: Last state reported by the predicate
        waited: Seconds spent waiting before giving up
    """

    def __init__(
        self,
        resource: str,
        last_observed_state: str,
        waited: float | None = None,
    ) -> None:
        """Create a readiness timeout error."""
        self.resource = resource
        self.last_observed_state = last_observed_state
        self.waited = waited
        elapsed = f" after {waited:.0f}s" if waited is not None else ""
        super().__init__(
            f"{resource} not ready{elapsed}; last observed: {last_observed_state}"
        )


class ConfigStepError(ShipyardError):
    """Exception raised when a fatal post-deploy configuration step fails.

    Attributes:
        component: Component the step targets
        step: Name of the failed step
        exit_code: Exit status of the command, None if it never ran
        output: Combined command output (truncated)
    """

    def __init__(
        self,
        component: str,
        step: str,
        exit_code: int | None,
        output: str = "",
    ) -> None:
        """Create a configuration step error."""
        self.component = component
        self.step = step
        self.exit_code = exit_code
        self.output = output
        status = f"exit code {exit_code}" if exit_code is not None else "not run"
        message = f"Step '{step}' on '{component}' failed ({status})"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


class DeploymentError(ShipyardError):
    """Exception raised for orchestration failures outside a single resource.

    Attributes:
        operation: Operation that failed (deploy, status, destroy, build, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str, **context: Any) -> None:
        """Create a deployment error."""
        self.operation = operation
        self.message = message
        self.context = context
        super().__init__(f"{operation} failed: {message}")


class DockerNotAvailableError(DeploymentError):
    """Exception raised when the Docker daemon cannot be reached."""

    def __init__(self, operation: str = "build") -> None:
        """Create an error describing the unavailable Docker daemon."""
        super().__init__(
            operation=operation,
            message=(
                "Docker is not available. Ensure the Docker daemon is running "
                "and accessible (docker info)."
            ),
        )
