"""Base interface for cluster backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ExecResult:
    """Result of a command executed inside a container.

    Attributes:
        exit_code: Exit status, None if the command timed out
        output: Combined stdout and stderr
    """

    exit_code: int | None
    output: str = ""

    @property
    def succeeded(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0


@dataclass(frozen=True)
class ProbeResult:
    """Result of a port-level health probe."""

    ok: bool
    observed: str


def resource_ref(document: dict[str, Any]) -> str:
    """Return a ``Kind/name`` reference for a resource document."""
    return f"{document['kind']}/{document['metadata']['name']}"


class BaseCluster(ABC):
    """Abstract base class for cluster API backends.

    All methods are blocking; callers in the async reconciler run them in a
    worker thread. Documents are plain dicts in the cluster's wire format.
    """

    @abstractmethod
    def get(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> dict[str, Any] | None:
        """Read a resource.

        Returns:
            The resource document, or None if it does not exist.

        Raises:
            ClusterError: If the API call fails.
        """

    @abstractmethod
    def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """Create a resource.

        Returns:
            The created document as stored by the server.

        Raises:
            ConflictError: If the resource already exists.
            ClusterError: If the server rejects the document.
        """

    @abstractmethod
    def patch(self, document: dict[str, Any]) -> dict[str, Any]:
        """Merge-patch an existing resource with the given document.

        Raises:
            ClusterError: If the server rejects the patch.
        """

    @abstractmethod
    def delete(self, api_version: str, kind: str, name: str, namespace: str) -> bool:
        """Delete a resource.

        Returns:
            False if the resource did not exist.
        """

    @abstractmethod
    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List resources of a kind, optionally filtered by labels."""

    @abstractmethod
    def exec(
        self,
        namespace: str,
        selector: str,
        container: str,
        command: list[str],
        timeout: float,
    ) -> ExecResult:
        """Run a command in a running pod matched by a label selector.

        Raises:
            ClusterError: If no running pod matches or the exec call fails.
        """

    @abstractmethod
    def probe_tcp(
        self,
        namespace: str,
        service: str,
        port: int,
        host: str | None = None,
        timeout: float = 5.0,
    ) -> ProbeResult:
        """Check that a service port accepts connections."""

    @abstractmethod
    def current_namespace(self) -> str | None:
        """Namespace of the active client context, if any."""

    @abstractmethod
    def apps_domain(self) -> str | None:
        """Default wildcard domain for routes, if it can be discovered."""
