"""Kubernetes/OpenShift cluster backend built on the official client."""

from __future__ import annotations

import json
import os
import socket
from typing import TYPE_CHECKING, Any

from shipyard.deploy.clusters.base import (
    BaseCluster,
    ExecResult,
    ProbeResult,
    resource_ref,
)
from shipyard.lib.errors import (
    ClusterError,
    ClusterSDKNotInstalledError,
    ConflictError,
)
from shipyard.lib.logging_config import get_logger

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api
    from kubernetes.dynamic import DynamicClient

logger = get_logger(__name__)

SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
MERGE_PATCH = "application/merge-patch+json"
TRANSIENT_STATUSES = frozenset({0, 429, 500, 502, 503, 504})
MAX_OUTPUT = 2000


def _error_message(exc: Exception) -> str:
    """Extract the API server's message from an ApiException body."""
    body = getattr(exc, "body", None)
    if body:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            return str(body)
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
    reason = getattr(exc, "reason", None)
    return str(reason or exc)


class KubernetesCluster(BaseCluster):
    """Talk to a Kubernetes or OpenShift API server.

    Uses the dynamic client so that any kind, including OpenShift routes,
    can be handled from plain documents.
    """

    def __init__(self, kubeconfig: str | None = None, context: str | None = None):
        """Load cluster configuration and build API clients.

        Args:
            kubeconfig: Path to a kubeconfig file (default: standard lookup)
            context: Kubeconfig context to use (default: current context)

        Raises:
            ClusterSDKNotInstalledError: If the kubernetes package is missing
            ClusterError: If no usable configuration is found
        """
        try:
            from kubernetes import client, config, dynamic
            from kubernetes.client.rest import ApiException
            from kubernetes.config.config_exception import ConfigException
            from kubernetes.stream import stream
            from urllib3.exceptions import HTTPError
        except ImportError as exc:
            raise ClusterSDKNotInstalledError("kubernetes") from exc

        self._ApiException: type[ApiException] = ApiException
        self._HTTPError: type[HTTPError] = HTTPError
        self._stream = stream
        self._in_cluster = False
        self._namespace: str | None = None

        try:
            if (
                kubeconfig is None
                and context is None
                and os.environ.get("KUBERNETES_SERVICE_HOST")
            ):
                config.load_incluster_config()
                self._in_cluster = True
                self._namespace = self._read_service_account_namespace()
            else:
                config.load_kube_config(config_file=kubeconfig, context=context)
                self._namespace = self._read_context_namespace(
                    config, kubeconfig, context
                )
        except ConfigException as exc:
            raise ClusterError(
                operation="connect",
                message=f"No usable cluster configuration: {exc}",
            ) from exc

        api_client = client.ApiClient()
        self._core: CoreV1Api = client.CoreV1Api(api_client)
        try:
            self._dynamic: DynamicClient = dynamic.DynamicClient(api_client)
        except (ApiException, HTTPError) as exc:
            raise self._translate(exc, "connect", "cluster") from exc

    @staticmethod
    def _read_service_account_namespace() -> str | None:
        try:
            with open(SERVICE_ACCOUNT_NAMESPACE, encoding="utf-8") as f:
                return f.read().strip() or None
        except OSError:
            return None

    @staticmethod
    def _read_context_namespace(
        config: Any, kubeconfig: str | None, context: str | None
    ) -> str | None:
        contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
        if context:
            active = next((c for c in contexts if c.get("name") == context), active)
        if not active:
            return None
        return active.get("context", {}).get("namespace")

    def _translate(self, exc: Exception, operation: str, ref: str) -> ClusterError:
        """Map client exceptions onto the Shipyard error taxonomy."""
        if isinstance(exc, self._ApiException):
            status = exc.status or 0
            if status == 409 and operation == "create":
                return ConflictError(ref)
            return ClusterError(
                operation=operation,
                message=f"{ref}: {_error_message(exc)}",
                status=status or None,
                transient=status in TRANSIENT_STATUSES,
            )
        return ClusterError(
            operation=operation,
            message=f"{ref}: {exc}",
            transient=True,
        )

    def _resource(self, api_version: str, kind: str, operation: str) -> Any:
        try:
            return self._dynamic.resources.get(api_version=api_version, kind=kind)
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, operation, f"{api_version}/{kind}") from exc
        except Exception as exc:
            # ResourceNotFoundError: kind not served by this cluster
            raise ClusterError(
                operation=operation,
                message=f"{kind} ({api_version}) is not available: {exc}",
            ) from exc

    def get(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> dict[str, Any] | None:
        """Read a resource, returning None when it does not exist."""
        resource = self._resource(api_version, kind, "get")
        try:
            return resource.get(name=name, namespace=namespace).to_dict()
        except self._ApiException as exc:
            if exc.status == 404:
                return None
            raise self._translate(exc, "get", f"{kind}/{name}") from exc
        except self._HTTPError as exc:
            raise self._translate(exc, "get", f"{kind}/{name}") from exc

    def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """Create a resource from a document."""
        ref = resource_ref(document)
        resource = self._resource(document["apiVersion"], document["kind"], "create")
        try:
            created = resource.create(
                body=document, namespace=document["metadata"].get("namespace")
            )
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, "create", ref) from exc
        logger.debug(f"Created {ref}")
        return created.to_dict()

    def patch(self, document: dict[str, Any]) -> dict[str, Any]:
        """Merge-patch a resource with a document."""
        ref = resource_ref(document)
        metadata = document["metadata"]
        resource = self._resource(document["apiVersion"], document["kind"], "patch")
        try:
            patched = resource.patch(
                body=document,
                name=metadata["name"],
                namespace=metadata.get("namespace"),
                content_type=MERGE_PATCH,
            )
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, "patch", ref) from exc
        logger.debug(f"Patched {ref}")
        return patched.to_dict()

    def delete(self, api_version: str, kind: str, name: str, namespace: str) -> bool:
        """Delete a resource with background propagation."""
        resource = self._resource(api_version, kind, "delete")
        body = {
            "apiVersion": "v1",
            "kind": "DeleteOptions",
            "propagationPolicy": "Background",
        }
        try:
            resource.delete(name=name, namespace=namespace, body=body)
        except self._ApiException as exc:
            if exc.status == 404:
                return False
            raise self._translate(exc, "delete", f"{kind}/{name}") from exc
        except self._HTTPError as exc:
            raise self._translate(exc, "delete", f"{kind}/{name}") from exc
        logger.debug(f"Deleted {kind}/{name}")
        return True

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List resources of a kind in a namespace."""
        resource = self._resource(api_version, kind, "list")
        try:
            result = resource.get(namespace=namespace, label_selector=label_selector)
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, "list", kind) from exc
        return list(result.to_dict().get("items") or [])

    def _running_pod(self, namespace: str, selector: str) -> str:
        try:
            pods = self._core.list_namespaced_pod(namespace, label_selector=selector)
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, "exec", f"pods[{selector}]") from exc
        for pod in pods.items:
            if pod.metadata.deletion_timestamp is not None:
                continue
            if pod.status and pod.status.phase == "Running":
                return str(pod.metadata.name)
        raise ClusterError(
            operation="exec",
            message=f"no running pod matches {selector} in {namespace}",
            transient=True,
        )

    def exec(
        self,
        namespace: str,
        selector: str,
        container: str,
        command: list[str],
        timeout: float,
    ) -> ExecResult:
        """Run a command in the first running pod matching the selector."""
        pod = self._running_pod(namespace, selector)
        logger.debug(f"exec in {pod}/{container}: {command[0]}")
        try:
            resp = self._stream(
                self._core.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except (self._ApiException, self._HTTPError) as exc:
            raise self._translate(exc, "exec", f"Pod/{pod}") from exc

        try:
            resp.run_forever(timeout=timeout)
            output = (resp.read_stdout() or "") + (resp.read_stderr() or "")
            if resp.is_open():
                return ExecResult(exit_code=None, output=f"timed out after {timeout}s")
            exit_code = resp.returncode
        finally:
            resp.close()
        return ExecResult(exit_code=exit_code, output=output[-MAX_OUTPUT:])

    def probe_tcp(
        self,
        namespace: str,
        service: str,
        port: int,
        host: str | None = None,
        timeout: float = 5.0,
    ) -> ProbeResult:
        """Check a service port.

        Connects directly when running inside the cluster or when an explicit
        host is given; otherwise checks for ready endpoints on the port.
        """
        if host or self._in_cluster:
            target = host or f"{service}.{namespace}.svc"
            try:
                with socket.create_connection((target, port), timeout=timeout):
                    return ProbeResult(ok=True, observed=f"{target}:{port} accepting")
            except OSError as exc:
                return ProbeResult(ok=False, observed=f"{target}:{port} {exc}")

        try:
            endpoints = self._core.read_namespaced_endpoints(service, namespace)
        except self._ApiException as exc:
            if exc.status == 404:
                return ProbeResult(ok=False, observed="no endpoints object")
            raise self._translate(exc, "probe", f"Endpoints/{service}") from exc
        except self._HTTPError as exc:
            raise self._translate(exc, "probe", f"Endpoints/{service}") from exc

        ready = 0
        for subset in endpoints.subsets or []:
            ports = {p.port for p in subset.ports or []}
            if port in ports:
                ready += len(subset.addresses or [])
        return ProbeResult(
            ok=ready > 0, observed=f"{ready} ready endpoint(s) on port {port}"
        )

    def current_namespace(self) -> str | None:
        """Namespace from the kubeconfig context or service account."""
        return self._namespace

    def apps_domain(self) -> str | None:
        """Wildcard route domain from the ingress config or an existing route."""
        try:
            ingress = self.get("config.openshift.io/v1", "Ingress", "cluster", None)
        except ClusterError as exc:
            logger.debug(f"Cluster ingress config unavailable: {exc}")
            ingress = None
        if ingress and ingress.get("spec", {}).get("domain"):
            return str(ingress["spec"]["domain"])

        if not self._namespace:
            return None
        try:
            routes = self.list("route.openshift.io/v1", "Route", self._namespace)
        except ClusterError as exc:
            logger.debug(f"Cannot list routes: {exc}")
            return None
        for route in routes:
            host = route.get("spec", {}).get("host", "")
            if "." in host:
                return host.split(".", 1)[1]
        return None
