"""Manifest rendering for Shipyard deployments.

Turns a DeploymentSpec plus resolved parameters into concrete cluster
documents. Every string in a component description is a Jinja2 template;
rendering is pure and deterministic, so the same input always produces
identical documents (and identical hashes).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError
from pydantic import ValidationError

from shipyard.config.defaults import MANAGED_BY
from shipyard.config.validator import flatten_pydantic_errors
from shipyard.deploy.state import compute_config_hash
from shipyard.lib.errors import TemplateError
from shipyard.models.deployment import (
    ComponentKind,
    ComponentSpec,
    DeploymentSpec,
    DeployParameters,
    HttpCheck,
    SecretKeyRef,
    TcpCheck,
)

ROUTE_TIMEOUT_ANNOTATION = "haproxy.router.openshift.io/timeout"
UNRESOLVED_MARKERS = ("{{", "{%")


@dataclass(frozen=True)
class RenderedComponent:
    """A component with every template resolved.

    Attributes:
        component: The component description after substitution
        documents: Cluster documents in apply order
        spec_hash: Hash over all documents
    """

    component: ComponentSpec
    documents: list[dict[str, Any]] = field(default_factory=list)
    spec_hash: str = ""

    @property
    def name(self) -> str:
        """Component name."""
        return self.component.name


def selector_labels(deployment: str, component: str) -> dict[str, str]:
    """Labels selecting the pods of a component."""
    return {
        "app.kubernetes.io/name": component,
        "app.kubernetes.io/part-of": deployment,
    }


def selector_string(deployment: str, component: str) -> str:
    """Label selector string for the pods of a component."""
    labels = selector_labels(deployment, component)
    return ",".join(f"{key}={value}" for key, value in labels.items())


class ManifestRenderer:
    """Render deployment descriptions into cluster documents."""

    def __init__(self) -> None:
        """Create a renderer with strict undefined handling."""
        self._env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(
        self, spec: DeploymentSpec, params: DeployParameters
    ) -> list[RenderedComponent]:
        """Render every component, in dependency order.

        Raises:
            TemplateError: If any component references a missing parameter.
        """
        return [
            self.render_component(component, spec, params)
            for component in spec.dependency_order()
        ]

    def render_component(
        self,
        component: ComponentSpec,
        spec: DeploymentSpec,
        params: DeployParameters,
    ) -> RenderedComponent:
        """Render one component into its documents.

        Raises:
            TemplateError: If a parameter is missing or a placeholder survives.
        """
        context = {**spec.parameters, **params.template_context(spec.name)}
        resolved = self._resolve(component, context)

        documents: list[dict[str, Any]] = []
        if resolved.kind == ComponentKind.ROUTE:
            backend = self._resolve(spec.component(resolved.route.service), context)
            documents.append(self._route(resolved, backend, spec, params))
        else:
            if resolved.storage is not None:
                documents.append(self._volume_claim(resolved, spec, params))
            documents.append(self._deployment(resolved, spec, params))
            if resolved.port is not None or resolved.additional_ports:
                documents.append(self._service(resolved, spec, params))

        return RenderedComponent(
            component=resolved,
            documents=documents,
            spec_hash=compute_config_hash(documents),
        )

    # -- template resolution -------------------------------------------------

    def _resolve(
        self, component: ComponentSpec, context: dict[str, Any]
    ) -> ComponentSpec:
        raw = component.model_dump(mode="json")
        try:
            rendered = self._render_value(raw, context)
        except UndefinedError as exc:
            raise TemplateError(
                component.name, f"missing parameter: {exc.message}"
            ) from exc
        except TemplateSyntaxError as exc:
            raise TemplateError(
                component.name, f"invalid template: {exc.message}"
            ) from exc

        leftover = self._find_unresolved(rendered)
        if leftover:
            raise TemplateError(component.name, f"unresolved placeholder in {leftover}")

        try:
            resolved = ComponentSpec.model_validate(rendered)
        except ValidationError as exc:
            details = "; ".join(flatten_pydantic_errors(exc))
            raise TemplateError(
                component.name, f"invalid after rendering: {details}"
            ) from exc
        if not isinstance(resolved.replicas, int):
            raise TemplateError(
                component.name, f"replicas is not an integer: {resolved.replicas!r}"
            )
        return resolved

    def _render_value(self, value: Any, context: dict[str, Any]) -> Any:
        if isinstance(value, str):
            if "{" not in value:
                return value
            return self._env.from_string(value).render(context)
        if isinstance(value, dict):
            return {k: self._render_value(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [self._render_value(item, context) for item in value]
        return value

    def _find_unresolved(self, value: Any, path: str = "") -> str | None:
        if isinstance(value, str):
            if any(marker in value for marker in UNRESOLVED_MARKERS):
                return path or "value"
            return None
        if isinstance(value, dict):
            items = value.items()
        elif isinstance(value, list):
            items = enumerate(value)
        else:
            return None
        for key, item in items:
            found = self._find_unresolved(item, f"{path}.{key}" if path else str(key))
            if found:
                return found
        return None

    # -- documents -----------------------------------------------------------

    def _metadata(
        self, name: str, component: ComponentSpec, spec: DeploymentSpec, ns: str
    ) -> dict[str, Any]:
        labels = {
            **selector_labels(spec.name, component.name),
            "app.kubernetes.io/component": component.kind.value,
            "app.kubernetes.io/managed-by": MANAGED_BY,
            **component.labels,
        }
        metadata: dict[str, Any] = {"name": name, "namespace": ns, "labels": labels}
        if component.annotations:
            metadata["annotations"] = dict(component.annotations)
        return metadata

    def _volume_claim(
        self, component: ComponentSpec, spec: DeploymentSpec, params: DeployParameters
    ) -> dict[str, Any]:
        storage = component.storage
        assert storage is not None
        claim_spec: dict[str, Any] = {
            "accessModes": [storage.access_mode],
            "resources": {"requests": {"storage": storage.size}},
        }
        storage_class = storage.storage_class or params.storage_class
        if storage_class:
            claim_spec["storageClassName"] = storage_class
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": self._metadata(
                f"{component.name}-data", component, spec, params.namespace
            ),
            "spec": claim_spec,
        }

    def _container(self, component: ComponentSpec) -> dict[str, Any]:
        security = component.security
        container: dict[str, Any] = {
            "name": component.main_container,
            "image": component.image,
            "securityContext": {
                "allowPrivilegeEscalation": security.allow_privilege_escalation,
                "readOnlyRootFilesystem": security.read_only_root_filesystem,
                "runAsNonRoot": security.run_as_non_root,
                "capabilities": {"drop": list(security.drop_capabilities)},
            },
        }
        if component.command:
            container["command"] = list(component.command)
        if component.args:
            container["args"] = list(component.args)

        ports = []
        if component.port is not None:
            ports.append({"name": "main", "containerPort": component.port})
        for port_name, number in component.additional_ports.items():
            ports.append({"name": port_name, "containerPort": number})
        if ports:
            container["ports"] = ports

        env = []
        for var, binding in component.env.items():
            if isinstance(binding, SecretKeyRef):
                env.append(
                    {
                        "name": var,
                        "valueFrom": {
                            "secretKeyRef": {"name": binding.secret, "key": binding.key}
                        },
                    }
                )
            else:
                env.append({"name": var, "value": binding})
        if env:
            container["env"] = env

        resources = {}
        if component.resources.requests:
            resources["requests"] = dict(component.resources.requests)
        if component.resources.limits:
            resources["limits"] = dict(component.resources.limits)
        if resources:
            container["resources"] = resources

        if component.storage is not None:
            container["volumeMounts"] = [
                {"name": "data", "mountPath": component.storage.mount_path}
            ]

        probe = self._readiness_probe(component)
        if probe:
            container["readinessProbe"] = probe
        return container

    def _readiness_probe(self, component: ComponentSpec) -> dict[str, Any] | None:
        check = component.health_check
        timing = {"initialDelaySeconds": 5, "periodSeconds": 10, "failureThreshold": 6}
        if isinstance(check, TcpCheck) and check.host is None:
            return {"tcpSocket": {"port": check.port or component.port}, **timing}
        if isinstance(check, HttpCheck):
            port = check.port or component.port
            if port is None:
                return None
            http_get: dict[str, Any] = {
                "path": check.path,
                "port": port,
                "scheme": check.scheme.upper(),
            }
            if check.host_header:
                http_get["httpHeaders"] = [{"name": "Host", "value": check.host_header}]
            return {"httpGet": http_get, **timing}
        return None

    def _deployment(
        self, component: ComponentSpec, spec: DeploymentSpec, params: DeployParameters
    ) -> dict[str, Any]:
        labels = selector_labels(spec.name, component.name)
        pod_spec: dict[str, Any] = {
            "securityContext": {
                "runAsNonRoot": component.security.run_as_non_root,
                "seccompProfile": {"type": component.security.seccomp_profile},
            },
            "containers": [self._container(component)],
        }
        if component.storage is not None:
            pod_spec["volumes"] = [
                {
                    "name": "data",
                    "persistentVolumeClaim": {"claimName": f"{component.name}-data"},
                }
            ]

        # A ReadWriteOnce volume cannot be attached to old and new pods at once
        rwo = component.storage and component.storage.access_mode == "ReadWriteOnce"
        strategy = {"type": "Recreate"} if rwo else {"type": "RollingUpdate"}

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(
                component.name, component, spec, params.namespace
            ),
            "spec": {
                "replicas": component.replicas,
                "selector": {"matchLabels": labels},
                "strategy": strategy,
                "template": {
                    "metadata": {"labels": dict(labels)},
                    "spec": pod_spec,
                },
            },
        }

    def _service(
        self, component: ComponentSpec, spec: DeploymentSpec, params: DeployParameters
    ) -> dict[str, Any]:
        ports = []
        if component.port is not None:
            ports.append(
                {
                    "name": "main",
                    "port": component.port,
                    "targetPort": component.port,
                    "protocol": "TCP",
                }
            )
        for port_name, number in component.additional_ports.items():
            ports.append(
                {
                    "name": port_name,
                    "port": number,
                    "targetPort": number,
                    "protocol": "TCP",
                }
            )
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": self._metadata(
                component.name, component, spec, params.namespace
            ),
            "spec": {
                "selector": selector_labels(spec.name, component.name),
                "ports": ports,
            },
        }

    def _route(
        self,
        component: ComponentSpec,
        backend: ComponentSpec,
        spec: DeploymentSpec,
        params: DeployParameters,
    ) -> dict[str, Any]:
        route = component.route
        assert route is not None
        metadata = self._metadata(component.name, component, spec, params.namespace)
        metadata.setdefault("annotations", {})[ROUTE_TIMEOUT_ANNOTATION] = route.timeout
        tls: dict[str, Any] = {"termination": route.tls_termination}
        if route.tls_termination == "edge":
            tls["insecureEdgeTerminationPolicy"] = route.insecure_policy
        return {
            "apiVersion": "route.openshift.io/v1",
            "kind": "Route",
            "metadata": metadata,
            "spec": {
                "host": route.host,
                "to": {"kind": "Service", "name": backend.name, "weight": 100},
                "port": {"targetPort": route.target_port or backend.port},
                "tls": tls,
            },
        }
