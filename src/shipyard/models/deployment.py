"""Pydantic models for deployment descriptions.

This module defines the schema of a ``deployment.yaml``: the immutable,
declarative description of desired state that a reconciliation run converges
the cluster towards, plus the resolved parameter bag passed through every
stage of a run.
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class ComponentKind(str, Enum):
    """Logical role of a component in the stack."""

    APP = "app"
    DATABASE = "database"
    CACHE = "cache"
    OBJECT_STORE = "object-store"
    ROUTE = "route"

    @property
    def is_workload(self) -> bool:
        """Whether the component runs pods (everything except routes)."""
        return self is not ComponentKind.ROUTE

    @property
    def is_stateful(self) -> bool:
        """Whether the component owns data that outlives its pods."""
        return self in (ComponentKind.DATABASE, ComponentKind.OBJECT_STORE)


class TagStrategy(str, Enum):
    """Strategy for generating container image tags."""

    GIT_SHA = "git_sha"
    GIT_TAG = "git_tag"
    LATEST = "latest"
    CUSTOM = "custom"


# Regex patterns for validation
DNS_LABEL_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
QUANTITY_PATTERN = re.compile(r"^\d+(\.\d+)?(m|Ki|Mi|Gi|Ti|k|M|G|T)?$")
TEMPLATE_MARKERS = ("{{", "{%")


def _is_templated(value: str) -> bool:
    return any(marker in value for marker in TEMPLATE_MARKERS)


class RolloutCheck(BaseModel):
    """Readiness by workload rollout status.

    Attributes:
        min_available: Replicas that must be available (default: all desired)
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["rollout"] = "rollout"
    min_available: int | None = Field(
        default=None, ge=1, description="Replicas that must be available"
    )


class TcpCheck(BaseModel):
    """Readiness by TCP connect to the component's service.

    Attributes:
        port: Port to connect to (default: the component port)
        host: Host to connect to (default: the in-cluster service address)
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["tcp"] = "tcp"
    port: int | None = Field(default=None, ge=1, le=65535)
    host: str | None = Field(default=None, description="Override probe host")


class HttpCheck(BaseModel):
    """Readiness by an HTTP request returning an expected status.

    Attributes:
        path: Request path (e.g. /status.php)
        port: Port for the request (default: scheme default)
        scheme: http or https
        host: Host to request (default: the route hostname)
        host_header: Explicit Host header (e.g. localhost for trusted-domain checks)
        expected_status: Status codes that count as ready
        verify_tls: Verify the server certificate
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["http"] = "http"
    path: str = Field(default="/", description="Request path")
    port: int | None = Field(default=None, ge=1, le=65535)
    scheme: Literal["http", "https"] = "https"
    host: str | None = Field(default=None, description="Override request host")
    host_header: str | None = Field(default=None, description="Host header value")
    expected_status: list[int] = Field(default_factory=lambda: [200])
    verify_tls: bool = True

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate path is absolute."""
        if not v.startswith("/"):
            raise ValueError(f"HTTP check path must start with '/': {v}")
        return v


HealthCheck = Annotated[
    RolloutCheck | TcpCheck | HttpCheck, Field(discriminator="type")
]


class SecretKeyRef(BaseModel):
    """Reference to one key of a managed secret."""

    model_config = ConfigDict(extra="forbid")

    secret: str = Field(..., description="Secret name")
    key: str = Field(..., description="Key inside the secret")


class ResourceRequirements(BaseModel):
    """Container resource requests and limits (Kubernetes quantities)."""

    model_config = ConfigDict(extra="forbid")

    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)

    @field_validator("requests", "limits")
    @classmethod
    def validate_quantities(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate resource quantities such as 100m or 256Mi."""
        for name, quantity in v.items():
            if _is_templated(quantity):
                continue
            if not QUANTITY_PATTERN.match(quantity):
                raise ValueError(f"Invalid quantity for {name}: {quantity}")
        return v


class StorageSpec(BaseModel):
    """Persistent storage requirement of a component.

    Attributes:
        size: Requested capacity (e.g. 10Gi)
        access_mode: Volume access mode
        mount_path: Where the volume is mounted in the container
        storage_class: Storage class (default: the run's storage_class parameter)
    """

    model_config = ConfigDict(extra="forbid")

    size: str = Field(..., description="Requested capacity (e.g. 10Gi)")
    access_mode: Literal["ReadWriteOnce", "ReadWriteMany", "ReadOnlyMany"] = (
        "ReadWriteOnce"
    )
    mount_path: str = Field(..., description="Mount path inside the container")
    storage_class: str | None = Field(default=None, description="Storage class")

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: str) -> str:
        """Validate storage size is a byte quantity."""
        if not _is_templated(v) and not re.match(r"^\d+(Mi|Gi|Ti)$", v):
            raise ValueError(f"Invalid storage size: {v}. Use e.g. 512Mi or 10Gi.")
        return v


class SecretSpec(BaseModel):
    """A credential set generated once and stored as a cluster secret.

    Attributes:
        name: Secret name
        fields: Keys that receive a generated random value
        static: Keys with fixed, non-secret values (e.g. a username)
        length: Length of generated values
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Secret name")
    fields: list[str] = Field(default_factory=list)
    static: dict[str, str] = Field(default_factory=dict)
    length: int = Field(default=24, ge=12, le=128)

    @model_validator(mode="after")
    def validate_keys(self) -> "SecretSpec":
        """Validate the secret declares keys and no key is declared twice."""
        if not self.fields and not self.static:
            raise ValueError(f"Secret '{self.name}' must declare fields or static")
        overlap = set(self.fields) & set(self.static)
        if overlap:
            raise ValueError(
                f"Secret '{self.name}' declares {sorted(overlap)} as both "
                "generated and static"
            )
        return self

    @property
    def keys(self) -> list[str]:
        """All keys of the secret."""
        return [*self.static.keys(), *self.fields]


class ConfigStep(BaseModel):
    """One in-container configuration command run after the component is ready.

    ``fatal`` has no default: every step declares up front whether its
    failure halts the run or is only reported as a warning.

    Attributes:
        name: Step name shown in reports
        command: Argument vector executed in the container
        container: Container to exec into (default: the main container)
        fatal: Whether failure halts the run
        requires_exec_ready: Wait for the exec-ready signal before running
        when: Boolean parameter gating the step
        requires: Earlier steps that must have succeeded for this one to run
        timeout: Seconds allowed for the command
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Step name")
    command: list[str] = Field(..., min_length=1, description="Command argv")
    container: str | None = Field(default=None, description="Target container")
    fatal: bool = Field(..., description="Whether failure halts the run")
    requires_exec_ready: bool = Field(
        default=True, description="Wait for exec-ready signal first"
    )
    when: str | None = Field(default=None, description="Gating boolean parameter")
    requires: list[str] = Field(
        default_factory=list, description="Earlier steps this step depends on"
    )
    timeout: int = Field(default=120, ge=1, le=3600)


class RouteSpec(BaseModel):
    """Ingress route binding a hostname to a backend service.

    Attributes:
        service: Component whose service receives traffic
        target_port: Service port (default: the service component port)
        host: Hostname template
        tls_termination: TLS termination policy
        insecure_policy: What to do with plain HTTP requests
        timeout: Router timeout annotation
    """

    model_config = ConfigDict(extra="forbid")

    service: str = Field(..., description="Backend component name")
    target_port: int | None = Field(default=None, ge=1, le=65535)
    host: str = Field(default="{{ hostname }}", description="Route hostname")
    tls_termination: Literal["edge", "passthrough", "reencrypt"] = "edge"
    insecure_policy: Literal["Redirect", "Allow", "None"] = "Redirect"
    timeout: str = Field(default="300s", description="Router timeout")


class SecurityProfile(BaseModel):
    """Container security context compatible with the restricted SCC.

    No user id is set so OpenShift can assign its random UID.
    """

    model_config = ConfigDict(extra="forbid")

    run_as_non_root: bool = True
    allow_privilege_escalation: bool = False
    read_only_root_filesystem: bool = False
    drop_capabilities: list[str] = Field(default_factory=lambda: ["ALL"])
    seccomp_profile: Literal["RuntimeDefault", "Unconfined"] = "RuntimeDefault"


class BuildSpec(BaseModel):
    """How to build a component's image from source."""

    model_config = ConfigDict(extra="forbid")

    context: str = Field(..., description="Build context directory")
    dockerfile: str = Field(default="Dockerfile", description="Dockerfile path")
    platform: str = Field(default="linux/amd64", description="Target platform")
    tag_strategy: TagStrategy = Field(default=TagStrategy.LATEST)
    custom_tag: str | None = Field(default=None)

    @model_validator(mode="after")
    def validate_custom_tag(self) -> "BuildSpec":
        """Validate that custom_tag is provided when tag_strategy is CUSTOM."""
        if self.tag_strategy == TagStrategy.CUSTOM and not self.custom_tag:
            raise ValueError("custom_tag is required when tag_strategy is 'custom'")
        return self


class ComponentSpec(BaseModel):
    """Desired state of one logical component.

    Attributes:
        name: Component name, used for all of its resources
        kind: Logical role (app, database, cache, object-store, route)
        image: Container image reference (workloads only)
        replicas: Desired replicas, an integer or a template such as {{ replicas }}
        port: Main container/service port
        additional_ports: Extra named service ports
        command: Container entrypoint override
        args: Container arguments
        env: Environment bindings, literal or secret references
        resources: Resource requests and limits
        storage: Persistent storage requirement
        health_check: Readiness predicate (default depends on kind)
        depends_on: Components that must be ready before this one is applied
        secrets: Credential sets owned by this component
        exec_ready: Command whose success means the container accepts commands
        post_deploy: Ordered configuration steps
        security: Container security context
        route: Route settings (route components only)
        build: Image build settings
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Component name")
    kind: ComponentKind = Field(..., description="Component kind")
    image: str | None = Field(default=None, description="Container image")
    replicas: int | str = Field(default=1, description="Desired replicas")
    port: int | None = Field(default=None, ge=1, le=65535)
    additional_ports: dict[str, int] = Field(default_factory=dict)
    container_name: str | None = Field(default=None)
    command: list[str] = Field(default_factory=list)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str | SecretKeyRef] = Field(default_factory=dict)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    storage: StorageSpec | None = Field(default=None)
    health_check: HealthCheck | None = Field(default=None)
    depends_on: list[str] = Field(default_factory=list)
    secrets: list[SecretSpec] = Field(default_factory=list)
    exec_ready: list[str] | None = Field(default=None)
    post_deploy: list[ConfigStep] = Field(default_factory=list)
    security: SecurityProfile = Field(default_factory=SecurityProfile)
    route: RouteSpec | None = Field(default=None)
    build: BuildSpec | None = Field(default=None)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the name is a DNS-1123 label."""
        if len(v) > 63 or not DNS_LABEL_PATTERN.match(v):
            raise ValueError(
                f"Invalid component name: {v}. Must be a lowercase DNS label "
                "(letters, digits, '-'; at most 63 characters)."
            )
        return v

    @field_validator("replicas")
    @classmethod
    def validate_replicas(cls, v: int | str) -> int | str:
        """Validate replicas is a non-negative integer or a template."""
        if isinstance(v, int):
            if v < 0:
                raise ValueError(f"replicas must be >= 0, got {v}")
            return v
        if _is_templated(v):
            return v
        if not v.isdigit():
            raise ValueError(f"replicas must be an integer or template, got {v!r}")
        return int(v)

    @model_validator(mode="after")
    def validate_kind_fields(self) -> "ComponentSpec":
        """Validate that fields match the component kind."""
        if self.kind == ComponentKind.ROUTE:
            if self.route is None:
                raise ValueError(f"Route component '{self.name}' requires 'route'")
            if self.image or self.storage or self.post_deploy:
                raise ValueError(
                    f"Route component '{self.name}' cannot declare image, "
                    "storage or post_deploy"
                )
        else:
            if not self.image:
                raise ValueError(f"Component '{self.name}' requires 'image'")
            if self.route is not None:
                raise ValueError(
                    f"Only route components may declare 'route' ({self.name})"
                )
        if isinstance(self.health_check, TcpCheck):
            if self.health_check.port is None and self.port is None:
                raise ValueError(
                    f"TCP health check on '{self.name}' needs a port "
                    "(set health_check.port or port)"
                )
        names = [step.name for step in self.post_deploy]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate post_deploy step names in '{self.name}'")
        for index, step in enumerate(self.post_deploy):
            for required in step.requires:
                if required not in names[:index]:
                    raise ValueError(
                        f"Step '{step.name}' in '{self.name}' requires "
                        f"'{required}', which is not an earlier step"
                    )
        return self

    @property
    def effective_health_check(self) -> RolloutCheck | TcpCheck | HttpCheck:
        """Declared health check, or the default for the component kind."""
        if self.health_check is not None:
            return self.health_check
        if self.kind == ComponentKind.ROUTE:
            return HttpCheck()
        return RolloutCheck()

    @property
    def main_container(self) -> str:
        """Name of the main container."""
        return self.container_name or self.name


class DeploymentSpec(BaseModel):
    """Immutable description of the desired state of a whole stack.

    Attributes:
        name: Deployment identifier; labels every resource it owns
        parameters: Default parameter values (overridable per run)
        components: Components in declaration order
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., description="Deployment identifier")
    description: str | None = Field(default=None)
    parameters: dict[str, Any] = Field(default_factory=dict)
    components: list[ComponentSpec] = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the deployment identifier is a DNS-1123 label."""
        if len(v) > 40 or not DNS_LABEL_PATTERN.match(v):
            raise ValueError(
                f"Invalid deployment name: {v}. Must be a lowercase DNS label "
                "of at most 40 characters."
            )
        return v

    @model_validator(mode="after")
    def validate_graph(self) -> "DeploymentSpec":
        """Validate names, references and the dependency graph."""
        by_name: dict[str, ComponentSpec] = {}
        for component in self.components:
            if component.name in by_name:
                raise ValueError(f"Duplicate component name: {component.name}")
            by_name[component.name] = component

        secret_owner: dict[str, str] = {}
        for component in self.components:
            for secret in component.secrets:
                if secret.name in secret_owner:
                    raise ValueError(
                        f"Secret '{secret.name}' declared by both "
                        f"'{secret_owner[secret.name]}' and '{component.name}'"
                    )
                secret_owner[secret.name] = component.name

        for component in self.components:
            for dep in component.depends_on:
                if dep not in by_name:
                    raise ValueError(
                        f"Component '{component.name}' depends on unknown "
                        f"component '{dep}'"
                    )
                if dep == component.name:
                    raise ValueError(f"Component '{component.name}' depends on itself")
            if component.route is not None:
                backend = by_name.get(component.route.service)
                if backend is None or not backend.kind.is_workload:
                    raise ValueError(
                        f"Route '{component.name}' targets unknown service "
                        f"'{component.route.service}'"
                    )
                if backend.port is None and component.route.target_port is None:
                    raise ValueError(
                        f"Route '{component.name}' needs a target_port: "
                        f"'{backend.name}' declares no port"
                    )

        order = self._topological_order(by_name)

        ancestors: dict[str, set[str]] = {}
        for name in order:
            deps = set(by_name[name].depends_on)
            for dep in by_name[name].depends_on:
                deps |= ancestors[dep]
            ancestors[name] = deps

        for component in self.components:
            for var, binding in component.env.items():
                if not isinstance(binding, SecretKeyRef):
                    continue
                owner = secret_owner.get(binding.secret)
                if owner is None:
                    raise ValueError(
                        f"{component.name}.env.{var} references undeclared "
                        f"secret '{binding.secret}'"
                    )
                if owner != component.name and owner not in ancestors[component.name]:
                    raise ValueError(
                        f"{component.name}.env.{var} uses secret "
                        f"'{binding.secret}' owned by '{owner}', which is not "
                        "among its dependencies"
                    )
        return self

    def _topological_order(self, by_name: dict[str, ComponentSpec]) -> list[str]:
        """Return component names in dependency order (stable, Kahn)."""
        remaining = {name: set(c.depends_on) for name, c in by_name.items()}
        order: list[str] = []
        while remaining:
            ready = [
                c.name
                for c in self.components
                if c.name in remaining and not remaining[c.name]
            ]
            if not ready:
                cycle = ", ".join(sorted(remaining))
                raise ValueError(f"Dependency cycle between components: {cycle}")
            for name in ready:
                order.append(name)
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(ready)
        return order

    def component(self, name: str) -> ComponentSpec:
        """Return a component by name.

        Raises:
            KeyError: If no component has that name.
        """
        for component in self.components:
            if component.name == name:
                return component
        raise KeyError(name)

    def dependency_order(self) -> list[ComponentSpec]:
        """Components sorted so that dependencies come first."""
        by_name = {c.name: c for c in self.components}
        return [by_name[name] for name in self._topological_order(by_name)]

    def dependents_of(self, name: str) -> list[str]:
        """Names of components that transitively depend on ``name``."""
        result: list[str] = []
        frontier = [name]
        while frontier:
            current = frontier.pop()
            for component in self.components:
                if current in component.depends_on and component.name not in result:
                    result.append(component.name)
                    frontier.append(component.name)
        return result


class DeployParameters(BaseModel):
    """Cluster context and parameter bag, resolved once per run.

    Attributes:
        namespace: Target namespace
        hostname: Public hostname for routes
        storage_class: Default storage class for volumes
        replicas: Default replica count for scalable components
        values: Additional free-form parameters
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    namespace: str = Field(..., description="Target namespace")
    hostname: str | None = Field(default=None, description="Public hostname")
    storage_class: str | None = Field(default=None, description="Storage class")
    replicas: int = Field(default=1, ge=0, description="Default replica count")
    values: dict[str, Any] = Field(default_factory=dict)

    def template_context(self, deployment: str) -> dict[str, Any]:
        """Variables available to component templates.

        Unset parameters are left out so that referencing them fails loudly.
        """
        context: dict[str, Any] = dict(self.values)
        context["deployment"] = deployment
        context["namespace"] = self.namespace
        context["replicas"] = self.replicas
        if self.hostname:
            context["hostname"] = self.hostname
        if self.storage_class:
            context["storage_class"] = self.storage_class
        return context

    def flag(self, name: str) -> bool:
        """Interpret a parameter value as a boolean flag."""
        value = self.values.get(name, False)
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
