"""Container image builds for components that ship their own image.

Components with a ``build`` section are built with the Docker SDK, tagged
according to their tag strategy and pushed to the registry named in their
image reference.
"""

from __future__ import annotations

import subprocess  # nosec B404
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import APIError, BuildError, DockerException
from jinja2 import StrictUndefined, Template, UndefinedError

from shipyard import __version__
from shipyard.config.defaults import MANAGED_BY
from shipyard.lib.errors import DeploymentError, DockerNotAvailableError, TemplateError
from shipyard.lib.logging_config import get_logger
from shipyard.models.deployment import DeploymentSpec, TagStrategy

if TYPE_CHECKING:
    from docker.models.images import Image

logger = get_logger(__name__)


@dataclass
class BuildResult:
    """Result of a container image build.

    Attributes:
        component: Component the image belongs to
        image_id: The SHA256 ID of the built image
        image_name: Repository name without tag
        tag: Image tag
        log_lines: Build log output lines
        pushed: Whether the image was pushed
    """

    component: str
    image_id: str
    image_name: str
    tag: str
    log_lines: list[str] = field(default_factory=list)
    pushed: bool = False

    @property
    def full_name(self) -> str:
        """Full image reference (name:tag)."""
        return f"{self.image_name}:{self.tag}"

    @classmethod
    def from_image(
        cls,
        component: str,
        image: Image,
        image_name: str,
        tag: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        """Create a BuildResult from a Docker image object."""
        return cls(
            component=component,
            image_id=image.id or "",
            image_name=image_name,
            tag=tag,
            log_lines=log_lines or [],
        )


@dataclass(frozen=True)
class BuildPlan:
    """What would be built for one component."""

    component: str
    context: Path
    dockerfile: str
    platform: str
    image_name: str
    tag: str

    @property
    def full_name(self) -> str:
        """Full image reference (name:tag)."""
        return f"{self.image_name}:{self.tag}"


def split_image(reference: str) -> tuple[str, str | None]:
    """Split an image reference into repository and tag.

    >>> split_image("quay.io/acme/nextcloud:27")
    ('quay.io/acme/nextcloud', '27')
    >>> split_image("registry:5000/app")
    ('registry:5000/app', None)
    """
    reference = reference.split("@", 1)[0]
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, None
    return repository, tag


def generate_tag(strategy: TagStrategy, custom_tag: str | None = None) -> str:
    """Generate an image tag based on the specified strategy.

    Raises:
        ValueError: If custom strategy is used without providing custom_tag
        DeploymentError: If git commands fail (not in repo, no tags, etc.)
    """
    if strategy == TagStrategy.LATEST:
        return "latest"

    if strategy == TagStrategy.CUSTOM:
        if not custom_tag:
            raise ValueError("custom_tag is required when using CUSTOM strategy")
        return custom_tag

    if strategy == TagStrategy.GIT_SHA:
        result = subprocess.run(  # noqa: S603  # nosec B603 B607
            ["git", "rev-parse", "HEAD"],  # noqa: S607
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="Failed to get git SHA: not a git repository",
            )
        return result.stdout.strip()[:7]

    if strategy == TagStrategy.GIT_TAG:
        result = subprocess.run(  # noqa: S603  # nosec B603 B607
            ["git", "describe", "--tags", "--abbrev=0"],  # noqa: S607
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise DeploymentError(
                operation="tag_generation",
                message="No git tags found. Create a tag first: git tag v1.0.0",
            )
        return result.stdout.strip()

    raise ValueError(f"Unknown tag strategy: {strategy}")


def get_oci_labels(deployment: str, component: str, tag: str) -> dict[str, str]:
    """OCI labels applied to built images."""
    return {
        "org.opencontainers.image.title": component,
        "org.opencontainers.image.version": tag,
        "org.opencontainers.image.created": datetime.now(timezone.utc).isoformat(),
        "io.shipyard.deployment": deployment,
        "io.shipyard.managed-by": f"{MANAGED_BY}/{__version__}",
    }


def plan_builds(spec: DeploymentSpec, base_dir: str | Path = ".") -> list[BuildPlan]:
    """List the image builds declared by a deployment.

    Relative build contexts are resolved against ``base_dir``. Image
    references may use the deployment's default parameters.
    """
    plans: list[BuildPlan] = []
    for component in spec.components:
        if component.build is None or not component.image:
            continue
        image = component.image
        if "{{" in image:
            try:
                image = Template(image, undefined=StrictUndefined).render(
                    spec.parameters
                )
            except UndefinedError as exc:
                raise TemplateError(
                    component.name, f"missing parameter in image: {exc.message}"
                ) from exc
        image_name, image_tag = split_image(image)
        build = component.build
        if build.tag_strategy == TagStrategy.LATEST and image_tag:
            tag = image_tag
        else:
            tag = generate_tag(build.tag_strategy, build.custom_tag)
        context = Path(build.context)
        if not context.is_absolute():
            context = Path(base_dir) / context
        plans.append(
            BuildPlan(
                component=component.name,
                context=context,
                dockerfile=build.dockerfile,
                platform=build.platform,
                image_name=image_name,
                tag=tag,
            )
        )
    return plans


class ContainerBuilder:
    """Build and push component images with the Docker SDK."""

    def __init__(self) -> None:
        """Connect to the Docker daemon using the environment configuration.

        Raises:
            DockerNotAvailableError: If Docker daemon is not available
        """
        try:
            self.client = docker.from_env()  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="build") from e

    def build(
        self,
        plan: BuildPlan,
        labels: dict[str, str] | None = None,
        **build_kwargs: Any,
    ) -> BuildResult:
        """Build the image described by a plan.

        Raises:
            DeploymentError: If the build context is missing or the build fails
        """
        if not plan.context.exists():
            raise DeploymentError(
                operation="build",
                message=f"Build context not found for {plan.component}: {plan.context}",
            )

        logger.info(f"Building {plan.full_name} from {plan.context}")
        try:
            image, build_logs = self.client.images.build(
                path=str(plan.context),
                tag=plan.full_name,
                dockerfile=plan.dockerfile,
                labels=labels or {},
                rm=True,
                platform=plan.platform,
                pull=True,
                **build_kwargs,
            )
        except BuildError as e:
            raise DeploymentError(
                operation="build",
                message=f"Docker build failed for {plan.component}: {e.msg}",
            ) from e
        except DockerException as e:
            raise DeploymentError(
                operation="build",
                message=f"Docker error during build of {plan.component}: {e}",
            ) from e

        log_lines: list[str] = []
        for log_entry in build_logs:
            if isinstance(log_entry, dict):
                if isinstance(log_entry.get("stream"), str):
                    log_lines.append(log_entry["stream"].rstrip("\n"))
                elif "error" in log_entry:
                    log_lines.append(f"ERROR: {log_entry['error']}")

        return BuildResult.from_image(
            component=plan.component,
            image=image,
            image_name=plan.image_name,
            tag=plan.tag,
            log_lines=log_lines,
        )

    def push(self, result: BuildResult) -> BuildResult:
        """Push a built image to its registry.

        Raises:
            DeploymentError: If the registry rejects the push
        """
        logger.info(f"Pushing {result.full_name}")
        try:
            for entry in self.client.images.push(
                result.image_name, tag=result.tag, stream=True, decode=True
            ):
                if isinstance(entry, dict) and entry.get("error"):
                    raise DeploymentError(
                        operation="push",
                        message=f"Push of {result.full_name} failed: {entry['error']}",
                    )
        except APIError as e:
            raise DeploymentError(
                operation="push",
                message=f"Push of {result.full_name} failed: {e}",
            ) from e
        result.pushed = True
        return result

