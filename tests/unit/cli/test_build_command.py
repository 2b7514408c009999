"""Unit tests for the shipyard build CLI command."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from shipyard.cli.commands.build import build
from shipyard.deploy.builder import BuildResult
from shipyard.lib.errors import DockerNotAvailableError


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup() -> Generator[MagicMock, None, None]:
    """Keep the command from reconfiguring logging."""
    with patch("shipyard.cli.commands.build.setup_logging") as mock_setup:
        yield mock_setup


@pytest.fixture
def deployment_file(tmp_path: Path, deployment_document: dict[str, Any]) -> Path:
    """deployment.yaml where ``app`` is built from ./app."""
    deployment_document["components"][2]["build"] = {"context": "app"}
    path = tmp_path / "deployment.yaml"
    path.write_text(yaml.safe_dump(deployment_document, sort_keys=False))
    return path


@pytest.fixture
def mock_builder() -> Generator[MagicMock, None, None]:
    """Patch ContainerBuilder with a mock that builds app:1.0."""
    with patch("shipyard.deploy.builder.ContainerBuilder") as mock_class:
        builder = mock_class.return_value
        builder.build.return_value = BuildResult(
            component="app",
            image_id="sha256:abc123def456789012345678",
            image_name="quay.io/example/app",
            tag="1.0",
            log_lines=["Step 1/2 : FROM alpine", "Successfully built abc123"],
        )

        def push(result: BuildResult) -> BuildResult:
            result.pushed = True
            return result

        builder.push.side_effect = push
        yield mock_class


class TestBuildCommand:
    """Tests for 'shipyard build'."""

    def test_build_and_push(
        self, runner: CliRunner, deployment_file: Path, mock_builder: MagicMock
    ) -> None:
        """Components with a build section are built, labelled and pushed."""
        result = runner.invoke(build, [str(deployment_file)])

        assert result.exit_code == 0, result.output
        assert "Image:    quay.io/example/app:1.0" in result.output
        assert "Built quay.io/example/app:1.0" in result.output
        assert "Image ID: abc123def456" in result.output
        assert "Pushed:   yes" in result.output
        plan = mock_builder.return_value.build.call_args[0][0]
        assert plan.component == "app"
        assert plan.context == deployment_file.parent / "app"
        labels = mock_builder.return_value.build.call_args.kwargs["labels"]
        assert labels["org.opencontainers.image.version"] == "1.0"

    def test_no_push_and_no_cache(
        self, runner: CliRunner, deployment_file: Path, mock_builder: MagicMock
    ) -> None:
        """--no-push skips the push; --no-cache reaches the Docker build."""
        result = runner.invoke(build, [str(deployment_file), "--no-push", "--no-cache"])

        assert result.exit_code == 0, result.output
        mock_builder.return_value.push.assert_not_called()
        assert mock_builder.return_value.build.call_args.kwargs["nocache"] is True
        assert "Pushed:   no" in result.output

    def test_dry_run(
        self, runner: CliRunner, deployment_file: Path, mock_builder: MagicMock
    ) -> None:
        """--dry-run shows the plan without connecting to Docker."""
        result = runner.invoke(build, [str(deployment_file), "--dry-run"])

        assert result.exit_code == 0
        assert "[DRY RUN]" in result.output
        mock_builder.assert_not_called()

    def test_quiet_prints_image_names(
        self, runner: CliRunner, deployment_file: Path, mock_builder: MagicMock
    ) -> None:
        """--quiet prints one image reference per build."""
        result = runner.invoke(build, [str(deployment_file), "-q"])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "quay.io/example/app:1.0"

    def test_component_filter(
        self, runner: CliRunner, deployment_file: Path, mock_builder: MagicMock
    ) -> None:
        """Filtering out every buildable component builds nothing."""
        result = runner.invoke(build, [str(deployment_file), "--component", "db"])

        assert result.exit_code == 0
        assert "No components to build." in result.output
        mock_builder.assert_not_called()

    def test_docker_unavailable(
        self, runner: CliRunner, deployment_file: Path
    ) -> None:
        """A missing Docker daemon exits with status 3."""
        with patch(
            "shipyard.deploy.builder.ContainerBuilder",
            side_effect=DockerNotAvailableError("connect"),
        ):
            result = runner.invoke(build, [str(deployment_file)])

        assert result.exit_code == 3
        assert "Docker is not available" in result.output
