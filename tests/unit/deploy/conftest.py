"""Shared fixtures for deploy tests."""

from __future__ import annotations

from typing import Any

import pytest
from fake_cluster import FakeClock, FakeCluster

from shipyard.models.deployment import DeploymentSpec, DeployParameters


@pytest.fixture
def cluster() -> FakeCluster:
    """In-memory cluster with namespace ``demo``."""
    return FakeCluster()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock and sleep pair for deadline tests."""
    return FakeClock()


@pytest.fixture
def spec(deployment_document: dict[str, Any]) -> DeploymentSpec:
    """Validated three-component deployment."""
    return DeploymentSpec.model_validate(deployment_document)


@pytest.fixture
def params() -> DeployParameters:
    """Parameters for namespace ``demo``."""
    return DeployParameters(namespace="demo", hostname="demo.apps.example.com")
