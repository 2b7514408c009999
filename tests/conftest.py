"""Pytest configuration and shared fixtures for Shipyard tests."""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.

    Yields:
        Dictionary of original environment variables

    Cleanup:
        Restores original environment after test
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def deployment_document() -> dict[str, Any]:
    """A small three-component deployment: two backends and an app.

    ``app`` depends on ``db`` and ``cache`` and runs one fatal and one
    non-fatal configuration step.
    """
    return {
        "name": "demo",
        "parameters": {"app_version": "1.0"},
        "components": [
            {
                "name": "db",
                "kind": "database",
                "image": "quay.io/sclorg/mariadb-1011-c9s:latest",
                "port": 3306,
                "env": {
                    "MYSQL_PASSWORD": {"secret": "db-credentials", "key": "password"}
                },
                "storage": {"size": "1Gi", "mount_path": "/var/lib/mysql/data"},
                "health_check": {"type": "tcp"},
                "secrets": [{"name": "db-credentials", "fields": ["password"]}],
            },
            {
                "name": "cache",
                "kind": "cache",
                "image": "quay.io/sclorg/redis-6-c9s:latest",
                "port": 6379,
                "health_check": {"type": "tcp"},
            },
            {
                "name": "app",
                "kind": "app",
                "image": "quay.io/example/app:{{ app_version }}",
                "port": 8080,
                "depends_on": ["db", "cache"],
                "env": {
                    "DB_HOST": "db",
                    "DB_PASSWORD": {"secret": "db-credentials", "key": "password"},
                },
                "post_deploy": [
                    {"name": "migrate", "command": ["app", "migrate"], "fatal": True},
                    {"name": "warm-cache", "command": ["app", "warm"], "fatal": False},
                ],
            },
        ],
    }


def pytest_configure(config: Any) -> None:
    """Configure pytest with marker options."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests",
    )
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests",
    )
