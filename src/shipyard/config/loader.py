"""Configuration loader for Shipyard deployments.

This module provides the ConfigLoader class for loading, parsing, and
validating deployment descriptions from YAML files, and the resolution of
run settings from CLI flags, environment variables and defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from shipyard.config.defaults import DEFAULT_RUN_SETTINGS
from shipyard.config.env_loader import load_env_file, substitute_env_vars
from shipyard.config.validator import flatten_pydantic_errors
from shipyard.lib.errors import ConfigError, FileNotFoundError
from shipyard.models.config import RunSettings
from shipyard.models.deployment import DeploymentSpec

logger = logging.getLogger(__name__)

# Environment variable to field name mapping
ENV_VAR_MAP = {
    "timeout": "SHIPYARD_TIMEOUT",
    "component_timeout": "SHIPYARD_COMPONENT_TIMEOUT",
    "exec_ready_timeout": "SHIPYARD_EXEC_READY_TIMEOUT",
    "poll_interval": "SHIPYARD_POLL_INTERVAL",
    "poll_step": "SHIPYARD_POLL_STEP",
    "poll_max_interval": "SHIPYARD_POLL_MAX_INTERVAL",
    "retry_attempts": "SHIPYARD_RETRY_ATTEMPTS",
    "retry_base_delay": "SHIPYARD_RETRY_BASE_DELAY",
    "retry_max_delay": "SHIPYARD_RETRY_MAX_DELAY",
    "track_state": "SHIPYARD_TRACK_STATE",
    "kubeconfig": "KUBECONFIG",
    "context": "SHIPYARD_CONTEXT",
}

_INT_FIELDS = ("timeout", "component_timeout", "exec_ready_timeout", "retry_attempts")
_FLOAT_FIELDS = (
    "poll_interval",
    "poll_step",
    "poll_max_interval",
    "retry_base_delay",
    "retry_max_delay",
)
_BOOL_FIELDS = ("track_state",)


def _parse_env_value(field_name: str, value: str) -> Any:
    """Parse environment variable value to appropriate type.

    Args:
        field_name: Name of the field (used to determine type)
        value: String value from environment variable

    Returns:
        Parsed value in correct type (int, float, bool, or str)

    Raises:
        ValueError: If value cannot be parsed
    """
    if field_name in _INT_FIELDS:
        return int(value)
    elif field_name in _FLOAT_FIELDS:
        return float(value)
    elif field_name in _BOOL_FIELDS:
        return value.lower() in ("true", "1", "yes", "on")
    else:
        return value


def _get_env_value(
    field_name: str, env_vars: os._Environ[str] | dict[str, str]
) -> Any | None:
    """Get environment variable value for a field.

    Args:
        field_name: Name of field to get
        env_vars: Environment variables mapping

    Returns:
        Parsed value or None if not found or invalid
    """
    env_var_name = ENV_VAR_MAP.get(field_name)
    if not env_var_name or env_var_name not in env_vars:
        return None

    try:
        return _parse_env_value(field_name, env_vars[env_var_name])
    except (ValueError, KeyError):
        logger.warning(
            f"Ignoring invalid value for {env_var_name}: {env_vars[env_var_name]!r}"
        )
        return None


def _read_yaml_with_env_substitution(path: Path) -> dict[str, Any] | None:
    """Read a YAML file with environment variable substitution.

    Args:
        path: Path to YAML file

    Returns:
        Parsed dictionary or None if empty

    Raises:
        OSError: If file cannot be read
        yaml.YAMLError: If YAML parsing fails
        ConfigError: If env var substitution fails
    """
    raw_text = path.read_text(encoding="utf-8")
    substituted = substitute_env_vars(raw_text)
    content = yaml.safe_load(substituted)
    return content if content else None


class ConfigLoader:
    """Load and validate deployment descriptions.

    Handles:
    - Loading a .env file next to the deployment file
    - Environment variable substitution
    - Converting validation errors into human-readable messages
    """

    def __init__(self, env_file: str | None = None) -> None:
        """Initialize the loader.

        Args:
            env_file: Explicit .env file (default: .env next to the deployment)
        """
        self.env_file = env_file

    def load_deployment_yaml(self, file_path: str) -> DeploymentSpec:
        """Load and validate a deployment description from YAML.

        Args:
            file_path: Path to deployment.yaml

        Returns:
            Validated DeploymentSpec instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigError: If parsing, substitution or validation fails
        """
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(
                file_path,
                f"Deployment file not found at {file_path}. "
                "Run 'shipyard init' to create one.",
            )

        load_env_file(self.env_file or path.parent / ".env")

        try:
            content = _read_yaml_with_env_substitution(path)
        except OSError as e:
            raise FileNotFoundError(
                file_path,
                f"Deployment file could not be read at {file_path}: {e}",
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse",
                f"Failed to parse YAML file {file_path}: {str(e)}",
            ) from e

        if not isinstance(content, dict):
            raise ConfigError(
                "deployment",
                f"Deployment file {file_path} must contain a mapping",
            )

        return self.validate_deployment(content, source=file_path)

    def validate_deployment(
        self, content: dict[str, Any], source: str = "<memory>"
    ) -> DeploymentSpec:
        """Validate a parsed deployment document.

        Raises:
            ConfigError: If validation fails
        """
        try:
            spec = DeploymentSpec(**content)
        except PydanticValidationError as e:
            error_messages = flatten_pydantic_errors(e)
            error_text = "\n".join(error_messages)
            raise ConfigError(
                "deployment_validation",
                f"Invalid deployment configuration in {source}:\n{error_text}",
            ) from e
        logger.debug(
            f"Loaded deployment '{spec.name}' with {len(spec.components)} "
            f"components from {source}"
        )
        return spec


def load_run_settings(
    cli_overrides: dict[str, Any] | None = None,
    defaults: dict[str, Any] | None = None,
) -> RunSettings:
    """Resolve run settings with priority hierarchy.

    Configuration priority (highest to lowest):
    1. CLI flags (cli_overrides, None values ignored)
    2. Environment variables (SHIPYARD_* vars)
    3. Built-in defaults

    Args:
        cli_overrides: Values from CLI flags
        defaults: Default values (default: DEFAULT_RUN_SETTINGS)

    Returns:
        Resolved RunSettings

    Raises:
        ConfigError: If the resolved settings are invalid
    """
    cli_overrides = cli_overrides or {}
    defaults = DEFAULT_RUN_SETTINGS if defaults is None else defaults
    resolved: dict[str, Any] = {}

    for field in RunSettings.model_fields:
        if cli_overrides.get(field) is not None:
            resolved[field] = cli_overrides[field]
        elif (env_value := _get_env_value(field, os.environ)) is not None:
            resolved[field] = env_value
        elif field in defaults:
            resolved[field] = defaults[field]

    try:
        return RunSettings(**resolved)
    except PydanticValidationError as e:
        error_text = "\n".join(flatten_pydantic_errors(e))
        raise ConfigError("run_settings", f"Invalid run settings:\n{error_text}") from e
