"""Configuration loading, validation, and defaults for Shipyard.

Main components:
- ConfigLoader: Load and validate deployment.yaml files
- load_run_settings: Resolve run settings (CLI > environment > defaults)
- Environment variable substitution (${VAR} and ${VAR:-default} patterns)
- Validation utilities for configuration data
"""

from shipyard.config.env_loader import get_env_var, load_env_file, substitute_env_vars
from shipyard.config.loader import ConfigLoader, load_run_settings

__all__ = [
    "ConfigLoader",
    "load_run_settings",
    "substitute_env_vars",
    "get_env_var",
    "load_env_file",
]
