"""Environment variable handling for deployment descriptions.

Deployment files may reference ``${VAR}`` or ``${VAR:-default}``; references
are substituted in the raw text before YAML parsing. A ``.env`` file is read
with python-dotenv without overriding variables already set in the process.
"""

import logging
import os
import re
from pathlib import Path

from dotenv import load_dotenv

from shipyard.lib.errors import ConfigError

logger = logging.getLogger(__name__)

# ${NAME} or ${NAME:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def get_env_var(name: str, default: str | None = None) -> str:
    """Return an environment variable or raise ConfigError.

    Args:
        name: Variable name
        default: Value used when the variable is unset

    Returns:
        The variable value or the default

    Raises:
        ConfigError: If the variable is unset and no default is given
    """
    value = os.environ.get(name)
    if value is not None:
        return value
    if default is not None:
        return default
    raise ConfigError(
        name,
        f"Environment variable '{name}' is not set and has no default. "
        f"Set it in your shell or in a .env file.",
    )


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw text, typically a YAML document

    Returns:
        Text with every reference replaced

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def _replace(match: re.Match[str]) -> str:
        return get_env_var(match.group(1), match.group(2))

    return ENV_VAR_PATTERN.sub(_replace, text)


def load_env_file(path: str | Path | None = None) -> bool:
    """Load a .env file into the process environment.

    Variables already present in the environment are kept.

    Args:
        path: Path to the .env file (default: ./.env)

    Returns:
        True if a file was found and loaded
    """
    env_path = Path(path) if path is not None else Path.cwd() / ".env"
    if not env_path.is_file():
        logger.debug(f"No .env file at {env_path}")
        return False
    loaded = load_dotenv(env_path, override=False)
    logger.debug(f"Loaded environment from {env_path}")
    return loaded
