"""Logging configuration for Shipyard.

All modules obtain loggers through :func:`get_logger` so that a single call
to :func:`setup_logging` from the CLI controls verbosity everywhere.
"""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "shipyard"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Third-party loggers that are chatty at DEBUG/INFO level
NOISY_LOGGERS = ("kubernetes", "urllib3", "httpx", "httpcore", "docker")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the Shipyard logger hierarchy.

    Args:
        verbose: Enable DEBUG output for Shipyard modules.
        quiet: Only emit errors.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level)

    if not any(getattr(h, "_shipyard", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler._shipyard = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a Shipyard module.

    Args:
        name: Module name, usually ``__name__``.

    Returns:
        Logger inside the ``shipyard`` hierarchy.
    """
    if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
