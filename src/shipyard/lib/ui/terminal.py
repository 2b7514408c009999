"""Terminal detection utilities."""

import sys


def is_tty() -> bool:
    """Check if stdout is connected to a terminal.

    Reports are coloured only on an interactive terminal so that CI logs and
    redirected output stay plain.

    Returns:
        True if stdout is a TTY, False otherwise.
    """
    return sys.stdout.isatty()
