"""ANSI color utilities for report output.

Colours degrade to plain text when stdout is not a terminal.
"""

from shipyard.lib.ui.terminal import is_tty


class ANSIColors:
    """ANSI color escape codes used by the run report.

    Attributes:
        GREEN: Applied / succeeded.
        RED: Failed.
        YELLOW: Warnings and skipped components.
        CYAN: Endpoints and credentials.
        DIM: Unchanged components.
        RESET: Restore the default terminal color.
    """

    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    DIM = "\033[2m"
    RESET = "\033[0m"


OUTCOME_COLORS: dict[str, str] = {
    "applied": ANSIColors.GREEN,
    "unchanged": ANSIColors.DIM,
    "failed": ANSIColors.RED,
    "skipped": ANSIColors.YELLOW,
    "succeeded": ANSIColors.GREEN,
    "succeeded_with_warnings": ANSIColors.YELLOW,
}


def colorize(text: str, color: str, force_tty: bool | None = None) -> str:
    """Apply ANSI color codes to text if in TTY mode.

    Args:
        text: Text to colorize.
        color: ANSI color code to apply (e.g., ANSIColors.GREEN).
        force_tty: Override TTY detection (for testing). None uses auto-detection.

    Returns:
        Colorized text if in TTY mode, plain text otherwise.
    """
    use_colors = force_tty if force_tty is not None else is_tty()
    if not use_colors:
        return text
    return f"{color}{text}{ANSIColors.RESET}"


def colorize_outcome(outcome: str, force_tty: bool | None = None) -> str:
    """Colorize an outcome or run status label by its meaning."""
    color = OUTCOME_COLORS.get(outcome)
    if color is None:
        return outcome
    return colorize(outcome, color, force_tty=force_tty)
