"""Terminal output helpers used by the run reporter."""

from shipyard.lib.ui.colors import ANSIColors, colorize, colorize_outcome
from shipyard.lib.ui.terminal import is_tty

__all__ = [
    "ANSIColors",
    "colorize",
    "colorize_outcome",
    "is_tty",
]
