"""Unit tests for shipyard.lib.ui.colors module."""

from unittest.mock import patch

import pytest

from shipyard.lib.ui.colors import ANSIColors, colorize, colorize_outcome
from shipyard.lib.ui.terminal import is_tty


@pytest.mark.unit
class TestColorize:
    """Tests for colorize function."""

    def test_applies_color_when_tty(self) -> None:
        """Text is wrapped in color codes on a terminal."""
        result = colorize("test", ANSIColors.GREEN, force_tty=True)

        assert result == f"{ANSIColors.GREEN}test{ANSIColors.RESET}"

    def test_plain_text_when_not_tty(self) -> None:
        """Text is returned unchanged off a terminal."""
        assert colorize("test", ANSIColors.GREEN, force_tty=False) == "test"

    def test_auto_detection(self) -> None:
        """Without force_tty the terminal is detected."""
        with patch("shipyard.lib.ui.colors.is_tty", return_value=False):
            assert colorize("test", ANSIColors.RED) == "test"


@pytest.mark.unit
class TestColorizeOutcome:
    """Tests for colorize_outcome function."""

    @pytest.mark.parametrize(
        ("outcome", "color"),
        [
            ("applied", ANSIColors.GREEN),
            ("unchanged", ANSIColors.DIM),
            ("failed", ANSIColors.RED),
            ("skipped", ANSIColors.YELLOW),
            ("succeeded_with_warnings", ANSIColors.YELLOW),
        ],
    )
    def test_outcome_colors(self, outcome: str, color: str) -> None:
        """Each outcome has its own color."""
        assert colorize_outcome(outcome, force_tty=True) == (
            f"{color}{outcome}{ANSIColors.RESET}"
        )

    def test_unknown_label_plain(self) -> None:
        """Unknown labels are never colored."""
        assert colorize_outcome("pending", force_tty=True) == "pending"


@pytest.mark.unit
class TestIsTty:
    """Tests for is_tty function."""

    @pytest.mark.parametrize("value", [True, False])
    def test_follows_stdout(self, value: bool) -> None:
        """is_tty reports whether stdout is a terminal."""
        with patch("sys.stdout.isatty", return_value=value):
            assert is_tty() is value
