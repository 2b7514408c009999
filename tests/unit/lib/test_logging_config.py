"""Unit tests for shipyard.lib.logging_config module."""

import logging
from collections.abc import Generator

import pytest

from shipyard.lib.logging_config import LOGGER_NAME, get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logger() -> Generator[logging.Logger, None, None]:
    """Restore the shipyard logger after each test."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.mark.unit
class TestGetLogger:
    """Tests for get_logger()."""

    def test_module_names_kept(self) -> None:
        """Loggers of shipyard modules keep their name."""
        assert get_logger("shipyard.deploy.applier").name == "shipyard.deploy.applier"
        assert get_logger("shipyard").name == "shipyard"

    def test_foreign_names_nested(self) -> None:
        """Other names are placed under the shipyard logger."""
        assert get_logger("plugins.extra").name == "shipyard.plugins.extra"
        assert get_logger("shipyardish").name == "shipyard.shipyardish"


@pytest.mark.unit
class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.mark.parametrize(
        ("verbose", "quiet", "level"),
        [
            (False, False, logging.INFO),
            (True, False, logging.DEBUG),
            (False, True, logging.ERROR),
            (True, True, logging.ERROR),
        ],
    )
    def test_levels(
        self, restore_logger: logging.Logger, verbose: bool, quiet: bool, level: int
    ) -> None:
        """--quiet wins over --verbose."""
        setup_logging(verbose=verbose, quiet=quiet)

        assert restore_logger.level == level
        assert restore_logger.propagate is False

    def test_single_handler(self, restore_logger: logging.Logger) -> None:
        """Repeated setup does not duplicate the handler."""
        setup_logging()
        setup_logging(verbose=True)

        owned = [h for h in restore_logger.handlers if getattr(h, "_shipyard", False)]
        assert len(owned) == 1

    def test_quiets_client_libraries(self) -> None:
        """Chatty client libraries are limited to warnings."""
        setup_logging(verbose=True)

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("kubernetes").level == logging.WARNING
