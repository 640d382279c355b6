"""Tests for logging setup."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from chat_siphon.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def clean_package_logger() -> Iterator[None]:
    """Run each test against a package logger with no handlers."""
    package_logger = logging.getLogger("chat_siphon")
    saved = list(package_logger.handlers)
    package_logger.handlers.clear()
    yield
    for handler in package_logger.handlers:
        handler.close()
    package_logger.handlers[:] = saved


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_module_loggers_write_to_component_file(self, tmp_path: Path) -> None:
        """Test that a module logger reaches the component's log file."""
        setup_logging("watcher", log_dir=tmp_path, console=False)

        get_logger("history").info("reconciled chat=c1")
        for handler in logging.getLogger("chat_siphon").handlers:
            handler.flush()

        content = (tmp_path / "watcher.log").read_text(encoding="utf-8")
        assert "chat_siphon.history: reconciled chat=c1" in content

    def test_does_not_add_duplicate_handlers(self, tmp_path: Path) -> None:
        """Test that repeated setup keeps a single set of handlers."""
        setup_logging("watcher", log_dir=tmp_path, console=True)
        count = len(logging.getLogger("chat_siphon").handlers)

        logger = setup_logging("watcher", log_dir=tmp_path, console=True)

        assert len(logging.getLogger("chat_siphon").handlers) == count
        assert logger.name == "chat_siphon.watcher"
