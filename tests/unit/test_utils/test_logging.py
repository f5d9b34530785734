"""Tests for logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

from escapeweb.config.settings import LoggingConfig
from escapeweb.utils.logging import setup_logging


class TestSetupLogging:
    def test_defaults(self) -> None:
        setup_logging()
        logger = logging.getLogger("escapeweb")
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1

    def test_repeated_calls_do_not_stack_handlers(self) -> None:
        setup_logging(LoggingConfig(level="debug"))
        setup_logging(LoggingConfig(level="debug"))
        logger = logging.getLogger("escapeweb")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "escapeweb.log"
        setup_logging(LoggingConfig(file=str(log_file)))
        logger = logging.getLogger("escapeweb")
        assert len(logger.handlers) == 2
        logging.getLogger("escapeweb.web.server").info("hello from the relay")
        for handler in logger.handlers:
            handler.flush()
        assert "hello from the relay" in log_file.read_text()
        setup_logging()

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(LoggingConfig(level="chatty"))
        assert logging.getLogger("escapeweb").level == logging.INFO

    def test_uvicorn_shares_handlers(self) -> None:
        setup_logging(LoggingConfig(level="warning"))
        app_logger = logging.getLogger("escapeweb")
        server_logger = logging.getLogger("uvicorn")
        assert server_logger.handlers == app_logger.handlers
        assert server_logger.level == logging.WARNING
        setup_logging()

    def test_uvicorn_messages_reach_log_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "escapeweb.log"
        setup_logging(LoggingConfig(file=str(log_file)))
        logging.getLogger("uvicorn.error").info("Application startup complete.")
        for handler in logging.getLogger("uvicorn").handlers:
            handler.flush()
        assert "Application startup complete." in log_file.read_text()
        setup_logging()
