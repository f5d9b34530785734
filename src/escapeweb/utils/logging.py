"""Logging setup utilities for escapeweb.

The application and the uvicorn server share one set of handlers so that
request relay messages and server access lines end up in the same stream
and file, with the same format.
"""

from __future__ import annotations

import logging
import sys

from escapeweb.config.settings import LoggingConfig

# Loggers that receive the configured handlers. uvicorn.error and
# uvicorn.access propagate to "uvicorn".
MANAGED_LOGGERS = ("escapeweb", "uvicorn")


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    formatter = logging.Formatter(config.format)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ``escapeweb`` and ``uvicorn`` loggers.

    Run uvicorn with ``log_config=None`` so it keeps these handlers.
    Calling this again swaps the previous handlers out rather than
    stacking duplicates.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)
    handlers = _build_handlers(config)

    for name in MANAGED_LOGGERS:
        logger = logging.getLogger(name)
        for old in list(logger.handlers):
            logger.removeHandler(old)
            if old not in handlers:
                old.close()
        logger.setLevel(level)
        logger.propagate = False
        for handler in handlers:
            logger.addHandler(handler)

    logging.getLogger("escapeweb").info("Logging initialized at %s level", config.level)
