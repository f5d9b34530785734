"""External transformer module for escapeweb.

Builds the command line for the external filter program and manages the
child process that runs it for the duration of a single request.

Public API:
    RECOGNIZED_FLAGS -- Boolean options understood by the transformer
    enable_flags / build_command -- Command-line assembly
    TransformerProcess -- Request-scoped child process
"""

from escapeweb.transform.flags import RECOGNIZED_FLAGS, build_command, enable_flags
from escapeweb.transform.process import (
    TransformerError,
    TransformerProcess,
    TransformerTimeout,
)

__all__ = [
    "RECOGNIZED_FLAGS",
    "build_command",
    "enable_flags",
    "TransformerError",
    "TransformerProcess",
    "TransformerTimeout",
]
