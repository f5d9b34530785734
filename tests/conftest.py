"""Shared test fixtures for the escapeweb test suite.

The external transformer is replaced by small Python programs written to
a temporary directory and run with the current interpreter, so the relay
can be exercised end to end without Perl or escape_excel.pl.
"""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from escapeweb.config.settings import ServerConfig, Settings, TransformerConfig


# ---------------------------------------------------------------------------
# Stub transformer programs
# ---------------------------------------------------------------------------

STUBS = {
    # Copies stdin to stdout unchanged
    "echo": """
        import sys
        sys.stdout.buffer.write(sys.stdin.buffer.read())
    """,
    # Reports the arguments it was started with as JSON
    "args": """
        import json, sys
        sys.stdin.buffer.read()
        sys.stdout.write(json.dumps(sys.argv[1:]))
    """,
    # Fails before writing any output
    "fail": """
        import sys
        sys.stdin.buffer.read()
        sys.stderr.write("boom: cannot parse input\\n")
        sys.exit(3)
    """,
    # Writes some output, then fails
    "partial": """
        import sys
        sys.stdin.buffer.read()
        sys.stdout.write("partial line\\n")
        sys.stdout.flush()
        sys.exit(1)
    """,
    # Succeeds without writing anything
    "silent": """
        import sys
        sys.stdin.buffer.read()
    """,
    # Keeps producing output until killed
    "ticker": """
        import sys, time
        while True:
            sys.stdout.write("tick\\n")
            sys.stdout.flush()
            time.sleep(0.05)
    """,
    # Never finishes on its own
    "hang": """
        import time
        time.sleep(60)
    """,
    # Ignores SIGTERM, so only SIGKILL stops it
    "stubborn": """
        import signal, sys, time
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        sys.stdout.write("ready\\n")
        sys.stdout.flush()
        time.sleep(60)
    """,
    # Floods stderr, then fails without output
    "noisy": """
        import sys
        sys.stdin.buffer.read()
        sys.stderr.write("x" * 10000)
        sys.stderr.write("END")
        sys.exit(2)
    """,
}


@pytest.fixture
def stub_path(tmp_path: Path) -> Callable[[str], Path]:
    """Return a factory that writes a named stub program and returns its path."""

    def _make(name: str) -> Path:
        path = tmp_path / f"{name}_stub.py"
        path.write_text(textwrap.dedent(STUBS[name]))
        return path

    return _make


@pytest.fixture
def stub_command(stub_path: Callable[[str], Path]) -> Callable[[str], list[str]]:
    """Return a factory building ``[python, stub]`` for a named stub."""

    def _make(name: str) -> list[str]:
        return [sys.executable, str(stub_path(name))]

    return _make


@pytest.fixture
def make_settings(stub_path: Callable[[str], Path]) -> Callable[..., Settings]:
    """Return a factory for Settings whose transformer is a named stub."""

    def _make(
        stub: str = "echo",
        timeout: float | None = 10.0,
        max_upload_bytes: int = 1024 * 1024,
        interpreter: str = sys.executable,
    ) -> Settings:
        return Settings(
            server=ServerConfig(max_upload_bytes=max_upload_bytes),
            transformer=TransformerConfig(
                interpreter=interpreter,
                script=str(stub_path(stub)),
                timeout=timeout,
                kill_grace=0.5,
            ),
        )

    return _make
