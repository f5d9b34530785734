"""Request-scoped child process running the external transformer.

The transformer is an opaque filter: uploaded bytes go in on stdin and
the converted text comes out on stdout. Each request owns exactly one
``TransformerProcess`` and must close it on every exit path so that no
child outlives the request that started it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import AsyncIterator, Awaitable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 60.0
DEFAULT_KILL_GRACE = 2.0
DEFAULT_CHUNK_SIZE = 64 * 1024
# Amount of stderr kept for error reports
STDERR_TAIL_BYTES = 4096


class TransformerError(Exception):
    """Raised when the transformer cannot be run or fails."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TransformerTimeout(TransformerError):
    """Raised when the transformer exceeds its deadline."""


class TransformerProcess:
    """One invocation of the external transformer with piped stdio.

    Usage::

        async with TransformerProcess(["perl", "escape_excel.pl"]) as proc:
            proc.feed(data)
            async for chunk in proc.iter_output():
                ...
            code = await proc.wait()

    The child is started in its own session so that terminating it also
    reaches any helpers it spawns.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout: float | None = DEFAULT_TIMEOUT,
        kill_grace: float = DEFAULT_KILL_GRACE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cwd: Path | str | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._command = list(command)
        self._timeout = timeout
        self._kill_grace = kill_grace
        self._chunk_size = chunk_size
        self._cwd = cwd
        self._process: asyncio.subprocess.Process | None = None
        self._deadline: float | None = None
        self._feed_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_tail = bytearray()

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def stderr_tail(self) -> bytes:
        return bytes(self._stderr_tail)

    async def start(self) -> None:
        """Spawn the transformer with stdin, stdout and stderr piped."""
        if self._process is not None:
            raise TransformerError("Transformer already started")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                start_new_session=True,
            )
        except OSError as e:
            raise TransformerError(
                f"Cannot start transformer {self._command[0]!r}: {e}"
            ) from e

        loop = asyncio.get_running_loop()
        if self._timeout is not None:
            self._deadline = loop.time() + self._timeout
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        logger.debug("Started transformer %s (pid=%d)", self._command, self._process.pid)

    def feed(self, data: bytes) -> None:
        """Write ``data`` to the transformer's stdin, then close it.

        Writing happens in a background task so that output can be read
        while input is still being delivered.
        """
        process = self._require_process()
        if self._feed_task is not None:
            raise TransformerError("Transformer input already supplied")
        self._feed_task = asyncio.create_task(self._write_input(process, data))

    async def read_chunk(self) -> bytes:
        """Read the next chunk of output. Returns b"" at end of output."""
        process = self._require_process()
        assert process.stdout is not None
        return await self._within_deadline(process.stdout.read(self._chunk_size))

    async def iter_output(self) -> AsyncIterator[bytes]:
        """Yield output chunks as the transformer produces them."""
        while True:
            chunk = await self.read_chunk()
            if not chunk:
                break
            yield chunk

    async def wait(self) -> int:
        """Wait for the transformer to exit and return its exit code."""
        process = self._require_process()
        code = await self._within_deadline(process.wait())
        if self._stderr_task is not None:
            # stderr reaches EOF once the child and its group are gone
            await asyncio.wait({self._stderr_task}, timeout=self._kill_grace)
        return code

    async def terminate(self) -> None:
        """Stop the transformer: SIGTERM, then SIGKILL after the grace period."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), self._kill_grace)
        except asyncio.TimeoutError:
            logger.warning(
                "Transformer pid=%d ignored SIGTERM, sending SIGKILL", process.pid
            )
            self._signal_group(signal.SIGKILL)
            await process.wait()
        logger.debug("Transformer pid=%d terminated (code=%s)", process.pid, process.returncode)

    async def close(self) -> None:
        """Release the process and its helper tasks. Safe to call repeatedly."""
        await self.terminate()
        for task in (self._feed_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def __aenter__(self) -> TransformerProcess:
        await self.start()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        await self.close()

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise TransformerError("Transformer has not been started")
        return self._process

    async def _within_deadline(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but give up (and kill the child) at the deadline."""
        if self._deadline is None:
            return await awaitable
        remaining = max(self._deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError as e:
            await self.terminate()
            raise TransformerTimeout(
                f"Transformer exceeded {self._timeout:g}s timeout",
                returncode=self.returncode,
                stderr=self.stderr_tail,
            ) from e

    def _signal_group(self, sig: signal.Signals) -> None:
        assert self._process is not None
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            pass

    async def _write_input(self, process: asyncio.subprocess.Process, data: bytes) -> None:
        assert process.stdin is not None
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Transformer pid=%d closed stdin early", process.pid)
        finally:
            process.stdin.close()

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            chunk = await self._process.stderr.read(self._chunk_size)
            if not chunk:
                break
            self._stderr_tail += chunk
            del self._stderr_tail[:-STDERR_TAIL_BYTES]
