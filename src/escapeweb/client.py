"""HTTP client for a running escapeweb server.

Uploads a spreadsheet to ``POST /upload`` and saves the streamed result.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable
from urllib.parse import unquote

import httpx

from escapeweb.transform.flags import RECOGNIZED_FLAGS

logger = logging.getLogger(__name__)

_FILENAME_STAR_RE = re.compile(r"filename\*=UTF-8''([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r"filename=([^;]+)", re.IGNORECASE)


class ClientError(Exception):
    """Raised when talking to the escapeweb server fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def filename_from_disposition(header: str | None) -> str | None:
    """Extract the download name from a ``Content-Disposition`` header."""
    if not header:
        return None
    match = _FILENAME_STAR_RE.search(header)
    if match:
        return unquote(match.group(1).strip())
    match = _FILENAME_RE.search(header)
    if match:
        return match.group(1).strip().strip('"')
    return None


class UploadClient:
    """Sends spreadsheets to the escapeweb server.

    Example usage::

        async with UploadClient("http://localhost:8000") as client:
            out = await client.convert(Path("data.txt"), flags=["no-dates"])
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the HTTP client and verify the server is reachable."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            resp = await self._client.get("/health")
            resp.raise_for_status()
            logger.info("Connected to server at %s", self._base_url)
        except httpx.HTTPError as e:
            await self._client.aclose()
            self._client = None
            raise ClientError(f"Failed to connect to server: {e}") from e

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from server")

    async def convert(
        self,
        path: Path,
        flags: Iterable[str] = (),
        output: Path | None = None,
    ) -> Path:
        """Upload ``path`` and write the converted text to ``output``.

        Args:
            path: Spreadsheet file to upload.
            flags: Recognized option names to switch on.
            output: Destination file. Defaults to the name the server
                    suggests, placed next to ``path``.

        Returns:
            The path the converted output was written to.

        Raises:
            ClientError: If the upload fails or the server rejects it.
            ValueError: If an unknown flag is requested.
        """
        if self._client is None:
            raise ClientError("Not connected to server")
        flags = list(flags)
        unknown = set(flags) - set(RECOGNIZED_FLAGS)
        if unknown:
            raise ValueError(f"Unknown flags: {', '.join(sorted(unknown))}")
        form = {flag: "true" for flag in flags}

        files = {"file": (path.name, path.read_bytes(), "application/octet-stream")}
        try:
            async with self._client.stream(
                "POST", "/upload", files=files, data=form
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    raise ClientError(
                        f"Server rejected {path.name}: {_error_detail(resp)}",
                        status_code=resp.status_code,
                    )
                if resp.is_redirect:
                    raise ClientError(
                        "Server did not receive the file", status_code=resp.status_code
                    )
                if output is None:
                    output = _default_output(path, resp.headers.get("content-disposition"))
                size = 0
                with open(output, "wb") as out:
                    async for chunk in resp.aiter_bytes():
                        out.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as e:
            raise ClientError(f"Upload of {path.name} failed: {e}") from e

        logger.info("Wrote %d bytes to %s", size, output)
        return output

    async def __aenter__(self) -> UploadClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()


def _default_output(path: Path, disposition: str | None) -> Path:
    """Pick an output path next to ``path`` that never overwrites it."""
    name = Path(filename_from_disposition(disposition) or "").name
    output = path.with_name(name or f"{path.stem}.txt")
    if output == path:
        output = path.with_suffix(path.suffix + ".txt")
    return output


def _error_detail(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("detail", resp.text))
    except ValueError:
        return resp.text or resp.reason_phrase
