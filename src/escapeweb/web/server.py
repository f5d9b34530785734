"""FastAPI HTTP server for the spreadsheet escaping front end.

Routes::

    GET  /          -> landing page with the upload form
    GET  /health    -> {"status": "ok", ...}
    POST /upload    <- multipart form: file + optional boolean flags
    GET  /static/*  -> bundled static assets

An upload is piped through the external transformer and the transformer's
stdout is streamed back as an attachment named after the uploaded file.
"""

from __future__ import annotations

import logging
import unicodedata
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import quote

import anyio
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from escapeweb import __version__
from escapeweb.config.settings import Settings, TransformerConfig
from escapeweb.transform.flags import RECOGNIZED_FLAGS, build_command
from escapeweb.transform.process import (
    TransformerError,
    TransformerProcess,
    TransformerTimeout,
)

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates"
STATIC_DIR = PACKAGE_DIR / "static"

# Name of the multipart field carrying the spreadsheet
FILE_FIELD = "file"


class HealthResponse(BaseModel):
    status: str = "ok"
    interpreter: str
    script: str
    script_found: bool = False


def content_disposition(filename: str) -> str:
    """Build an attachment ``Content-Disposition`` value for ``filename``.

    Plain names are passed through unchanged. Line breaks are dropped so
    the name cannot inject headers, and names that HTTP headers cannot
    carry as latin-1 get an RFC 5987 ``filename*`` with an ASCII fallback.
    """
    name = filename.replace("\r", "").replace("\n", "")
    try:
        name.encode("latin-1")
    except UnicodeEncodeError:
        fallback = (
            unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
            or "download.txt"
        )
        return f"attachment; filename={fallback}; filename*=UTF-8''{quote(name)}"
    return f"attachment; filename={name}"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the web application.

    Args:
        settings: Fully loaded settings. If None, built-in defaults are
                  used. The object is shared by every request and never
                  modified after startup.
    """
    settings = settings or Settings()
    transformer = settings.transformer
    max_upload_bytes = settings.server.max_upload_bytes

    app = FastAPI(
        title="escapeweb",
        description="Upload a spreadsheet export and download it escaped for Excel",
        version=__version__,
    )
    app.state.settings = settings
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> HTMLResponse:
        return templates.TemplateResponse(
            request, "index.html", {"flags": RECOGNIZED_FLAGS}
        )

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="ok",
            interpreter=transformer.interpreter,
            script=transformer.script,
            script_found=_script_path(transformer).is_file(),
        )

    @app.post("/upload")
    async def upload(request: Request) -> Response:
        async with request.form() as form:
            part = form.get(FILE_FIELD)
            if not isinstance(part, UploadFile) or not part.filename:
                return RedirectResponse("/", status_code=302)
            filename = part.filename
            data = await _read_upload(part, max_upload_bytes)
            command = [transformer.interpreter, *build_command(transformer.script, form)]

        logger.info(
            "Upload %r (%d bytes), flags=%s", filename, len(data), command[2:]
        )
        proc = TransformerProcess(
            command,
            timeout=transformer.timeout,
            kill_grace=transformer.kill_grace,
            chunk_size=transformer.chunk_size,
            cwd=transformer.working_dir,
        )
        # Until the response takes ownership, the process is released here
        handed_off = False
        try:
            first = await _start(proc, data)
            response = StreamingResponse(
                _relay(proc, first, filename),
                media_type="text/plain",
                headers={"Content-Disposition": content_disposition(filename)},
            )
            handed_off = True
            return response
        except TransformerTimeout as e:
            logger.warning("Transformer timed out for %r: %s", filename, e)
            raise HTTPException(status_code=504, detail=str(e)) from e
        except TransformerError as e:
            logger.warning("Transformer failed for %r: %s", filename, e)
            raise HTTPException(status_code=502, detail=str(e)) from e
        finally:
            if not handed_off:
                await _release(proc)

    return app


async def _release(proc: TransformerProcess) -> None:
    # Runs while the request is being cancelled on client disconnect
    with anyio.CancelScope(shield=True):
        await proc.close()


async def _read_upload(part: UploadFile, limit: int) -> bytes:
    """Load the spooled upload into memory, refusing more than ``limit`` bytes.

    A ``limit`` of 0 means no limit. At most ``limit + 1`` bytes are ever
    read, so an oversized upload never reaches memory in full.
    """
    if not limit:
        return await part.read()
    too_large = HTTPException(status_code=413, detail=f"Upload exceeds {limit} bytes")
    if part.size is not None and part.size > limit:
        raise too_large
    data = await part.read(limit + 1)
    if len(data) > limit:
        raise too_large
    return data


def _script_path(transformer: TransformerConfig) -> Path:
    script = Path(transformer.script)
    if transformer.working_dir is not None and not script.is_absolute():
        script = transformer.working_dir / script
    return script


async def _start(proc: TransformerProcess, data: bytes) -> bytes:
    """Spawn the transformer, feed it ``data`` and wait for the first output.

    Returns the first chunk, or b"" if the transformer exited cleanly
    without output. Raises TransformerError if it could not be started or
    exited non-zero before writing anything.
    """
    await proc.start()
    logger.debug("Transformer pid=%s running %s", proc.pid, proc.command)
    proc.feed(data)
    first = await proc.read_chunk()
    if not first:
        code = await proc.wait()
        if code != 0:
            stderr = proc.stderr_tail.decode("utf-8", errors="replace").strip()
            message = f"Transformer exited with code {code}"
            if stderr:
                message = f"{message}: {stderr}"
            raise TransformerError(message, returncode=code, stderr=proc.stderr_tail)
    return first


async def _relay(
    proc: TransformerProcess, first: bytes, filename: str
) -> AsyncIterator[bytes]:
    """Stream transformer output to the client, then release the process.

    The process is closed on every exit path, including the client
    disconnecting mid-stream.
    """
    total = len(first)
    try:
        if first:
            yield first
            async for chunk in proc.iter_output():
                total += len(chunk)
                yield chunk
        code = await proc.wait()
        if code != 0:
            logger.warning(
                "Transformer exited with code %d after %d bytes for %r; output truncated",
                code, total, filename,
            )
        else:
            logger.info("Sent %d bytes for %r", total, filename)
    except TransformerTimeout as e:
        logger.warning("Transformer timed out after %d bytes for %r: %s", total, filename, e)
    finally:
        await _release(proc)


def main() -> None:
    """Entry point for running the server standalone."""
    from escapeweb.config.settings import load_settings
    from escapeweb.utils.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.logging)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_config=None)


if __name__ == "__main__":
    main()
