"""Command-line interface for escapeweb.

Provides the main entry point for starting the web server and for
converting a file through a running server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from escapeweb.transform.flags import RECOGNIZED_FLAGS

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="escapeweb",
        description="Web front end for escaping spreadsheet exports for Excel",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/escapeweb.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")

    convert_parser = subparsers.add_parser(
        "convert", help="Upload a file to a running server and save the result",
    )
    convert_parser.add_argument("file", type=Path, help="Spreadsheet file to convert")
    convert_parser.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output file (default: name suggested by the server)",
    )
    convert_parser.add_argument(
        "--url", type=str, default=None,
        help="Server base URL (default: http://localhost:<server.port>)",
    )
    for flag in RECOGNIZED_FLAGS:
        convert_parser.add_argument(
            f"--{flag}", dest=flag.replace("-", "_"), action="store_true",
            help=f"Pass --{flag} to the transformer",
        )

    return parser.parse_args(argv)


def selected_flags(args: argparse.Namespace) -> list[str]:
    """Recognized flags switched on for ``convert``, in canonical order."""
    return [flag for flag in RECOGNIZED_FLAGS if getattr(args, flag.replace("-", "_"), False)]


async def _convert(settings, args) -> int:
    """Upload ``args.file`` and write the converted output."""
    from escapeweb.client import ClientError, UploadClient

    base_url = args.url or f"http://localhost:{settings.server.port}"
    timeout = settings.transformer.timeout or 60.0
    try:
        async with UploadClient(base_url=base_url, timeout=timeout) as client:
            output = await client.convert(args.file, flags=selected_flags(args), output=args.output)
    except (ClientError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Saved converted output to {output}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the escapeweb CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from escapeweb.config.settings import load_settings
    from escapeweb.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings = settings.model_copy(
            update={"logging": settings.logging.model_copy(update={"level": "DEBUG"})}
        )

    setup_logging(settings.logging)

    if args.command == "serve":
        import uvicorn
        from escapeweb.web.server import create_app

        overrides = {}
        if args.host is not None:
            overrides["host"] = args.host
        if args.port is not None:
            overrides["port"] = args.port
        if overrides:
            settings = settings.model_copy(
                update={"server": settings.server.model_copy(update=overrides)}
            )
        server = settings.server
        logger.info("Starting server on %s:%d", server.host, server.port)
        uvicorn.run(create_app(settings), host=server.host, port=server.port, log_config=None)

    elif args.command == "convert":
        logger.info("Converting %s", args.file)
        sys.exit(asyncio.run(_convert(settings, args)))


if __name__ == "__main__":
    main()
