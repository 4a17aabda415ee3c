"""Run the file-converter MCP server.

Usage:
    python -m file_converter [--transport stdio|http] [--port PORT] [--env-file FILE]

The stdio transport (default) is what MCP clients spawn directly.  The http
transport serves streamable HTTP on 127.0.0.1 so sessions outlive any single
client connection.
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

import uvicorn

from file_converter import converter
from file_converter.config import Config
from file_converter.process_manager.operations import SessionOperations
from file_converter.process_manager.supervisor import SessionSupervisor
from file_converter.server import DEFAULT_PORT, create_server

log = logging.getLogger(__name__)


class _QuietClientDisconnect(logging.Filter):
    """Log dropped HTTP clients as a one-line DEBUG record instead of a traceback."""

    def filter(self, record: logging.LogRecord) -> bool:
        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None and "ClosedResourceError" in repr(exc):
            record.levelno, record.levelname = logging.DEBUG, "DEBUG"
            record.msg, record.args = "MCP client went away mid-response", ()
            record.exc_info = record.exc_text = None
        return True


async def _run(config: Config, transport: str, port: int, check_ffmpeg: bool) -> None:
    supervisor = SessionSupervisor(
        settle_seconds=config.settle_seconds,
        sweep_interval=config.sweep_interval_seconds,
        stale_after=config.stale_after_seconds,
    )
    server = create_server(config, SessionOperations(supervisor), port=port)

    if check_ffmpeg:
        version = await converter.ffmpeg_version()
        if version is None:
            log.warning(
                "ffmpeg is not installed; conversions will try to install it. "
                "Run check-dependencies or install it manually."
            )
        else:
            log.info("ffmpeg is available: %s", version)

    supervisor.start_sweeper()
    try:
        if transport == "stdio":
            log.info("Serving file-converter on stdio")
            await server.run_stdio_async()
            return

        http = uvicorn.Server(uvicorn.Config(
            server.streamable_http_app(), host="127.0.0.1", port=port, log_level="info",
        ))
        # Sessions and the sweeper live on this loop, so uvicorn must not
        # install its own signal handlers; stop it from ours instead.
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        log.info("Serving file-converter on http://127.0.0.1:%d/mcp", port)
        serving = asyncio.create_task(http._serve())
        await asyncio.wait({serving, asyncio.create_task(stop.wait())},
                           return_when=asyncio.FIRST_COMPLETED)
        http.should_exit = True
        await serving
    finally:
        log.info("Killing remaining sessions")
        await supervisor.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="file-converter MCP server")
    parser.add_argument(
        "--transport", choices=("stdio", "http"), default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port", type=int, default=DEFAULT_PORT,
        help=f"Port for the http transport (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--env-file", type=Path, default=None,
        help="Load settings from this .env file",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Logging level (default: LOG_LEVEL env or INFO)",
    )
    parser.add_argument(
        "--skip-ffmpeg-check", action="store_true",
        help="Do not look for ffmpeg at startup",
    )
    args = parser.parse_args()

    try:
        config = Config.from_env(args.env_file)
    except ValueError as exc:
        parser.error(str(exc))

    # stdout carries the stdio transport, so logging stays on stderr
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s [file-converter] %(levelname)s %(message)s",
    )
    logging.getLogger("mcp.server.streamable_http_manager").addFilter(
        _QuietClientDisconnect()
    )

    asyncio.run(_run(config, args.transport, args.port, not args.skip_ffmpeg_check))


if __name__ == "__main__":
    main()
