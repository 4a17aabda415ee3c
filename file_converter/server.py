"""MCP server exposing session and conversion tools over stdio or HTTP."""

from __future__ import annotations

import json

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from file_converter import converter
from file_converter.config import Config
from file_converter.models import (
    DEFAULT_TIMEOUT_MS,
    ConversionError,
    ConversionParams,
    OutputFormat,
    Quality,
    ToolResult,
)
from file_converter.process_manager.operations import SessionOperations
from file_converter.process_manager.supervisor import SessionSupervisor

# Default port for the streamable-HTTP transport
DEFAULT_PORT = 8902


def _unwrap(result: ToolResult) -> str:
    """Turn an error result into a ToolError so FastMCP flags it with isError."""
    if result.is_error:
        raise ToolError(result.text)
    return result.text


def create_server(
    config: Config | None = None,
    operations: SessionOperations | None = None,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the file-converter MCP server."""

    cfg = config or Config()
    ops = operations or SessionOperations(
        SessionSupervisor(
            settle_seconds=cfg.settle_seconds,
            sweep_interval=cfg.sweep_interval_seconds,
            stale_after=cfg.stale_after_seconds,
        )
    )

    mcp = FastMCP(
        name="file-converter",
        instructions=(
            "Converts media files with ffmpeg and runs allowed commands as "
            "background sessions. Use convert-file or start-session to launch "
            "work, read-output to poll it, list-sessions for status, and "
            "terminate-session to kill it."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Session tools
    # ------------------------------------------------------------------
    @mcp.tool(name="start-session")
    async def start_session(
        command: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        shell: str | None = None,
    ) -> str:
        """Execute a command in a shell and return its PID plus early output.

        Only commands whose first word is on the allow-list are accepted.
        The command keeps running in the background; poll it with read-output.

        Args:
            command: The command line to execute.
            timeout_ms: Kill the command after this many milliseconds. 0 disables.
            shell: Shell to run the command under (e.g. "bash", "sh", "zsh").
        """
        args = {"command": command, "timeout_ms": timeout_ms}
        if shell is not None:
            args["shell"] = shell
        return _unwrap(await ops.start_session(args))

    @mcp.tool(name="read-output")
    async def read_output(id: int) -> str:
        """Read everything a session printed since the previous read.

        Args:
            id: Process ID returned by start-session or convert-file.
        """
        return _unwrap(await ops.read_output({"id": id}))

    @mcp.tool(name="terminate-session")
    async def terminate_session(id: int) -> str:
        """Forcefully kill a running session and all of its child processes.

        Args:
            id: Process ID of the session to terminate.
        """
        return _unwrap(await ops.terminate_session({"id": id}))

    @mcp.tool(name="list-sessions")
    async def list_sessions() -> str:
        """List all active sessions with their running flag and runtime."""
        return _unwrap(await ops.list_sessions())

    # ------------------------------------------------------------------
    # Conversion tools
    # ------------------------------------------------------------------
    @mcp.tool(name="convert-file")
    async def convert_file(
        input_path: str,
        output_path: str,
        output_format: OutputFormat,
        quality: Quality = Quality.MEDIUM,
        additional_options: str | None = None,
    ) -> str:
        """Convert a media file to another format using ffmpeg.

        The conversion runs as a background session; use read-output with the
        returned Process ID to follow its progress.

        Args:
            input_path: Absolute path to the input file.
            output_path: Absolute path where the output file should be saved.
            output_format: Format to convert to.
            quality: Quality preset for the output file.
            additional_options: Extra ffmpeg options, inserted before the output path.
        """
        params = ConversionParams(
            input_path=input_path,
            output_path=output_path,
            output_format=output_format,
            quality=quality,
            additional_options=additional_options,
        )
        return _unwrap(await converter.convert_file(params, cfg, ops))

    @mcp.tool(name="get-file-info")
    async def get_file_info(file_path: str) -> str:
        """Get detailed stream and container information about a media file.

        Args:
            file_path: Absolute path to the media file.
        """
        try:
            info = await converter.get_file_info(file_path, cfg)
        except ConversionError as exc:
            raise ToolError(f"Error getting file info: {exc}") from exc
        return json.dumps(info, indent=2)

    @mcp.tool(name="check-dependencies")
    async def check_dependencies(force_install: bool = False) -> str:
        """Check that ffmpeg is installed, installing it if it is missing.

        Args:
            force_install: Reinstall ffmpeg even if it is already present.
        """
        return await converter.check_dependencies(force_install)

    return mcp
