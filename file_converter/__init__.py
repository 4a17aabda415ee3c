"""MCP server that converts media files with ffmpeg and manages command sessions."""

__version__ = "1.0.0"
