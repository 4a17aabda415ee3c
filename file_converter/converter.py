"""ffmpeg glue: conversion presets, input checks, detection and installation."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any

from file_converter.config import Config
from file_converter.models import ConversionError, ConversionParams, ToolResult
from file_converter.process_manager.operations import SessionOperations

log = logging.getLogger(__name__)

FILE_INFO_TIMEOUT = 30.0
INSTALL_TIMEOUT = 15 * 60.0

QUALITY_PRESETS: dict[str, dict[str, str]] = {
    "mp4": {
        "low": "-c:v libx264 -crf 28 -preset fast -c:a aac -b:a 128k",
        "medium": "-c:v libx264 -crf 23 -preset medium -c:a aac -b:a 192k",
        "high": "-c:v libx264 -crf 18 -preset slow -c:a aac -b:a 256k",
    },
    "webm": {
        "low": "-c:v libvpx-vp9 -crf 32 -b:v 0 -c:a libopus -b:a 96k",
        "medium": "-c:v libvpx-vp9 -crf 30 -b:v 0 -c:a libopus -b:a 128k",
        "high": "-c:v libvpx-vp9 -crf 24 -b:v 0 -c:a libopus -b:a 192k",
    },
    "mp3": {
        "low": "-vn -c:a libmp3lame -b:a 128k",
        "medium": "-vn -c:a libmp3lame -b:a 192k",
        "high": "-vn -c:a libmp3lame -b:a 320k",
    },
    "ogg": {
        "low": "-vn -c:a libvorbis -b:a 96k",
        "medium": "-vn -c:a libvorbis -b:a 160k",
        "high": "-vn -c:a libvorbis -b:a 240k",
    },
    "wav": {
        "low": "-vn -c:a pcm_s16le -ar 44100",
        "medium": "-vn -c:a pcm_s24le -ar 48000",
        "high": "-vn -c:a pcm_s24le -ar 96000",
    },
    "gif": {
        "low": '-vf "fps=10,scale=320:-1:flags=lanczos" -c:v gif',
        "medium": '-vf "fps=15,scale=480:-1:flags=lanczos" -c:v gif',
        "high": '-vf "fps=24,scale=720:-1:flags=lanczos" -c:v gif',
    },
    "png": {
        "low": "-vframes 1 -q:v 5",
        "medium": "-vframes 1 -q:v 3",
        "high": "-vframes 1 -q:v 1",
    },
}


def quote_path(path: str) -> str:
    if sys.platform == "win32":
        return f'"{path}"'
    return shlex.quote(path)


def file_size_mb(path: str | Path) -> float:
    return Path(path).stat().st_size / (1024 * 1024)


def build_ffmpeg_command(params: ConversionParams) -> str:
    """Assemble the ffmpeg command line for a conversion.

    ``-y`` is passed so an existing output file never triggers ffmpeg's
    interactive overwrite prompt.
    """
    preset = QUALITY_PRESETS[params.output_format.value][params.quality.value]
    parts = ["ffmpeg", "-y", "-i", quote_path(params.input_path), preset]
    if params.additional_options:
        parts.append(params.additional_options)
    parts.append(quote_path(params.output_path))
    return " ".join(parts)


def install_command(platform: str | None = None, *, reinstall: bool = False) -> str | None:
    """Return the package-manager command that installs ffmpeg, if known."""
    platform = platform or sys.platform
    if platform == "darwin":
        return "brew reinstall ffmpeg" if reinstall else "brew install ffmpeg"
    if platform == "win32":
        return "winget install -e --id FFmpeg.FFmpeg"
    if platform.startswith("linux"):
        if Path("/etc/debian_version").exists():
            flag = " --reinstall" if reinstall else ""
            return f"apt-get update && apt-get install -y{flag} ffmpeg"
        if Path("/etc/fedora-release").exists():
            return "dnf reinstall -y ffmpeg" if reinstall else "dnf install -y ffmpeg"
        if Path("/etc/alpine-release").exists():
            return "apk add --no-cache --update ffmpeg" if reinstall else "apk add --no-cache ffmpeg"
    return None


async def _run(*argv: str, timeout: float) -> tuple[int | None, str, str]:
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def ffmpeg_version() -> str | None:
    """First line of ``ffmpeg -version``, or None if ffmpeg is unusable."""
    try:
        code, stdout, _ = await _run("ffmpeg", "-version", timeout=FILE_INFO_TIMEOUT)
    except (OSError, asyncio.TimeoutError):
        return None
    if code != 0:
        return None
    return stdout.splitlines()[0] if stdout else ""


async def run_install(command: str) -> bool:
    log.info("Installing ffmpeg: %s", command)
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError:
        log.exception("Could not run ffmpeg installer")
        return False
    try:
        output, _ = await asyncio.wait_for(process.communicate(), INSTALL_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        log.error("ffmpeg installation timed out")
        return False
    if process.returncode != 0:
        log.error(
            "ffmpeg installation failed (exit %s): %s",
            process.returncode,
            output.decode("utf-8", errors="replace").strip(),
        )
        return False
    return True


async def ensure_ffmpeg_installed() -> bool:
    """Check for ffmpeg and try to install it when missing."""
    version = await ffmpeg_version()
    if version is not None:
        log.debug("ffmpeg is already installed: %s", version)
        return True

    command = install_command()
    if command is None:
        log.error("ffmpeg is not installed and %s is not supported for auto-install", sys.platform)
        return False

    log.warning("ffmpeg is not installed; attempting to install it")
    if not await run_install(command):
        return False

    version = await ffmpeg_version()
    if version is None:
        log.error("ffmpeg is still unavailable after installation")
        return False
    log.info("ffmpeg was installed successfully: %s", version)
    return True


def check_conversion(params: ConversionParams, config: Config) -> None:
    """Validate a conversion request.  Raises ConversionError."""
    allowed = ", ".join(config.allowed_directories) or "none"

    if not Path(params.input_path).is_file():
        raise ConversionError(f"Input file does not exist: {params.input_path}")
    if not config.is_path_allowed(params.input_path):
        raise ConversionError(
            f"Access to input path {params.input_path} is not allowed. "
            f"Allowed directories: {allowed}"
        )
    if not config.is_path_allowed(params.output_path):
        raise ConversionError(
            f"Access to output path {params.output_path} is not allowed. "
            f"Allowed directories: {allowed}"
        )

    size = file_size_mb(params.input_path)
    if size > config.max_file_size_mb:
        raise ConversionError(
            f"Input file size ({size:.2f} MB) exceeds maximum allowed size "
            f"({config.max_file_size_mb} MB)"
        )


async def convert_file(
    params: ConversionParams,
    config: Config,
    operations: SessionOperations,
) -> ToolResult:
    """Start an ffmpeg conversion as a background session."""
    if not await ensure_ffmpeg_installed():
        return ToolResult(
            "Error converting file: Failed to install ffmpeg. "
            "Please install it manually and try again.",
            is_error=True,
        )

    try:
        check_conversion(params, config)
        Path(params.output_path).parent.mkdir(parents=True, exist_ok=True)
    except (ConversionError, OSError) as exc:
        return ToolResult(f"Error converting file: {exc}", is_error=True)

    command = build_ffmpeg_command(params)
    started = await operations.start_session({
        "command": command,
        "timeout_ms": config.timeout_seconds * 1000,
    })
    if started.is_error:
        return ToolResult(
            f"Error converting file: Error starting conversion process\n{started.text}",
            is_error=True,
            session_id=started.session_id,
        )

    return ToolResult(
        f"Successfully started conversion of {params.input_path} to "
        f"{params.output_format.value}. Process ID: {started.session_id}\n{started.text}",
        session_id=started.session_id,
    )


async def get_file_info(file_path: str, config: Config) -> dict[str, Any]:
    """Probe a media file with ffprobe.  Raises ConversionError."""
    if not Path(file_path).is_file():
        raise ConversionError(f"File does not exist: {file_path}")
    if not config.is_path_allowed(file_path):
        allowed = ", ".join(config.allowed_directories) or "none"
        raise ConversionError(
            f"Access to file path {file_path} is not allowed. "
            f"Allowed directories: {allowed}"
        )

    try:
        code, stdout, stderr = await _run(
            "ffprobe", "-v", "quiet", "-print_format", "json",
            "-show_format", "-show_streams", file_path,
            timeout=FILE_INFO_TIMEOUT,
        )
    except OSError as exc:
        raise ConversionError(f"Could not run ffprobe: {exc}") from exc
    except asyncio.TimeoutError:
        raise ConversionError("ffprobe timed out") from None

    if code != 0:
        raise ConversionError(
            f"ffprobe exited with code {code}: {stderr.strip() or 'no details'}"
        )
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ConversionError(f"Could not parse ffprobe output: {exc}") from exc


async def check_dependencies(force_install: bool = False) -> str:
    lines = []
    if force_install:
        lines.append("Forcing reinstallation of ffmpeg...")
        command = install_command(reinstall=True)
        if command is None:
            lines.append("Unsupported platform for force reinstall. Please install ffmpeg manually.")
        else:
            ok = await run_install(command)
            lines.append(f"Reinstall command {'succeeded' if ok else 'failed'}: {command}")

    if await ensure_ffmpeg_installed():
        version = await ffmpeg_version()
        lines.append(f"ffmpeg is properly installed: {version}")
        lines.append("All dependencies are satisfied.")
    else:
        lines.append("Failed to install ffmpeg. Please install it manually.")
    return "\n".join(lines)
