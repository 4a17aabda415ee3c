"""Tests for ffmpeg command assembly, input checks and dependency handling."""

import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

from file_converter import converter
from file_converter.config import Config
from file_converter.models import (
    ConversionError,
    ConversionParams,
    OutputFormat,
    Quality,
    ToolResult,
)
from file_converter.process_manager.authorizer import CommandAuthorizer


def _params(tmp_path, **overrides) -> ConversionParams:
    values = {
        "input_path": str(tmp_path / "in.mov"),
        "output_path": str(tmp_path / "out" / "clip.mp4"),
        "output_format": "mp4",
    }
    values.update(overrides)
    return ConversionParams(**values)


# ---------------------------------------------------------------------------
# Command assembly
# ---------------------------------------------------------------------------

@pytest.mark.skipif(sys.platform == "win32", reason="POSIX quoting")
def test_build_ffmpeg_command() -> None:
    params = ConversionParams(
        input_path="/media/in file.mov",
        output_path="/media/out.mp4",
        output_format="mp4",
        quality="high",
    )
    assert converter.build_ffmpeg_command(params) == (
        "ffmpeg -y -i '/media/in file.mov' "
        "-c:v libx264 -crf 18 -preset slow -c:a aac -b:a 256k "
        "/media/out.mp4"
    )


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX quoting")
def test_additional_options_precede_output() -> None:
    params = ConversionParams(
        input_path="/media/in.wav",
        output_path="/media/out.mp3",
        output_format="mp3",
        additional_options="-ss 10 -t 5",
    )
    command = converter.build_ffmpeg_command(params)
    assert command.endswith("-b:a 192k -ss 10 -t 5 /media/out.mp3")


def test_default_quality_is_medium() -> None:
    params = ConversionParams(input_path="a", output_path="b", output_format="gif")
    assert params.quality is Quality.MEDIUM
    assert "fps=15,scale=480" in converter.build_ffmpeg_command(params)


def test_every_format_has_every_quality() -> None:
    for fmt in OutputFormat:
        for quality in Quality:
            assert converter.QUALITY_PRESETS[fmt.value][quality.value]


def test_conversion_command_passes_authorizer() -> None:
    params = ConversionParams(input_path="a.mov", output_path="b.webm", output_format="webm")
    assert CommandAuthorizer().is_allowed(converter.build_ffmpeg_command(params))


def test_unknown_format_rejected() -> None:
    with pytest.raises(ValueError):
        ConversionParams(input_path="a", output_path="b", output_format="avi")


@pytest.mark.parametrize("platform, expected", [
    ("darwin", "brew install ffmpeg"),
    ("win32", "winget install -e --id FFmpeg.FFmpeg"),
    ("sunos5", None),
])
def test_install_command(platform: str, expected) -> None:
    assert converter.install_command(platform) == expected


def test_reinstall_command_on_macos() -> None:
    assert converter.install_command("darwin", reinstall=True) == "brew reinstall ffmpeg"


# ---------------------------------------------------------------------------
# Input checks
# ---------------------------------------------------------------------------

class TestCheckConversion:
    def test_missing_input(self, tmp_path) -> None:
        with pytest.raises(ConversionError, match="does not exist"):
            converter.check_conversion(_params(tmp_path), Config())

    def test_input_outside_allowed_directories(self, tmp_path) -> None:
        (tmp_path / "in.mov").write_bytes(b"x")
        config = Config(allowed_directories=(str(tmp_path / "allowed"),))
        with pytest.raises(ConversionError, match="input path"):
            converter.check_conversion(_params(tmp_path), config)

    def test_output_outside_allowed_directories(self, tmp_path) -> None:
        (tmp_path / "in.mov").write_bytes(b"x")
        config = Config(allowed_directories=(str(tmp_path / "in.mov"),))
        with pytest.raises(ConversionError, match="output path"):
            converter.check_conversion(_params(tmp_path), config)

    def test_input_too_large(self, tmp_path) -> None:
        (tmp_path / "in.mov").write_bytes(b"x" * 2048)
        config = Config(max_file_size_mb=0.001)
        with pytest.raises(ConversionError, match="exceeds maximum allowed size"):
            converter.check_conversion(_params(tmp_path), config)

    def test_valid_request(self, tmp_path) -> None:
        (tmp_path / "in.mov").write_bytes(b"x")
        config = Config(allowed_directories=(str(tmp_path),))
        converter.check_conversion(_params(tmp_path), config)


# ---------------------------------------------------------------------------
# convert_file
# ---------------------------------------------------------------------------

class TestConvertFile:
    @pytest.mark.asyncio
    async def test_starts_session(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=True))
        (tmp_path / "in.mov").write_bytes(b"x")
        params = _params(tmp_path)
        ops = MagicMock()
        ops.start_session = AsyncMock(return_value=ToolResult(
            "Command started with PID 4321\nInitial output:\nffmpeg version", session_id=4321,
        ))

        result = await converter.convert_file(params, Config(timeout_seconds=900), ops)

        assert not result.is_error
        assert result.session_id == 4321
        assert result.text.startswith(
            f"Successfully started conversion of {params.input_path} to mp4. Process ID: 4321\n"
        )
        ops.start_session.assert_awaited_once_with({
            "command": converter.build_ffmpeg_command(params),
            "timeout_ms": 900_000,
        })
        assert (tmp_path / "out").is_dir()

    @pytest.mark.asyncio
    async def test_ffmpeg_unavailable(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=False))
        ops = MagicMock()
        ops.start_session = AsyncMock()

        result = await converter.convert_file(_params(tmp_path), Config(), ops)

        assert result.is_error
        assert "Failed to install ffmpeg" in result.text
        ops.start_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_input(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=True))
        ops = MagicMock()
        ops.start_session = AsyncMock()

        result = await converter.convert_file(_params(tmp_path), Config(), ops)

        assert result.is_error
        assert "Input file does not exist" in result.text
        ops.start_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_start_failure(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=True))
        (tmp_path / "in.mov").write_bytes(b"x")
        ops = MagicMock()
        ops.start_session = AsyncMock(
            return_value=ToolResult("Error executing command: boom", is_error=True)
        )

        result = await converter.convert_file(_params(tmp_path), Config(), ops)

        assert result.is_error
        assert "Error starting conversion process" in result.text
        assert "boom" in result.text


# ---------------------------------------------------------------------------
# ffprobe / ffmpeg detection
# ---------------------------------------------------------------------------

class TestFileInfo:
    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConversionError, match="does not exist"):
            await converter.get_file_info(str(tmp_path / "nope.mp4"), Config())

    @pytest.mark.asyncio
    async def test_disallowed_file(self, tmp_path) -> None:
        media = tmp_path / "clip.mp4"
        media.write_bytes(b"x")
        config = Config(allowed_directories=(str(tmp_path / "elsewhere"),))
        with pytest.raises(ConversionError, match="not allowed"):
            await converter.get_file_info(str(media), config)

    @pytest.mark.asyncio
    async def test_parses_ffprobe_json(self, tmp_path, monkeypatch) -> None:
        media = tmp_path / "clip.mp4"
        media.write_bytes(b"x")
        run = AsyncMock(return_value=(0, '{"format": {"duration": "1.5"}, "streams": []}', ""))
        monkeypatch.setattr(converter, "_run", run)

        info = await converter.get_file_info(str(media), Config())

        assert info == {"format": {"duration": "1.5"}, "streams": []}
        argv = run.await_args.args
        assert argv[0] == "ffprobe"
        assert argv[-1] == str(media)

    @pytest.mark.asyncio
    async def test_ffprobe_failure(self, tmp_path, monkeypatch) -> None:
        media = tmp_path / "clip.mp4"
        media.write_bytes(b"x")
        monkeypatch.setattr(converter, "_run", AsyncMock(return_value=(1, "", "Invalid data")))

        with pytest.raises(ConversionError, match="Invalid data"):
            await converter.get_file_info(str(media), Config())

    @pytest.mark.asyncio
    async def test_ffprobe_missing(self, tmp_path, monkeypatch) -> None:
        media = tmp_path / "clip.mp4"
        media.write_bytes(b"x")
        monkeypatch.setattr(converter, "_run", AsyncMock(side_effect=FileNotFoundError("ffprobe")))

        with pytest.raises(ConversionError, match="Could not run ffprobe"):
            await converter.get_file_info(str(media), Config())


class TestFfmpegDetection:
    @pytest.mark.asyncio
    async def test_version_line(self, monkeypatch) -> None:
        monkeypatch.setattr(
            converter, "_run",
            AsyncMock(return_value=(0, "ffmpeg version 6.1\nbuilt with gcc\n", "")),
        )
        assert await converter.ffmpeg_version() == "ffmpeg version 6.1"

    @pytest.mark.asyncio
    async def test_not_installed(self, monkeypatch) -> None:
        monkeypatch.setattr(converter, "_run", AsyncMock(side_effect=FileNotFoundError("ffmpeg")))
        assert await converter.ffmpeg_version() is None

    @pytest.mark.asyncio
    async def test_ensure_when_present(self, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ffmpeg_version", AsyncMock(return_value="ffmpeg version 6.1"))
        install = AsyncMock()
        monkeypatch.setattr(converter, "run_install", install)

        assert await converter.ensure_ffmpeg_installed() is True
        install.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ensure_installs_when_missing(self, monkeypatch) -> None:
        monkeypatch.setattr(
            converter, "ffmpeg_version", AsyncMock(side_effect=[None, "ffmpeg version 6.1"])
        )
        monkeypatch.setattr(converter, "install_command", lambda *a, **kw: "true")
        install = AsyncMock(return_value=True)
        monkeypatch.setattr(converter, "run_install", install)

        assert await converter.ensure_ffmpeg_installed() is True
        install.assert_awaited_once_with("true")

    @pytest.mark.asyncio
    async def test_ensure_unsupported_platform(self, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ffmpeg_version", AsyncMock(return_value=None))
        monkeypatch.setattr(converter, "install_command", lambda *a, **kw: None)

        assert await converter.ensure_ffmpeg_installed() is False

    @pytest.mark.asyncio
    async def test_check_dependencies_report(self, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=True))
        monkeypatch.setattr(converter, "ffmpeg_version", AsyncMock(return_value="ffmpeg version 6.1"))

        report = await converter.check_dependencies()

        assert "ffmpeg is properly installed: ffmpeg version 6.1" in report
        assert "All dependencies are satisfied." in report

    @pytest.mark.asyncio
    async def test_check_dependencies_failure(self, monkeypatch) -> None:
        monkeypatch.setattr(converter, "ensure_ffmpeg_installed", AsyncMock(return_value=False))
        report = await converter.check_dependencies()
        assert "Failed to install ffmpeg" in report
