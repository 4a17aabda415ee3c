from __future__ import annotations

import enum
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

DEFAULT_TIMEOUT_MS = 120_000


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class FileConverterError(Exception):
    """Base class for errors raised inside the server."""


class SpawnFailedError(FileConverterError):
    """The external process could not be launched."""


class ConversionError(FileConverterError):
    """A conversion request was rejected before anything was spawned."""


# ---------------------------------------------------------------------------
# ToolResult: what every operation hands back to the MCP layer
# ---------------------------------------------------------------------------

@dataclass
class ToolResult:
    text: str
    is_error: bool = False
    session_id: int | None = None


# ---------------------------------------------------------------------------
# Tool arguments
# ---------------------------------------------------------------------------

class StartSessionArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: StrictStr
    timeout_ms: StrictInt = Field(default=DEFAULT_TIMEOUT_MS, ge=0)
    shell: StrictStr | None = None


class SessionIdArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: StrictInt


class OutputFormat(str, enum.Enum):
    MP4 = "mp4"
    WEBM = "webm"
    MP3 = "mp3"
    OGG = "ogg"
    WAV = "wav"
    GIF = "gif"
    PNG = "png"


class Quality(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConversionParams(BaseModel):
    input_path: str
    output_path: str
    output_format: OutputFormat
    quality: Quality = Quality.MEDIUM
    additional_options: str | None = None
