from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class Config:
    allowed_directories: tuple[str, ...] = field(default_factory=tuple)
    timeout_seconds: int = 600
    max_file_size_mb: float = 100
    settle_seconds: float = 1.0
    sweep_interval_seconds: float = 60.0
    stale_after_seconds: float = 30 * 60.0
    log_level: str = "INFO"

    def is_path_allowed(self, path: str | Path) -> bool:
        """Check that ``path`` lies inside one of the allowed directories.

        An empty allow-list permits every path.

            allowed=("/media",)  /media/in.mp4      -> True
            allowed=("/media",)  /media/../etc/pwd  -> False
            allowed=("/media",)  /media-other/x     -> False
        """
        if not self.allowed_directories:
            return True
        resolved = Path(path).expanduser().resolve()
        for directory in self.allowed_directories:
            root = Path(directory).expanduser().resolve()
            if resolved == root or root in resolved.parents:
                return True
        return False

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        raw_dirs = os.getenv("ALLOWED_DIRECTORIES", "").strip()
        if raw_dirs:
            try:
                dirs = json.loads(raw_dirs)
            except json.JSONDecodeError as exc:
                raise ValueError(
                    f"ALLOWED_DIRECTORIES must be a JSON list of paths: {exc}"
                ) from None
            if not isinstance(dirs, list) or not all(isinstance(d, str) for d in dirs):
                raise ValueError("ALLOWED_DIRECTORIES must be a JSON list of paths")
        else:
            dirs = []

        return cls(
            allowed_directories=tuple(dirs),
            timeout_seconds=_env_number("TIMEOUT_SECONDS", 600, int),
            max_file_size_mb=_env_number("MAX_FILE_SIZE_MB", 100.0),
            settle_seconds=_env_number("SETTLE_SECONDS", 1.0),
            sweep_interval_seconds=_env_number("SWEEP_INTERVAL_SECONDS", 60.0),
            stale_after_seconds=_env_number("STALE_AFTER_SECONDS", 30 * 60.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
