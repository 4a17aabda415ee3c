"""Command allow-list.

Only the leading whitespace-delimited token of a command line is checked.
Commands run through a shell, so anything chained after an allowed token
(``echo hi; rm -rf x``, ``ls && curl ...``, pipes) is NOT inspected and will
run. Callers are expected to submit a single command.
"""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_ALLOWED_COMMANDS = frozenset({
    "ffmpeg",
    "ffprobe",
    "convert",
    "ls",
    "pwd",
    "echo",
    "file",
})


class CommandAuthorizer:
    def __init__(self, allowed: Iterable[str] = DEFAULT_ALLOWED_COMMANDS) -> None:
        self._allowed = frozenset(allowed)

    @property
    def allowed(self) -> frozenset[str]:
        return self._allowed

    @staticmethod
    def base_command(command_line: str) -> str:
        parts = command_line.split(maxsplit=1)
        return parts[0] if parts else ""

    def is_allowed(self, command_line: str) -> bool:
        return self.base_command(command_line) in self._allowed
