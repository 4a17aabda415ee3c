"""Session state and the in-memory session store.

Everything here is owned by a single asyncio event loop.  Each mutating
method is a synchronous section with no ``await`` inside, so stream readers,
exit observers, timers and tool calls never see a half-applied update to a
session, and no call ever waits on an unrelated session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import NamedTuple

log = logging.getLogger(__name__)


class SessionSummary(NamedTuple):
    id: int
    running: bool
    elapsed_seconds: float


@dataclass
class Session:
    """Tracked state for one spawned process, keyed by its pid."""

    id: int
    command_line: str
    buffer: str = ""
    running: bool = True
    exit_code: int | None = None
    created_at: float = field(default_factory=time.monotonic)
    last_read_at: float = field(default_factory=time.monotonic)
    _process: asyncio.subprocess.Process | None = field(
        default=None, repr=False
    )
    _tasks: list[asyncio.Task[None]] = field(
        default_factory=list, repr=False
    )
    _deadline: asyncio.TimerHandle | None = field(default=None, repr=False)

    def append(self, chunk: str) -> None:
        if chunk:
            self.buffer += chunk

    def peek(self) -> str:
        return self.buffer

    def drain(self, now: float | None = None) -> str:
        """Return everything buffered since the last drain and clear it."""
        output, self.buffer = self.buffer, ""
        self.last_read_at = time.monotonic() if now is None else now
        return output

    def mark_exited(self, code: int | None) -> bool:
        """Record process exit.  Only the first call has any effect."""
        if not self.running:
            return False
        self.append(f"\nProcess exited with code {code}\n")
        self.exit_code = code
        self.running = False
        return True

    def cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def is_stale(self, now: float, threshold: float) -> bool:
        return (
            now - self.last_read_at > threshold
            or now - self.created_at > threshold
        )


class SessionStore:
    """Mapping of session id -> Session."""

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def insert(self, session: Session) -> bool:
        """Add a session.  Returns False, leaving the store untouched, if the id is taken."""
        if session.id in self._sessions:
            return False
        self._sessions[session.id] = session
        return True

    def get(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: int) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.cancel_deadline()
            log.debug("Removed session %d", session_id)
        return session

    def ids(self) -> list[int]:
        return list(self._sessions)

    def snapshot_all(self, now: float | None = None) -> list[SessionSummary]:
        now = time.monotonic() if now is None else now
        return [
            SessionSummary(s.id, s.running, max(0.0, now - s.created_at))
            for s in self._sessions.values()
        ]
