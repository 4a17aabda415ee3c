"""Session Supervisor: spawns, tracks, times out and reaps command sessions."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
import time
from typing import Any, NamedTuple

from file_converter.models import DEFAULT_TIMEOUT_MS, SpawnFailedError
from file_converter.process_manager.store import (
    Session,
    SessionStore,
    SessionSummary,
)

log = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_SETTLE_SECONDS = 1.0
DEFAULT_SWEEP_INTERVAL = 60.0
DEFAULT_STALE_AFTER = 30 * 60.0
READ_CHUNK_SIZE = 4096


class StartResult(NamedTuple):
    id: int
    initial_output: str
    still_running: bool


def default_shell() -> str:
    if IS_WINDOWS:
        return "cmd"
    return shutil.which("bash") or "/bin/sh"


def shell_argv(shell: str, command_line: str) -> list[str]:
    if IS_WINDOWS:
        return [shell, "/c", command_line]
    return [shell, "-c", command_line]


def kill_process_tree(pid: int) -> bool:
    """Forcefully kill ``pid`` and every process in its group.

    Returns False instead of raising when the signal cannot be delivered
    (group already gone, permission denied).
    """
    if IS_WINDOWS:
        try:
            subprocess.Popen(
                ["taskkill", "/pid", str(pid), "/f", "/t"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            log.warning("taskkill failed for pid %d: %s", pid, exc)
            return False
        return True

    try:
        os.killpg(pid, signal.SIGKILL)
    except OSError as exc:
        log.warning("Could not kill process group %d: %s", pid, exc)
        return False
    return True


class SessionSupervisor:
    """Owns the session store plus every timer and task attached to it."""

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
    ) -> None:
        self.store = store if store is not None else SessionStore()
        self.settle_seconds = settle_seconds
        self.sweep_interval = sweep_interval
        self.stale_after = stale_after
        self._sweeper: asyncio.Task[None] | None = None
        # Strong references so the loop does not garbage-collect running tasks
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(
        self,
        command_line: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        shell: str | None = None,
    ) -> StartResult:
        """Spawn ``command_line`` under a shell and register it as a session.

        Waits for the settling window (or process exit, whichever comes
        first) and returns what the process printed so far.  The snapshot
        is not drained; the same text is returned again by the next read.

        Raises SpawnFailedError if the process cannot be launched.
        """
        argv = shell_argv(shell or default_shell(), command_line)

        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # New session/process group so the whole tree can be killed
            kwargs["preexec_fn"] = os.setsid

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                # Never inherit stdin: on the stdio transport it carries MCP traffic
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )
        except (OSError, ValueError) as exc:
            log.warning("Failed to spawn %r: %s", command_line, exc)
            raise SpawnFailedError(str(exc)) from exc

        session = Session(id=process.pid, command_line=command_line)
        session._process = process
        if not self.store.insert(session):
            # The OS reused a pid we still track; the old process is gone.
            log.warning(
                "Session id %d already tracked (pid reuse); reclaiming stale entry",
                session.id,
            )
            self.store.remove(session.id)
            self.store.insert(session)

        readers = [
            self._spawn_task(
                self._read_stream(process.stdout, session),  # type: ignore[arg-type]
                name=f"session-{session.id}-stdout",
            ),
            self._spawn_task(
                self._read_stream(process.stderr, session),  # type: ignore[arg-type]
                name=f"session-{session.id}-stderr",
            ),
        ]
        exit_task = self._spawn_task(
            self._watch_exit(session, process, readers),
            name=f"session-{session.id}-exit",
        )
        session._tasks = [*readers, exit_task]

        if timeout_ms > 0:
            loop = asyncio.get_running_loop()
            session._deadline = loop.call_later(
                timeout_ms / 1000, self._on_deadline, session
            )

        self.start_sweeper()
        log.info("Started session %d: %s", session.id, command_line)

        await asyncio.wait({exit_task}, timeout=self.settle_seconds)
        return StartResult(session.id, session.peek(), session.running)

    def read(self, session_id: int) -> str | None:
        """Drain a session's buffer.  Returns None for an unknown id.

        Once a finished session's output has been handed out it is removed,
        so a further read reports the id as unknown rather than empty.
        """
        session = self.store.get(session_id)
        if session is None:
            return None
        output = session.drain()
        if not session.running:
            self.store.remove(session_id)
        return output

    def terminate(self, session_id: int) -> bool:
        """Kill a session's process tree and drop it from the store.

        Does not wait for the process to exit.  Returns False if there is
        no such session or the kill signal could not be delivered.  A session
        whose process already exited is dropped without signalling, since
        its pid may since have been handed to an unrelated process.
        """
        session = self.store.get(session_id)
        if session is None:
            return False
        if not session.running:
            self.store.remove(session_id)
            log.info("Dropped finished session %d", session_id)
            return True
        if not kill_process_tree(session.id):
            return False
        self.store.remove(session_id)
        log.info("Terminated session %d", session_id)
        return True

    def list_sessions(self) -> list[SessionSummary]:
        return self.store.snapshot_all()

    def sweep(self, now: float | None = None) -> list[int]:
        """Reclaim every session idle or alive longer than ``stale_after``."""
        now = time.monotonic() if now is None else now
        reclaimed = []
        for session_id in self.store.ids():
            session = self.store.get(session_id)
            if session is not None and session.is_stale(now, self.stale_after):
                log.info("Reclaiming stale session %d", session_id)
                self._reclaim(session_id)
                reclaimed.append(session_id)
        return reclaimed

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_loop(), name="session-sweeper"
            )

    async def close(self, timeout: float = 5.0) -> None:
        """Cancel the sweeper and kill every tracked session."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        for session_id in self.store.ids():
            self._reclaim(session_id)

        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _spawn_task(self, coro, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reclaim(self, session_id: int) -> None:
        """Terminate a session, dropping it even if the kill fails."""
        if not self.terminate(session_id):
            self.store.remove(session_id)

    def _on_deadline(self, session: Session) -> None:
        session._deadline = None
        # The id may have been removed, or reused by a newer session
        if self.store.get(session.id) is not session or not session.running:
            return
        log.warning("Session %d timed out; terminating", session.id)
        try:
            self._reclaim(session.id)
        except Exception:
            log.exception("Failed to terminate timed-out session %d", session.id)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                log.exception("Session sweep failed")

    @staticmethod
    async def _read_stream(stream: asyncio.StreamReader, session: Session) -> None:
        """Copy a process stream into the session buffer until EOF."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                session.append(decoder.decode(b"", final=True))
                break
            session.append(decoder.decode(chunk))

    @staticmethod
    async def _watch_exit(
        session: Session,
        process: asyncio.subprocess.Process,
        readers: list[asyncio.Task[None]],
    ) -> None:
        """Wait for exit and for both streams to drain, then mark the session done."""
        code = await process.wait()
        await asyncio.gather(*readers, return_exceptions=True)
        if session.mark_exited(code):
            log.info("Session %d exited with code %s", session.id, code)
