"""Caller-facing session operations.

Each operation accepts the raw argument mapping of a tool call, validates
it, and returns a ToolResult.  Caller mistakes never raise.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from file_converter.models import (
    SessionIdArgs,
    SpawnFailedError,
    StartSessionArgs,
    ToolResult,
)
from file_converter.process_manager.authorizer import CommandAuthorizer
from file_converter.process_manager.supervisor import SessionSupervisor

log = logging.getLogger(__name__)

NO_INITIAL_OUTPUT = "Command started, no initial output available."
NO_NEW_OUTPUT = "No new output available"
NO_ACTIVE_SESSIONS = "No active sessions"


def _parse(model: type[BaseModel], tool: str, args: Mapping[str, Any] | None):
    try:
        return model.model_validate(dict(args or {})), None
    except ValidationError as exc:
        return None, ToolResult(
            f"Error: Invalid arguments for {tool}: {exc}", is_error=True
        )


class SessionOperations:
    def __init__(
        self,
        supervisor: SessionSupervisor | None = None,
        authorizer: CommandAuthorizer | None = None,
    ) -> None:
        self.supervisor = supervisor or SessionSupervisor()
        self.authorizer = authorizer or CommandAuthorizer()

    async def start_session(self, args: Mapping[str, Any] | None) -> ToolResult:
        parsed, error = _parse(StartSessionArgs, "start-session", args)
        if error is not None:
            return error

        if not self.authorizer.is_allowed(parsed.command):
            log.warning("Rejected command: %s", parsed.command)
            return ToolResult(
                f"Error: Command not allowed: {parsed.command}", is_error=True
            )

        try:
            result = await self.supervisor.start(
                parsed.command, parsed.timeout_ms, parsed.shell
            )
        except SpawnFailedError as exc:
            return ToolResult(f"Error executing command: {exc}", is_error=True)

        text = (
            f"Command started with PID {result.id}\n"
            f"Initial output:\n{result.initial_output or NO_INITIAL_OUTPUT}"
        )
        if result.still_running:
            text += "\nCommand is still running. Use read-output to get more output."
        return ToolResult(text, session_id=result.id)

    async def read_output(self, args: Mapping[str, Any] | None) -> ToolResult:
        parsed, error = _parse(SessionIdArgs, "read-output", args)
        if error is not None:
            return error

        output = self.supervisor.read(parsed.id)
        if output is None:
            return ToolResult(f"No session found for PID {parsed.id}")
        return ToolResult(output or NO_NEW_OUTPUT, session_id=parsed.id)

    async def terminate_session(self, args: Mapping[str, Any] | None) -> ToolResult:
        parsed, error = _parse(SessionIdArgs, "terminate-session", args)
        if error is not None:
            return error

        if self.supervisor.terminate(parsed.id):
            return ToolResult(
                f"Successfully terminated session {parsed.id}", session_id=parsed.id
            )
        return ToolResult(f"No active session found for PID {parsed.id}")

    async def list_sessions(self) -> ToolResult:
        sessions = self.supervisor.list_sessions()
        if not sessions:
            return ToolResult(NO_ACTIVE_SESSIONS)
        return ToolResult("\n".join(
            f"PID: {s.id}, Running: {str(s.running).lower()}, "
            f"Runtime: {round(s.elapsed_seconds)}s"
            for s in sessions
        ))
