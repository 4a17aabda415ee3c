"""Process session manager: runs allowed commands as tracked background sessions.

Backs four MCP tools:
  - start-session:     Spawn a command and return its pid plus early output
  - read-output:       Drain everything the command printed since the last read
  - terminate-session: SIGKILL the command's whole process group
  - list-sessions:     List tracked sessions with their running flag and runtime
"""

from file_converter.process_manager.authorizer import CommandAuthorizer
from file_converter.process_manager.operations import SessionOperations
from file_converter.process_manager.store import Session, SessionStore
from file_converter.process_manager.supervisor import (
    SessionSupervisor,
    kill_process_tree,
)

__all__ = [
    "CommandAuthorizer",
    "Session",
    "SessionOperations",
    "SessionStore",
    "SessionSupervisor",
    "kill_process_tree",
]
