"""Server process manager — supervises one long-running game server.

Core pieces:
  - ServerSupervisor: start / stop / kill / run_command / send_raw
  - LineDecoder:      reassembles console bytes into lines
  - classifier:       strip_metadata / extract_chat
  - CaptureWindow:    collects output while a command runs

Exposed as MCP tools by create_server; can run standalone:
    python -m mc_manager.process_manager --server-path DIR
"""

from mc_manager.process_manager.errors import (
    AlreadyRunning,
    EmptyCommand,
    NotRunning,
    SpawnFailed,
    SupervisorError,
    WriteFailed,
)
from mc_manager.process_manager.supervisor import ServerSupervisor

__all__ = [
    "AlreadyRunning",
    "EmptyCommand",
    "NotRunning",
    "ServerSupervisor",
    "SpawnFailed",
    "SupervisorError",
    "WriteFailed",
]
