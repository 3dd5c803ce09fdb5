"""Errors raised by the server supervisor.

None of these are fatal to the supervisor: after any of them it is still
either stopped or running and accepts further calls.
"""

from __future__ import annotations


class SupervisorError(Exception):
    """Base class for failures reported to supervisor callers."""


class AlreadyRunning(SupervisorError):
    def __init__(self, pid: int | None = None) -> None:
        self.pid = pid
        detail = f" (pid={pid})" if pid is not None else ""
        super().__init__(f"Server is already running{detail}")


class NotRunning(SupervisorError):
    def __init__(self) -> None:
        super().__init__("Server is not running")


class SpawnFailed(SupervisorError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to start server: {reason}")


class WriteFailed(SupervisorError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to write to server console: {reason}")


class EmptyCommand(SupervisorError):
    def __init__(self) -> None:
        super().__init__("Command is empty")
