from __future__ import annotations

import enum
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------

class ServerState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


# ---------------------------------------------------------------------------
# Events raised by the supervisor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChatEvent:
    speaker: str
    message: str


class ServerEventType(enum.Enum):
    CHAT = "chat"                  # player chat seen on the console
    EXITED = "exited"              # server process terminated (any reason)
    START_FAILED = "start_failed"  # spawn failed


@dataclass(frozen=True)
class ServerEvent:
    type: ServerEventType
    chat: ChatEvent | None = None
    # Only set on EXITED:
    exit_code: int | None = None
    # Only set on START_FAILED:
    reason: str = ""


# ---------------------------------------------------------------------------
# Command capture
# ---------------------------------------------------------------------------

@dataclass
class CommandResult:
    """Console lines observed while a command's capture window was open.

    An empty result is valid and means nothing was printed in time.
    """

    command: str
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def size(self) -> int:
        return len(self.text)

    @property
    def line_count(self) -> int:
        return len(self.lines)
