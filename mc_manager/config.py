from __future__ import annotations

import codecs
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_LAUNCH_COMMAND = "run.bat" if os.name == "nt" else "./run.sh"


def _parse_ids(raw: str) -> set[int]:
    return {int(part.strip()) for part in raw.split(",") if part.strip()}


def _optional_int(raw: str | None) -> int | None:
    return int(raw) if raw and raw.strip() else None


@dataclass(frozen=True)
class Config:
    discord_token: str
    server_path: str
    allowed_guild_id: int | None = None
    allowed_user_ids: set[int] = field(default_factory=set)
    relay_channel_id: int | None = None
    launch_command: str = DEFAULT_LAUNCH_COMMAND
    console_encoding: str = "utf-8"
    capture_window: float = 1.0  # seconds
    stop_timeout: float = 60.0  # seconds before shutdown escalates to kill

    def is_allowed(self, guild_id: int | None, user_id: int) -> bool:
        """Check a Discord caller against the configured guild and user lists.

        An empty user list admits anyone in the allowed guild.
        """
        if self.allowed_guild_id is not None and guild_id != self.allowed_guild_id:
            return False
        return not self.allowed_user_ids or user_id in self.allowed_user_ids

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        """Read settings from the environment (and a ``.env`` file if present).

        Raises KeyError for a missing required variable and ValueError for
        an invalid one.
        """
        load_dotenv(env_path)

        token = os.environ["DISCORD_BOT_TOKEN"]

        server_path = Path(os.environ["SERVER_PATH"]).expanduser().resolve()
        if not server_path.is_dir():
            raise ValueError(f"Server directory does not exist: {server_path}")

        encoding = os.getenv("CONSOLE_ENCODING", "utf-8")
        try:
            codecs.lookup(encoding)
        except LookupError as exc:
            raise ValueError(f"Unknown console encoding: {encoding}") from exc

        capture_window = float(os.getenv("CAPTURE_WINDOW", "1.0"))
        if capture_window <= 0:
            raise ValueError("CAPTURE_WINDOW must be positive")

        return cls(
            discord_token=token,
            server_path=str(server_path),
            allowed_guild_id=_optional_int(os.getenv("ALLOWED_GUILD_ID")),
            allowed_user_ids=_parse_ids(os.getenv("ALLOWED_USER_IDS", "")),
            relay_channel_id=_optional_int(os.getenv("RELAY_CHANNEL_ID")),
            launch_command=os.getenv("LAUNCH_COMMAND", DEFAULT_LAUNCH_COMMAND),
            console_encoding=encoding,
            capture_window=capture_window,
            stop_timeout=float(os.getenv("STOP_TIMEOUT", "60")),
        )
