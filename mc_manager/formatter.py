"""Formatter — renders server events and command output for a chat platform.

The supervisor hands out full captures; how much of a capture fits in a
message is decided here, not in the core.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from .models import ChatEvent, CommandResult, ServerEvent, ServerEventType

# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class Formatter(ABC):
    """Render server events into platform-specific strings."""

    @abstractmethod
    def format_chat(self, event: ChatEvent) -> str:
        ...

    @abstractmethod
    def format_exit(self, code: int | None) -> str:
        ...

    @abstractmethod
    def format_start_failed(self, reason: str) -> str:
        ...

    @abstractmethod
    def format_command_result(self, result: CommandResult) -> str:
        ...

    def format_event(self, event: ServerEvent) -> str:
        if event.type == ServerEventType.CHAT and event.chat is not None:
            return self.format_chat(event.chat)
        if event.type == ServerEventType.EXITED:
            return self.format_exit(event.exit_code)
        if event.type == ServerEventType.START_FAILED:
            return self.format_start_failed(event.reason)
        return ""


# ---------------------------------------------------------------------------
# Discord implementation
# ---------------------------------------------------------------------------

# Match bare URLs not already inside <angle brackets>
_BARE_URL_RE = re.compile(r"(?<![<(])(https?://\S+)")

# Limits for command output shown in a single message
_COMMAND_MAX_CHARS = 1500
_COMMAND_MAX_LINES = 30


def _suppress_embeds(text: str) -> str:
    """Wrap bare URLs in <brackets> so Discord won't generate previews."""
    return _BARE_URL_RE.sub(r"<\1>", text)


def truncate_output(
    text: str,
    max_chars: int = _COMMAND_MAX_CHARS,
    max_lines: int = _COMMAND_MAX_LINES,
) -> str:
    """Cut ``text`` down to ``max_lines`` lines and ``max_chars`` characters.

    A marker line saying how much was dropped is appended when anything is
    cut.
    """
    lines = text.split("\n")
    dropped_lines = max(0, len(lines) - max_lines)
    if dropped_lines:
        lines = lines[:max_lines]
    kept = "\n".join(lines)

    dropped_chars = max(0, len(kept) - max_chars)
    if dropped_chars:
        kept = kept[:max_chars]

    notes = []
    if dropped_lines:
        notes.append(f"{dropped_lines} more lines")
    if dropped_chars:
        notes.append(f"{dropped_chars} chars")
    if notes:
        return f"{kept}\n… ({' and '.join(notes)} truncated)"
    return kept


class DiscordFormatter(Formatter):
    """Render server events for Discord markdown."""

    def __init__(
        self,
        max_chars: int = _COMMAND_MAX_CHARS,
        max_lines: int = _COMMAND_MAX_LINES,
    ) -> None:
        self.max_chars = max_chars
        self.max_lines = max_lines

    def format_chat(self, event: ChatEvent) -> str:
        # Backticks in a name would break the inline code span
        speaker = event.speaker.replace("`", "'")
        return f"💬 `{speaker}` {_suppress_embeds(event.message)}"

    def format_exit(self, code: int | None) -> str:
        return f"🛑 Server has stopped (exit code: {code})"

    def format_start_failed(self, reason: str) -> str:
        return f"❌ **Server failed to start:** {reason}"

    def format_command_result(self, result: CommandResult) -> str:
        if not result.lines:
            return f"-# `{result.command}` produced no output."
        body = truncate_output(result.text, self.max_chars, self.max_lines)
        # Keep console text from closing the code block early
        body = body.replace("```", "`\u200b``")
        return f"```\n{body}\n```"
