"""Console log classifier.

Server console records look like::

    [12:00:00] [Server thread/INFO]: <Alice> hello

Some builds add further bracketed tags before the colon
(``[12:00:00] [Server thread/INFO] [minecraft/DedicatedServer]: ...``) and
some colour their output with ANSI escapes.  Lines that match neither shape
(crash traces, launcher output) pass through untouched.
"""

from __future__ import annotations

import re

from mc_manager.models import ChatEvent

_ANSI_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# [time] [level](...): content
_METADATA_RE = re.compile(r"^\[[^\]]*\]\s*\[[^\]]*\](?:\s*\[[^\]]*\])*:\s?(?P<content>.*)$")

# ...]: <speaker> message
_CHAT_RE = re.compile(r"\]:\s*<(?P<speaker>[^<>]+)>\s?(?P<message>.*)$")


def strip_ansi(line: str) -> str:
    return _ANSI_RE.sub("", line)


def strip_metadata(line: str) -> str:
    """Return the content of a console record, or the line itself if it isn't one."""
    match = _METADATA_RE.match(strip_ansi(line))
    if not match:
        return line
    return match.group("content").strip()


def extract_chat(line: str) -> ChatEvent | None:
    """Extract a chat message from an *unstripped* console line.

    The chat marker follows the closing bracket of the metadata, so this
    must see the original line rather than ``strip_metadata`` output.
    """
    match = _CHAT_RE.search(strip_ansi(line))
    if not match:
        return None
    return ChatEvent(
        speaker=match.group("speaker").strip(),
        message=match.group("message").strip(),
    )
