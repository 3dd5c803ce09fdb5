"""Capture window — diverts console lines into a buffer while a command runs."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CaptureWindow:
    """Mode switch plus append-only buffer.

    There is no correlation token: whatever the server prints while the
    window is open is attributed to the command that opened it.
    """

    _active: bool = False
    _lines: list[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self._active

    def open(self) -> None:
        self._lines.clear()
        self._active = True

    def feed(self, line: str) -> bool:
        """Append ``line`` if the window is open. Returns whether it was kept."""
        if not self._active:
            return False
        self._lines.append(line)
        return True

    def close(self) -> list[str]:
        self._active = False
        lines, self._lines = self._lines, []
        return lines
