"""Line decoder — turns raw console byte chunks into complete text lines."""

from __future__ import annotations

import codecs


class LineDecoder:
    """Stateful decoder for one output stream of one server process.

    Chunks may end in the middle of a line or in the middle of a multi-byte
    character.  Undecoded trailing bytes stay inside the incremental codec
    and the unterminated tail of the text is kept in ``_partial`` until a
    later chunk completes it.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._partial = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a chunk and return every line it completes, in order."""
        text = self._partial + self._decoder.decode(chunk)
        parts = text.split("\n")
        self._partial = parts.pop()
        return [part.removesuffix("\r") for part in parts]

    @property
    def pending(self) -> bool:
        """True if a partial line or undecoded bytes are being held."""
        buffered, _ = self._decoder.getstate()
        return bool(self._partial or buffered)

    def reset(self) -> None:
        """Drop any partial line and undecoded bytes."""
        self._decoder.reset()
        self._partial = ""
