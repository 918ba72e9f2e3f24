"""Incremental frame detection over an SSE text stream.

Frames carry no length prefix; a frame ends at a blank line, written by the
server as ``\\n\\n``, ``\\r\\r`` or ``\\r\\n\\r\\n``.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from ssesource.errors import FrameTooLarge

FRAME_SEPARATORS = ("\n\n", "\r\r", "\r\n\r\n")

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class FrameBuffer:
    """Accumulates text chunks and yields completed frames as field lines."""

    def __init__(self, max_size: int | None = None) -> None:
        self._buffer = ""
        self.max_size = max_size

    @property
    def pending(self) -> int:
        """Characters buffered for a frame that has not completed yet."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> Iterator[list[str]]:
        """Feed a chunk of text, yielding the lines of each completed frame."""
        self._buffer += chunk

        while True:
            boundary = self._find_boundary()
            if boundary is None:
                break
            start, end = boundary
            text = self._buffer[:start]
            self._buffer = self._buffer[end:]

            text = text.strip("\r\n")
            if not text:
                continue
            yield _LINE_BREAK.split(text)

        if self.max_size is not None and len(self._buffer) > self.max_size:
            size = len(self._buffer)
            self._buffer = ""
            raise FrameTooLarge(size, self.max_size)

    def _find_boundary(self) -> tuple[int, int] | None:
        """Return (start, end) of the earliest separator in the buffer."""
        found: tuple[int, int] | None = None
        for separator in FRAME_SEPARATORS:
            index = self._buffer.find(separator)
            if index == -1:
                continue
            if found is None or index < found[0]:
                found = (index, index + len(separator))
        return found
