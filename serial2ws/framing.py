"""Line framing over an unreliable serial byte stream."""

import logging
from typing import List

logger = logging.getLogger("serial2ws")

MAX_BUFFER = 1024


class LineFramer:
    """Accumulate raw bytes and split them into trimmed text lines.

    Lines end at ``\\n``; every ``\\r`` is dropped, so both ``\\n`` and
    ``\\r\\n`` terminators work. The unterminated tail is kept for the next
    chunk. If that tail grows past ``max_buffer`` bytes it is discarded,
    which bounds memory when a device never sends a terminator.
    """

    def __init__(self, max_buffer: int = MAX_BUFFER):
        self.max_buffer = max_buffer
        self._buffer = b""

    @property
    def pending(self) -> bytes:
        """Bytes received since the last terminator."""
        return self._buffer

    def reset(self):
        self._buffer = b""

    def feed(self, data: bytes) -> List[str]:
        """Add a chunk and return the complete, non-empty lines it finished."""
        buffer = (self._buffer + data).replace(b"\r", b"")
        *segments, self._buffer = buffer.split(b"\n")

        lines = []
        for segment in segments:
            line = segment.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)

        if len(self._buffer) > self.max_buffer:
            logger.warning(
                "Serial buffer overflow (%d bytes without terminator), clearing incomplete data",
                len(self._buffer),
            )
            self._buffer = b""
        return lines
