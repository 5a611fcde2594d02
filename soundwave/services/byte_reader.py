from __future__ import annotations

from typing import BinaryIO


class ByteCursorReader:
    """Sequential, single-pass reader over a binary stream.

    Never seeks. ``position`` counts every byte handed out so far, which is
    what makes the codec's fail-fast cursor position observable in tests.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._position = 0
        self._exhausted = False

    @property
    def position(self) -> int:
        return self._position

    @property
    def exhausted(self) -> bool:
        """True once a read has come back short (end of stream observed)."""
        return self._exhausted

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; a short result means the stream ended."""
        if size <= 0:
            return b""
        chunks: list[bytes] = []
        remaining = size
        # Pipes may return fewer bytes than asked without being at EOF.
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                self._exhausted = True
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self._position += len(data)
        return data

    def read_to_end(self, chunk_size: int = 65_536) -> bytes:
        """Drain everything left in the stream."""
        chunks: list[bytes] = []
        while True:
            chunk = self._stream.read(chunk_size)
            if not chunk:
                self._exhausted = True
                break
            chunks.append(chunk)
        data = b"".join(chunks)
        self._position += len(data)
        return data

    def at_end(self) -> bool:
        """Consume one byte and report whether the stream had already ended."""
        return not self.read(1)
