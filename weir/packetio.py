"""Framing of MySQL protocol packets over a byte stream."""

from __future__ import annotations

from typing import BinaryIO

MAX_PAYLOAD_LEN = (1 << 24) - 1
DEFAULT_WRITER_SIZE = 16 * 1024
HEADER_SIZE = 4


class InvalidSequenceError(ValueError):
    """A packet arrived with an unexpected sequence number."""


class BadConnectionError(ConnectionError):
    """The underlying stream could not be written."""


class PacketIO:
    """Reads and writes length-prefixed, sequence-numbered packets.

    ``stream`` needs ``read(n)`` and ``write(data)``; ``flush()`` is called
    when present. Outgoing packets are buffered until :meth:`flush`.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.sequence = 0
        self._pending = bytearray()

    def _read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining:
            chunk = self.stream.read(remaining)
            if not chunk:
                raise EOFError("unexpected end of stream")
            chunks.append(bytes(chunk))
            remaining -= len(chunk)
        return b"".join(chunks)

    def _read_one_packet(self) -> bytes:
        header = self._read_exact(HEADER_SIZE)
        sequence = header[3]
        if sequence != self.sequence:
            raise InvalidSequenceError(
                f"invalid sequence {sequence} != {self.sequence}"
            )
        self.sequence = (self.sequence + 1) & 0xFF
        length = int.from_bytes(header[:3], "little")
        return self._read_exact(length)

    def read_packet(self) -> bytes:
        """Read one logical packet, joining continuation packets."""
        data = self._read_one_packet()
        if len(data) < MAX_PAYLOAD_LEN:
            return data
        parts = [data]
        while True:
            chunk = self._read_one_packet()
            parts.append(chunk)
            if len(chunk) < MAX_PAYLOAD_LEN:
                break
        return b"".join(parts)

    def _frame(self, chunk: bytes) -> None:
        self._pending += len(chunk).to_bytes(3, "little")
        self._pending.append(self.sequence)
        self._pending += chunk
        self.sequence = (self.sequence + 1) & 0xFF

    def write_packet(self, payload: bytes) -> None:
        """Queue a payload, splitting it into maximum-size packets as needed."""
        view = memoryview(bytes(payload))
        while len(view) >= MAX_PAYLOAD_LEN:
            self._frame(bytes(view[:MAX_PAYLOAD_LEN]))
            view = view[MAX_PAYLOAD_LEN:]
            if len(self._pending) >= DEFAULT_WRITER_SIZE:
                self._drain()
        self._frame(bytes(view))
        if len(self._pending) >= DEFAULT_WRITER_SIZE:
            self._drain()

    def _drain(self) -> None:
        if not self._pending:
            return
        data = bytes(self._pending)
        self._pending.clear()
        try:
            written = self.stream.write(data)
        except OSError as exc:
            raise BadConnectionError("write to connection failed") from exc
        if written is not None and written != len(data):
            raise BadConnectionError("short write to connection")

    def flush(self) -> None:
        """Send every queued packet to the stream."""
        self._drain()
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            try:
                flush()
            except OSError as exc:
                raise BadConnectionError("flush of connection failed") from exc