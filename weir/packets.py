"""Building and sending the server's response packets."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from weir.column import ColumnInfo
from weir.handshake import Capability
from weir.packetio import PacketIO
from weir.protocol import (
    dump_length_encoded_int,
    dump_length_encoded_string,
    dump_text_row,
    dump_uint16,
)

OK_HEADER = 0x00
ERR_HEADER = 0xFF
EOF_HEADER = 0xFE
LOCAL_INFILE_HEADER = 0xFB

_DEFAULT_CAPABILITY = int(Capability.PROTOCOL_41)


def _uses_protocol41(capability: int) -> bool:
    return bool(int(capability) & Capability.PROTOCOL_41)


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def build_ok_packet(
    affected_rows: int = 0,
    last_insert_id: int = 0,
    status: int = 0,
    warnings: int = 0,
    message: str | bytes = "",
    capability: int = _DEFAULT_CAPABILITY,
) -> bytes:
    """Payload of an OK packet.

    Status and warning count are only sent under protocol 4.1; a non-empty
    message is appended as a length-encoded string.
    """
    parts = [
        bytes([OK_HEADER]),
        dump_length_encoded_int(affected_rows),
        dump_length_encoded_int(last_insert_id),
    ]
    if _uses_protocol41(capability):
        parts.append(dump_uint16(status & 0xFFFF))
        parts.append(dump_uint16(warnings & 0xFFFF))
    text = _as_bytes(message)
    if text:
        parts.append(dump_length_encoded_string(text))
    return b"".join(parts)


def build_error_packet(
    code: int,
    state: str | bytes,
    message: str | bytes,
    capability: int = _DEFAULT_CAPABILITY,
) -> bytes:
    """Payload of an error packet; the SQL state is only sent under protocol 4.1."""
    parts = [bytes([ERR_HEADER]), dump_uint16(code & 0xFFFF)]
    if _uses_protocol41(capability):
        parts.append(b"#")
        parts.append(_as_bytes(state))
    parts.append(_as_bytes(message))
    return b"".join(parts)


def build_eof_packet(
    warnings: int = 0,
    status: int = 0,
    capability: int = _DEFAULT_CAPABILITY,
) -> bytes:
    """Payload of an EOF packet; warnings and status only under protocol 4.1."""
    if not _uses_protocol41(capability):
        return bytes([EOF_HEADER])
    return bytes([EOF_HEADER]) + dump_uint16(warnings & 0xFFFF) + dump_uint16(status & 0xFFFF)


def build_local_infile_request(file_path: str | bytes) -> bytes:
    """Payload asking the client to send the contents of a local file."""
    return bytes([LOCAL_INFILE_HEADER]) + _as_bytes(file_path)


def write_column_info(
    packet_io: PacketIO,
    columns: Sequence[ColumnInfo],
    warnings: int = 0,
    status: int = 0,
    capability: int = _DEFAULT_CAPABILITY,
) -> None:
    """Queue the column count, each column definition and a closing EOF.

    Nothing is flushed, since row packets usually follow.
    """
    packet_io.write_packet(dump_length_encoded_int(len(columns)))
    for column in columns:
        packet_io.write_packet(column.dump())
    packet_io.write_packet(build_eof_packet(warnings, status, capability))


def write_text_resultset(
    packet_io: PacketIO,
    columns: Sequence[ColumnInfo],
    rows: Iterable[Sequence[Any]],
    warnings: int = 0,
    status: int = 0,
    capability: int = _DEFAULT_CAPABILITY,
) -> None:
    """Send a complete text result set and flush it."""
    write_column_info(packet_io, columns, warnings, status, capability)
    for row in rows:
        packet_io.write_packet(dump_text_row(columns, row))
    packet_io.write_packet(build_eof_packet(warnings, status, capability))
    packet_io.flush()