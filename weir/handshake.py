"""Connection-phase packets: the initial handshake and the client's response."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import IntFlag

from weir.protocol import (
    dump_uint16,
    dump_uint32,
    parse_length_encoded_bytes,
    parse_length_encoded_int,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 10
SERVER_VERSION = "5.7.25-weir"
AUTH_PLUGIN_NAME = b"mysql_native_password"
SERVER_STATUS_AUTOCOMMIT = 0x0002
UTF8MB4_GENERAL_CI = 45
DEFAULT_COLLATION_ID = 46

_HEADER41_SIZE = 4 + 4 + 1 + 23
_OLD_HEADER_SIZE = 2 + 3


class Capability(IntFlag):
    """Client and server capability flags."""

    LONG_PASSWORD = 1
    FOUND_ROWS = 1 << 1
    LONG_FLAG = 1 << 2
    CONNECT_WITH_DB = 1 << 3
    NO_SCHEMA = 1 << 4
    COMPRESS = 1 << 5
    ODBC = 1 << 6
    LOCAL_FILES = 1 << 7
    IGNORE_SPACE = 1 << 8
    PROTOCOL_41 = 1 << 9
    INTERACTIVE = 1 << 10
    SSL = 1 << 11
    IGNORE_SIGPIPE = 1 << 12
    TRANSACTIONS = 1 << 13
    RESERVED = 1 << 14
    SECURE_CONNECTION = 1 << 15
    MULTI_STATEMENTS = 1 << 16
    MULTI_RESULTS = 1 << 17
    PS_MULTI_RESULTS = 1 << 18
    PLUGIN_AUTH = 1 << 19
    CONNECT_ATTRS = 1 << 20
    PLUGIN_AUTH_LENENC_CLIENT_DATA = 1 << 21


DEFAULT_CAPABILITY = (
    Capability.LONG_PASSWORD
    | Capability.LONG_FLAG
    | Capability.CONNECT_WITH_DB
    | Capability.PROTOCOL_41
    | Capability.TRANSACTIONS
    | Capability.SECURE_CONNECTION
    | Capability.FOUND_ROWS
    | Capability.MULTI_STATEMENTS
    | Capability.MULTI_RESULTS
    | Capability.LOCAL_FILES
    | Capability.CONNECT_ATTRS
    | Capability.PLUGIN_AUTH
    | Capability.INTERACTIVE
)


class MalformedPacketError(ValueError):
    """A handshake packet is too short or its fields run past its end."""


@dataclass
class HandshakeResponse:
    """What the client sent in reply to the initial handshake."""

    capability: int = 0
    collation: int = 0
    user: str = ""
    db_name: str = ""
    auth: bytes = b""
    attrs: dict[str, str] = field(default_factory=dict)


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _null_terminated(data: bytes, offset: int) -> tuple[bytes, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise MalformedPacketError("missing string terminator")
    return data[offset:end], end + 1


def _take(data: bytes, offset: int, size: int) -> bytes:
    if offset + size > len(data):
        raise MalformedPacketError("field runs past end of packet")
    return data[offset : offset + size]


def parse_handshake_response_header(data: bytes) -> tuple[HandshakeResponse, int]:
    """Parse the header shared by SSLRequest and HandshakeResponse41.

    Returns the partly filled response and the offset of the body.
    """
    data = bytes(data)
    if len(data) < _HEADER41_SIZE:
        raise MalformedPacketError("handshake response header too short")
    capability = int.from_bytes(data[:4], "little")
    collation = data[8]
    return HandshakeResponse(capability=capability, collation=collation), _HEADER41_SIZE


def parse_handshake_response_body(
    response: HandshakeResponse, data: bytes, offset: int
) -> HandshakeResponse:
    """Parse the rest of a HandshakeResponse41, returning the completed response."""
    data = bytes(data)
    try:
        return _parse_body41(response, data, offset)
    except MalformedPacketError:
        raise
    except (IndexError, ValueError) as exc:
        raise MalformedPacketError("malformed handshake response") from exc


def _parse_body41(response: HandshakeResponse, data: bytes, offset: int) -> HandshakeResponse:
    caps = response.capability
    raw_user, offset = _null_terminated(data, offset)
    auth = response.auth

    if caps & Capability.PLUGIN_AUTH_LENENC_CLIENT_DATA:
        num, is_null, used = parse_length_encoded_int(data[offset:])
        offset += used
        if not is_null:
            auth = _take(data, offset, num)
            offset += num
    elif caps & Capability.SECURE_CONNECTION:
        if offset >= len(data):
            raise MalformedPacketError("missing auth length")
        auth_len = data[offset]
        offset += 1
        auth = _take(data, offset, auth_len)
        offset += auth_len
    else:
        auth, offset = _null_terminated(data, offset)

    db_name = response.db_name
    if caps & Capability.CONNECT_WITH_DB and offset < len(data):
        raw_db, offset = _null_terminated(data, offset)
        db_name = _text(raw_db)

    if caps & Capability.PLUGIN_AUTH:
        # The plugin name is not used; skip past it.
        end = data.find(b"\x00", offset)
        if end >= 0:
            offset = end + 1

    attrs = response.attrs
    if caps & Capability.CONNECT_ATTRS and offset < len(data):
        num, is_null, used = parse_length_encoded_int(data[offset:])
        if not is_null:
            offset += used
            row = _take(data, offset, num)
            try:
                attrs = parse_attrs(row)
            except EOFError as exc:
                logger.warning("parse attrs failed: %s", exc)

    return dataclasses.replace(
        response, user=_text(raw_user), auth=bytes(auth), db_name=db_name, attrs=attrs
    )


def parse_old_handshake_response_header(data: bytes) -> tuple[HandshakeResponse, int]:
    """Parse the header of a HandshakeResponse320.

    The capability is marked as protocol 4.1 for uniform handling.
    """
    data = bytes(data)
    if len(data) < _OLD_HEADER_SIZE:
        raise MalformedPacketError("old handshake response header too short")
    capability = int.from_bytes(data[:2], "little") | Capability.PROTOCOL_41
    response = HandshakeResponse(capability=int(capability), collation=UTF8MB4_GENERAL_CI)
    return response, _OLD_HEADER_SIZE


def parse_old_handshake_response_body(
    response: HandshakeResponse, data: bytes, offset: int
) -> HandshakeResponse:
    """Parse the rest of a HandshakeResponse320, returning the completed response."""
    data = bytes(data)
    raw_user, offset = _null_terminated(data, offset)
    db_name = response.db_name
    auth = response.auth
    if response.capability & Capability.CONNECT_WITH_DB:
        if offset < len(data):
            raw_db, offset = _null_terminated(data, offset)
            db_name = _text(raw_db)
        if offset < len(data):
            auth, _ = _null_terminated(data, offset)
    else:
        auth, _ = _null_terminated(data, offset)
    return dataclasses.replace(response, user=_text(raw_user), db_name=db_name, auth=bytes(auth))


def parse_attrs(data: bytes) -> dict[str, str]:
    """Decode connection attributes: alternating length-encoded keys and values.

    Raises EOFError when a string is shorter than its declared length and
    MalformedPacketError when a length itself is cut off.
    """
    data = bytes(data)
    attrs: dict[str, str] = {}
    pos = 0
    while pos < len(data):
        try:
            key, _, used = parse_length_encoded_bytes(data[pos:])
            pos += used
            value, _, used = parse_length_encoded_bytes(data[pos:])
            pos += used
        except EOFError:
            raise
        except ValueError as exc:
            raise MalformedPacketError("malformed connection attributes") from exc
        attrs[_text(key or b"")] = _text(value or b"")
    return attrs


def build_initial_handshake(
    connection_id: int,
    salt: bytes,
    capability: int = DEFAULT_CAPABILITY,
    collation: int = DEFAULT_COLLATION_ID,
    server_version: str | bytes = SERVER_VERSION,
) -> bytes:
    """Payload of the server's initial handshake packet (without the packet header).

    A collation of zero is replaced by the default collation.
    """
    salt = bytes(salt)
    if len(salt) < 8:
        raise ValueError("salt must be at least 8 bytes")
    if isinstance(server_version, str):
        server_version = server_version.encode("ascii")
    capability = int(capability)
    if collation == 0:
        collation = DEFAULT_COLLATION_ID
    return b"".join(
        [
            bytes([PROTOCOL_VERSION]),
            server_version,
            b"\x00",
            dump_uint32(connection_id & 0xFFFFFFFF),
            salt[:8],
            b"\x00",
            dump_uint16(capability & 0xFFFF),
            bytes([collation]),
            dump_uint16(SERVER_STATUS_AUTOCOMMIT),
            dump_uint16((capability >> 16) & 0xFFFF),
            bytes([(len(salt) + 1) & 0xFF]),
            bytes(10),
            salt[8:],
            b"\x00",
            AUTH_PLUGIN_NAME,
            b"\x00",
        ]
    )