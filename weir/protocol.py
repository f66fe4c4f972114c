"""Encoding helpers for the MySQL client/server wire protocol."""

from __future__ import annotations

import json
import math
import struct
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import IntEnum, IntFlag
from typing import Any, Sequence

NOT_FIXED_DEC = 31
UNSPECIFIED_LENGTH = -1
OK_HEADER = 0x00
NULL_MARKER = 0xFB

_UINT64_MASK = (1 << 64) - 1
_EXP_FORMAT_BIG = 1e15
_EXP_FORMAT_SMALL = 1e-15

_NS_PER_US = 1_000
_NS_PER_SECOND = 1_000_000_000
_NS_PER_MINUTE = 60 * _NS_PER_SECOND
_NS_PER_HOUR = 60 * _NS_PER_MINUTE
_NS_PER_DAY = 24 * _NS_PER_HOUR


class FieldType(IntEnum):
    """Column types as they appear on the wire."""

    DECIMAL = 0x00
    TINY = 0x01
    SHORT = 0x02
    LONG = 0x03
    FLOAT = 0x04
    DOUBLE = 0x05
    NULL = 0x06
    TIMESTAMP = 0x07
    LONGLONG = 0x08
    INT24 = 0x09
    DATE = 0x0A
    DURATION = 0x0B
    DATETIME = 0x0C
    YEAR = 0x0D
    NEWDATE = 0x0E
    VARCHAR = 0x0F
    BIT = 0x10
    JSON = 0xF5
    NEWDECIMAL = 0xF6
    ENUM = 0xF7
    SET = 0xF8
    TINY_BLOB = 0xF9
    MEDIUM_BLOB = 0xFA
    LONG_BLOB = 0xFB
    BLOB = 0xFC
    VAR_STRING = 0xFD
    STRING = 0xFE
    GEOMETRY = 0xFF


class ColumnFlag(IntFlag):
    """Column definition flags."""

    NOT_NULL = 1
    PRI_KEY = 2
    UNIQUE_KEY = 4
    MULTIPLE_KEY = 8
    BLOB = 16
    UNSIGNED = 32
    ZEROFILL = 64
    BINARY = 128
    ENUM = 256
    AUTO_INCREMENT = 512
    TIMESTAMP = 1024
    SET = 2048
    NO_DEFAULT_VALUE = 4096
    ON_UPDATE_NOW = 8192
    NUM = 32768


class InvalidTypeError(ValueError):
    """A value cannot be encoded for the column's field type."""


_INT_TYPES = frozenset({FieldType.TINY, FieldType.SHORT, FieldType.INT24, FieldType.LONG})
_BYTES_TYPES = frozenset(
    {
        FieldType.STRING,
        FieldType.VAR_STRING,
        FieldType.VARCHAR,
        FieldType.BIT,
        FieldType.TINY_BLOB,
        FieldType.MEDIUM_BLOB,
        FieldType.LONG_BLOB,
        FieldType.BLOB,
    }
)
_TIME_TYPES = frozenset({FieldType.DATE, FieldType.DATETIME, FieldType.TIMESTAMP})


def parse_null_term_string(data: bytes) -> tuple[bytes | None, bytes]:
    """Split at the first NUL byte; returns (None, data) when there is none."""
    head, sep, tail = bytes(data).partition(b"\x00")
    if not sep:
        return None, bytes(data)
    return head, tail


def parse_length_encoded_int(data: bytes) -> tuple[int, bool, int]:
    """Decode a length-encoded integer: (value, is_null, bytes consumed)."""
    if not data:
        raise ValueError("empty length-encoded integer")
    first = data[0]
    if first == 0xFB:
        return 0, True, 1
    widths = {0xFC: 2, 0xFD: 3, 0xFE: 8}
    width = widths.get(first)
    if width is None:
        return first, False, 1
    if len(data) < width + 1:
        raise ValueError("truncated length-encoded integer")
    return int.from_bytes(bytes(data[1 : width + 1]), "little"), False, width + 1


def dump_length_encoded_int(n: int) -> bytes:
    """Encode an unsigned 64-bit integer as a length-encoded integer."""
    if n < 0 or n > _UINT64_MASK:
        raise ValueError(f"length-encoded integer out of range: {n}")
    if n <= 250:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfc" + n.to_bytes(2, "little")
    if n <= 0xFFFFFF:
        return b"\xfd" + n.to_bytes(3, "little")
    return b"\xfe" + n.to_bytes(8, "little")


def parse_length_encoded_bytes(data: bytes) -> tuple[bytes | None, bool, int]:
    """Decode a length-encoded string: (payload, is_null, bytes consumed).

    Raises EOFError when the payload is shorter than its declared length.
    """
    num, is_null, consumed = parse_length_encoded_int(data)
    if num < 1:
        return None, is_null, consumed
    end = consumed + num
    if len(data) < end:
        raise EOFError("EOF")
    return bytes(data[consumed:end]), False, end


def dump_length_encoded_string(data: bytes) -> bytes:
    """Prefix the bytes with their length-encoded size."""
    return dump_length_encoded_int(len(data)) + bytes(data)


def dump_uint16(n: int) -> bytes:
    return n.to_bytes(2, "little")


def dump_uint32(n: int) -> bytes:
    return n.to_bytes(4, "little")


def dump_uint64(n: int) -> bytes:
    return n.to_bytes(8, "little")


def length_encoded_int_size(n: int) -> int:
    """Number of bytes needed to length-encode ``n``."""
    if n <= 250:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFF:
        return 4
    return 9


def _nanoseconds(duration: timedelta | int) -> int:
    if isinstance(duration, timedelta):
        whole_seconds = duration.days * 86400 + duration.seconds
        return whole_seconds * _NS_PER_SECOND + duration.microseconds * _NS_PER_US
    if isinstance(duration, int):
        return duration
    raise TypeError(f"unsupported duration value: {duration!r}")


def dump_binary_time(duration: timedelta | int) -> bytes:
    """Encode a duration (timedelta or integer nanoseconds) in binary TIME form."""
    ns = _nanoseconds(duration)
    if ns == 0:
        return b"\x00"
    negative = ns < 0
    days, rest = divmod(abs(ns), _NS_PER_DAY)
    hours, rest = divmod(rest, _NS_PER_HOUR)
    minutes, rest = divmod(rest, _NS_PER_MINUTE)
    seconds, rest = divmod(rest, _NS_PER_SECOND)
    body = bytes([1 if negative else 0, days & 0xFF, 0, 0, 0, hours, minutes, seconds])
    if rest == 0:
        return bytes([8]) + body
    return bytes([12]) + body + dump_uint32((rest // _NS_PER_US) & 0xFFFFFFFF)


def dump_binary_datetime(value: date | None, field_type: int) -> bytes:
    """Encode a date or datetime in binary form; ``None`` is the zero value."""
    if field_type in (FieldType.TIMESTAMP, FieldType.DATETIME):
        if value is None:
            return b"\x00"
        return (
            b"\x0b"
            + dump_uint16(value.year)
            + bytes(
                [
                    value.month,
                    value.day,
                    getattr(value, "hour", 0),
                    getattr(value, "minute", 0),
                    getattr(value, "second", 0),
                ]
            )
            + dump_uint32(getattr(value, "microsecond", 0))
        )
    if field_type == FieldType.DATE:
        if value is None:
            return b"\x00"
        return b"\x04" + dump_uint16(value.year) + bytes([value.month, value.day])
    return b""


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return str(value).encode("utf-8")


def _decimal_text(value: Any) -> bytes:
    if isinstance(value, Decimal):
        return format(value, "f").encode("ascii")
    return _to_bytes(value)


def _json_text(value: Any) -> bytes:
    if isinstance(value, (str, bytes, bytearray, memoryview)):
        return _to_bytes(value)
    return json.dumps(value).encode("utf-8")


def _fsp(decimal: int) -> int:
    return decimal if 0 < decimal <= 6 else 0


def _time_text(value: Any, field_type: int) -> bytes:
    if isinstance(value, (str, bytes, bytearray)):
        return _to_bytes(value)
    if field_type == FieldType.DATE:
        day = value.date() if isinstance(value, datetime) else value
        return day.isoformat().encode("ascii")
    if isinstance(value, datetime):
        text = value.strftime("%Y-%m-%d %H:%M:%S")
        if value.microsecond:
            text += f".{value.microsecond:06d}"
        return text.encode("ascii")
    return f"{value.isoformat()} 00:00:00".encode("ascii")


def _duration_text(value: timedelta | int, fsp: int) -> bytes:
    ns = _nanoseconds(value)
    sign = "-" if ns < 0 else ""
    hours, rest = divmod(abs(ns), _NS_PER_HOUR)
    minutes, rest = divmod(rest, _NS_PER_MINUTE)
    seconds, rest = divmod(rest, _NS_PER_SECOND)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if fsp > 0:
        text += "." + str(rest // 10 ** (9 - fsp)).zfill(fsp)
    return text.encode("ascii")


def _signed64(value: int) -> int:
    return ((value + (1 << 63)) & _UINT64_MASK) - (1 << 63)


def dump_binary_row(columns: Sequence[Any], row: Sequence[Any]) -> bytes:
    """Encode a row in the binary result-set format; ``None`` is NULL."""
    null_bitmap = bytearray((len(columns) + 7 + 2) // 8)
    body = bytearray()
    for index, (column, value) in enumerate(zip(columns, row, strict=True)):
        if value is None:
            null_bitmap[(index + 2) // 8] |= 1 << ((index + 2) % 8)
            continue
        tp = column.type
        if tp == FieldType.TINY:
            body.append(int(value) & 0xFF)
        elif tp in (FieldType.SHORT, FieldType.YEAR):
            body += dump_uint16(int(value) & 0xFFFF)
        elif tp in (FieldType.INT24, FieldType.LONG):
            body += dump_uint32(int(value) & 0xFFFFFFFF)
        elif tp == FieldType.LONGLONG:
            body += dump_uint64(int(value) & _UINT64_MASK)
        elif tp == FieldType.FLOAT:
            body += struct.pack("<f", value)
        elif tp == FieldType.DOUBLE:
            body += struct.pack("<d", value)
        elif tp == FieldType.NEWDECIMAL:
            body += dump_length_encoded_string(_decimal_text(value))
        elif tp in _BYTES_TYPES:
            body += dump_length_encoded_string(_to_bytes(value))
        elif tp in _TIME_TYPES:
            body += dump_binary_datetime(value, tp)
        elif tp == FieldType.DURATION:
            body += dump_binary_time(value)
        elif tp in (FieldType.ENUM, FieldType.SET):
            body += dump_length_encoded_string(_to_bytes(value))
        elif tp == FieldType.JSON:
            body += dump_length_encoded_string(_json_text(value))
        else:
            raise InvalidTypeError(f"invalid type {tp}")
    return bytes([OK_HEADER]) + bytes(null_bitmap) + bytes(body)


def dump_text_row(columns: Sequence[Any], row: Sequence[Any]) -> bytes:
    """Encode a row in the text result-set format; ``None`` is NULL."""
    out = bytearray()
    for column, value in zip(columns, row, strict=True):
        if value is None:
            out.append(NULL_MARKER)
            continue
        tp = column.type
        if tp in _INT_TYPES:
            text = str(int(value)).encode("ascii")
        elif tp == FieldType.YEAR:
            year = int(value)
            text = b"0000" if year == 0 else str(year).encode("ascii")
        elif tp == FieldType.LONGLONG:
            if column.flag & ColumnFlag.UNSIGNED:
                number = int(value) & _UINT64_MASK
            else:
                number = _signed64(int(value))
            text = str(number).encode("ascii")
        elif tp in (FieldType.FLOAT, FieldType.DOUBLE):
            prec = UNSPECIFIED_LENGTH
            if 0 < column.decimal != NOT_FIXED_DEC:
                prec = column.decimal
            bit_size = 32 if tp == FieldType.FLOAT else 64
            text = format_float(float(value), prec, bit_size).encode("ascii")
        elif tp == FieldType.NEWDECIMAL:
            text = _decimal_text(value)
        elif tp in _BYTES_TYPES:
            text = _to_bytes(value)
        elif tp in _TIME_TYPES:
            text = _time_text(value, tp)
        elif tp == FieldType.DURATION:
            text = _duration_text(value, _fsp(column.decimal))
        elif tp in (FieldType.ENUM, FieldType.SET):
            text = _to_bytes(value)
        elif tp == FieldType.JSON:
            text = _json_text(value)
        else:
            raise InvalidTypeError(f"invalid type {tp}")
        out += dump_length_encoded_string(text)
    return bytes(out)


def _round_to_float32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _shortest_digits(value: float, bit_size: int) -> tuple[str, str, int]:
    """Shortest round-tripping digits as (sign, digits, decimal exponent)."""
    text = repr(value)
    for precision in range(1, 18):
        text = f"{value:.{precision - 1}e}"
        back = float(text)
        if bit_size == 32:
            back = _round_to_float32(back)
        if back == value:
            break
    mantissa, _, exponent = text.partition("e")
    sign = "-" if mantissa.startswith("-") else ""
    digits = mantissa.lstrip("-").replace(".", "").rstrip("0") or "0"
    return sign, digits, int(exponent)


def format_float(value: float, prec: int, bit_size: int) -> str:
    """Format a float as the server does in text result sets.

    With ``prec == -1`` the shortest representation is used and very large or
    very small magnitudes switch to exponent form without a ``+`` sign.
    """
    if bit_size == 32:
        value = _round_to_float32(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    magnitude = abs(value)
    if prec >= 0:
        return f"{value:.{prec}f}"
    sign, digits, exponent = _shortest_digits(value, bit_size)
    if magnitude >= _EXP_FORMAT_BIG or (magnitude != 0 and magnitude < _EXP_FORMAT_SMALL):
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "-" if exponent < 0 else ""
        return f"{sign}{mantissa}e{exp_sign}{abs(exponent):02d}"
    point = exponent + 1
    if point <= 0:
        body = "0." + "0" * (-point) + digits
    elif point >= len(digits):
        body = digits + "0" * (point - len(digits))
    else:
        body = digits[:point] + "." + digits[point:]
    return sign + body