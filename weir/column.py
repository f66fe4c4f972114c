"""Column definitions as sent in result-set metadata."""

from __future__ import annotations

from dataclasses import dataclass

from weir.protocol import (
    ColumnFlag,
    FieldType,
    dump_length_encoded_string,
    dump_uint16,
    dump_uint32,
    dump_uint64,
)

MAX_COLUMN_NAME_SIZE = 256


@dataclass
class ColumnInfo:
    """Metadata of one result-set column."""

    schema: str = ""
    table: str = ""
    org_table: str = ""
    name: str = ""
    org_name: str = ""
    column_length: int = 0
    charset: int = 0
    flag: int = 0
    decimal: int = 0
    type: int = 0
    default_value_length: int = 0
    default_value: bytes | None = None

    def dump(self) -> bytes:
        """Encode the column definition packet payload."""
        name = self.name.encode("utf-8")[:MAX_COLUMN_NAME_SIZE]
        org_name = self.org_name.encode("utf-8")[:MAX_COLUMN_NAME_SIZE]
        parts = [
            dump_length_encoded_string(b"def"),
            dump_length_encoded_string(self.schema.encode("utf-8")),
            dump_length_encoded_string(self.table.encode("utf-8")),
            dump_length_encoded_string(self.org_table.encode("utf-8")),
            dump_length_encoded_string(name),
            dump_length_encoded_string(org_name),
            b"\x0c",
            dump_uint16(self.charset),
            dump_uint32(self.column_length),
            bytes([dump_type(self.type)]),
            dump_uint16(dump_flag(self.type, self.flag)),
            bytes([self.decimal, 0, 0]),
        ]
        if self.default_value is not None:
            parts.append(dump_uint64(len(self.default_value)))
            parts.append(bytes(self.default_value))
        return b"".join(parts)


def dump_flag(field_type: int, flag: int) -> int:
    """Flags as reported to the client for the given field type."""
    if field_type == FieldType.SET:
        return int(flag | ColumnFlag.SET)
    if field_type == FieldType.ENUM:
        return int(flag | ColumnFlag.ENUM)
    if flag & ColumnFlag.BINARY:
        return int(flag | ColumnFlag.NOT_NULL)
    return int(flag)


def dump_type(field_type: int) -> int:
    """Field type as reported to the client; SET and ENUM appear as STRING."""
    if field_type in (FieldType.SET, FieldType.ENUM):
        return int(FieldType.STRING)
    return int(field_type)