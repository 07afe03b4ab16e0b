"""Protocol-buffer wire primitives used by the packet messages."""

from __future__ import annotations

import enum
from collections.abc import Iterator
from typing import Union

_MAX_VARINT_BYTES = 10
_UINT64_LIMIT = 1 << 64
_MAX_FIELD_NUMBER = (1 << 29) - 1

FieldValue = Union[int, bytes]


class DecodeError(ValueError):
    """Raised when bytes do not form a valid protocol-buffer message."""


class WireType(enum.IntEnum):
    """Wire types of the protocol-buffer encoding."""

    VARINT = 0
    FIXED64 = 1
    LEN = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


def encode_varint(value: int) -> bytes:
    """Encode an integer as a base-128 varint.

    Negative values are encoded as their 64-bit two's complement, the way
    int32 and int64 fields are written.
    """
    if value < 0:
        value += _UINT64_LIMIT
    if not 0 <= value < _UINT64_LIMIT:
        raise ValueError(f"value {value} does not fit in 64 bits")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode a varint starting at ``pos``; return the value and the next position."""
    result = 0
    for index in range(_MAX_VARINT_BYTES):
        if pos >= len(data):
            raise DecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return result & (_UINT64_LIMIT - 1), pos
    raise DecodeError("varint longer than 10 bytes")


def encode_key(field: int, wire_type: WireType) -> bytes:
    """Encode the key (tag) that precedes a field on the wire."""
    if not 1 <= field <= _MAX_FIELD_NUMBER:
        raise ValueError(f"invalid field number {field}")
    return encode_varint((field << 3) | int(wire_type))


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise DecodeError("truncated field")
    return data[pos:end], end


def iter_fields(data: bytes) -> Iterator[tuple[int, WireType, FieldValue]]:
    """Yield ``(field, wire_type, value)`` for every field in a message.

    Varint values come back as unsigned integers; fixed-width and
    length-delimited values come back as raw bytes.
    """
    data = bytes(data)
    pos = 0
    while pos < len(data):
        key, pos = decode_varint(data, pos)
        field = key >> 3
        if field == 0:
            raise DecodeError("field number zero")
        try:
            wire_type = WireType(key & 0x07)
        except ValueError:
            raise DecodeError(f"unknown wire type {key & 0x07}") from None

        value: FieldValue
        match wire_type:
            case WireType.VARINT:
                value, pos = decode_varint(data, pos)
            case WireType.FIXED64:
                value, pos = _take(data, pos, 8)
            case WireType.FIXED32:
                value, pos = _take(data, pos, 4)
            case WireType.LEN:
                size, pos = decode_varint(data, pos)
                value, pos = _take(data, pos, size)
            case _:
                raise DecodeError(f"unsupported wire type {wire_type.name}")
        yield field, wire_type, value