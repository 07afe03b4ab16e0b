import pytest

from sampcef.wire import (
    DecodeError,
    WireType,
    decode_varint,
    encode_key,
    encode_varint,
    iter_fields,
)


@pytest.mark.parametrize("value", [0, 1, 127, 128, 300, 2**31 - 1, 2**63, 2**64 - 1])
def test_varint_round_trip(value):
    encoded = encode_varint(value)
    assert decode_varint(encoded, 0) == (value, len(encoded))


def test_varint_single_byte_values():
    assert encode_varint(0) == b"\x00"
    assert encode_varint(1) == b"\x01"
    assert len(encode_varint(127)) == 1
    assert len(encode_varint(128)) == 2


def test_varint_known_encoding():
    assert encode_varint(300) == b"\xac\x02"


def test_negative_varint_uses_ten_bytes():
    encoded = encode_varint(-1)
    assert encoded == b"\xff" * 9 + b"\x01"
    assert decode_varint(encoded, 0) == (2**64 - 1, 10)


def test_varint_too_large_rejected():
    with pytest.raises(ValueError):
        encode_varint(2**64)


def test_decode_varint_at_offset():
    data = b"\x99" + encode_varint(150)
    value, pos = decode_varint(data, 1)
    assert value == 150
    assert pos == len(data)


def test_decode_truncated_varint():
    with pytest.raises(DecodeError):
        decode_varint(b"\x80", 0)


def test_decode_overlong_varint():
    with pytest.raises(DecodeError):
        decode_varint(b"\xff" * 11, 0)


def test_encode_key_matches_source_tags():
    assert encode_key(1, WireType.VARINT) == bytes([8])
    assert encode_key(2, WireType.LEN) == bytes([18])
    assert encode_key(2, WireType.FIXED32) == bytes([21])
    assert encode_key(3, WireType.VARINT) == bytes([24])


@pytest.mark.parametrize("field", [0, -1, 2**29])
def test_encode_key_invalid_field(field):
    with pytest.raises(ValueError):
        encode_key(field, WireType.VARINT)


def test_iter_fields_mixed_message():
    payload = "hello".encode()
    data = (
        encode_key(1, WireType.VARINT)
        + encode_varint(150)
        + encode_key(2, WireType.LEN)
        + encode_varint(len(payload))
        + payload
        + encode_key(3, WireType.FIXED32)
        + b"\x00\x00\x80\x3f"
        + encode_key(4, WireType.FIXED64)
        + b"\x01" * 8
    )
    assert list(iter_fields(data)) == [
        (1, WireType.VARINT, 150),
        (2, WireType.LEN, payload),
        (3, WireType.FIXED32, b"\x00\x00\x80\x3f"),
        (4, WireType.FIXED64, b"\x01" * 8),
    ]


def test_iter_fields_empty():
    assert list(iter_fields(b"")) == []


def test_iter_fields_truncated_length():
    data = encode_key(2, WireType.LEN) + encode_varint(5) + b"ab"
    with pytest.raises(DecodeError):
        list(iter_fields(data))


def test_iter_fields_truncated_fixed32():
    data = encode_key(2, WireType.FIXED32) + b"\x00\x00"
    with pytest.raises(DecodeError):
        list(iter_fields(data))


def test_iter_fields_rejects_groups():
    with pytest.raises(DecodeError):
        list(iter_fields(encode_key(1, WireType.START_GROUP)))


def test_iter_fields_rejects_unknown_wire_type():
    with pytest.raises(DecodeError):
        list(iter_fields(bytes([(1 << 3) | 6])))


def test_iter_fields_rejects_field_zero():
    with pytest.raises(DecodeError):
        list(iter_fields(b"\x00\x01"))


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        decode_varint(b"", 0)