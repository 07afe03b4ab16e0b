"""Packet messages exchanged between the game server and the browser clients.

Every message is serialized the way it travels on the wire: a varint length
followed by the protocol-buffer body. A :class:`Packet` wraps one such encoded
message together with its :class:`PacketId`.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from sampcef.wire import (
    DecodeError,
    WireType,
    decode_varint,
    encode_key,
    encode_varint,
    iter_fields,
)

__all__ = [
    "PacketId",
    "Message",
    "Packet",
    "RequestJoin",
    "JoinResponse",
    "CreateBrowser",
    "DestroyBrowser",
    "AlwaysListenKeys",
    "EmitEvent",
    "HideBrowser",
    "FocusBrowser",
    "EventValue",
    "BrowserCreated",
    "Got",
    "OpenConnection",
    "CreateExternalBrowser",
    "AppendToObject",
    "RemoveFromObject",
    "ToggleDevTools",
    "SetAudioSettings",
    "LoadUrl",
    "to_packet",
    "try_into_packet",
]

_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_UINT32_MAX = (1 << 32) - 1


class PacketId(enum.IntEnum):
    """Identifier of the message carried by a :class:`Packet`."""

    OPEN_CONNECTION = 0
    REQUEST_JOIN = 1
    JOIN_RESPONSE = 2
    CREATE_BROWSER = 3
    DESTROY_BROWSER = 4
    ALWAYS_LISTEN_KEYS = 5
    HIDE_BROWSER = 6
    FOCUS_BROWSER = 7
    EMIT_EVENT = 8
    BROWSER_CREATED = 9
    GOT = 10
    CREATE_EXTERNAL_BROWSER = 11
    APPEND_TO_OBJECT = 12
    REMOVE_FROM_OBJECT = 13
    TOGGLE_DEV_TOOLS = 14
    SET_AUDIO_SETTINGS = 15
    LOAD_URL = 16

    @classmethod
    def from_int(cls, value: int) -> "PacketId":
        """Map a number to its id; unknown numbers give ``OPEN_CONNECTION``."""
        try:
            return cls(value)
        except ValueError:
            return cls.OPEN_CONNECTION

    @classmethod
    def from_name(cls, name: str) -> "PacketId":
        """Map a name to its id; unknown names give ``OPEN_CONNECTION``."""
        try:
            return cls[name]
        except KeyError:
            return cls.OPEN_CONNECTION


class _Kind(enum.Enum):
    UINT32 = enum.auto()
    INT32 = enum.auto()
    BOOL = enum.auto()
    ENUM = enum.auto()
    FLOAT = enum.auto()
    STRING = enum.auto()
    BYTES = enum.auto()
    MESSAGE = enum.auto()

    @property
    def wire_type(self) -> WireType:
        if self is _Kind.FLOAT:
            return WireType.FIXED32
        if self in (_Kind.STRING, _Kind.BYTES, _Kind.MESSAGE):
            return WireType.LEN
        return WireType.VARINT


@dataclass(frozen=True)
class _Field:
    number: int
    name: str
    kind: _Kind
    optional: bool = False
    repeated: bool = False
    message: Optional[type] = None


def _length_prefixed(body: bytes) -> bytes:
    return encode_varint(len(body)) + body


def _to_int32(raw: int) -> int:
    raw &= _UINT32_MAX
    return raw - (1 << 32) if raw > _INT32_MAX else raw


def _encode_value(spec: _Field, value: Any) -> bytes:
    kind = spec.kind
    if kind is _Kind.UINT32:
        if not 0 <= value <= _UINT32_MAX:
            raise ValueError(f"{spec.name}={value} is out of uint32 range")
        return encode_varint(value)
    if kind is _Kind.INT32:
        if not _INT32_MIN <= value <= _INT32_MAX:
            raise ValueError(f"{spec.name}={value} is out of int32 range")
        return encode_varint(value)
    if kind is _Kind.BOOL:
        return encode_varint(1 if value else 0)
    if kind is _Kind.ENUM:
        return encode_varint(int(value))
    if kind is _Kind.FLOAT:
        return struct.pack("<f", value)
    if kind is _Kind.STRING:
        return _length_prefixed(value.encode("utf-8"))
    if kind is _Kind.BYTES:
        return _length_prefixed(bytes(value))
    return _length_prefixed(value._encode_body())


def _decode_value(spec: _Field, raw: Any) -> Any:
    kind = spec.kind
    if kind is _Kind.UINT32:
        return raw & _UINT32_MAX
    if kind is _Kind.INT32:
        return _to_int32(raw)
    if kind is _Kind.BOOL:
        return raw != 0
    if kind is _Kind.ENUM:
        return PacketId.from_int(_to_int32(raw))
    if kind is _Kind.FLOAT:
        return struct.unpack("<f", raw)[0]
    if kind is _Kind.STRING:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecodeError(f"field {spec.name} is not valid UTF-8") from err
    if kind is _Kind.BYTES:
        return bytes(raw)
    assert spec.message is not None
    return spec.message._decode_body(raw)


class Message:
    """Base of all packet messages.

    Subclasses are dataclasses that list their wire fields in ``_FIELDS``;
    messages that travel inside a :class:`Packet` also set ``PACKET_ID``.
    """

    PACKET_ID: ClassVar[Optional[PacketId]] = None
    _FIELDS: ClassVar[tuple[_Field, ...]] = ()

    def _encode_body(self) -> bytes:
        out = bytearray()
        for spec in self._FIELDS:
            value = getattr(self, spec.name)
            values = value if spec.repeated else [value]
            for item in values:
                if item is None and spec.optional:
                    continue
                out += encode_key(spec.number, spec.kind.wire_type)
                out += _encode_value(spec, item)
        return bytes(out)

    @classmethod
    def _decode_body(cls, body: bytes) -> Any:
        by_key = {(spec.number, spec.kind.wire_type): spec for spec in cls._FIELDS}
        values: dict[str, Any] = {}
        for number, wire_type, raw in iter_fields(body):
            spec = by_key.get((number, wire_type))
            if spec is None:
                continue
            value = _decode_value(spec, raw)
            if spec.repeated:
                values.setdefault(spec.name, []).append(value)
            else:
                values[spec.name] = value
        return cls(**values)

    def encode(self) -> bytes:
        """Serialize as a length-prefixed message, the framing used on the wire."""
        return _length_prefixed(self._encode_body())

    @classmethod
    def decode(cls, data: bytes) -> Any:
        """Parse a length-prefixed message produced by :meth:`encode`.

        Raises :class:`~sampcef.wire.DecodeError` on malformed input.
        """
        data = bytes(data)
        size, pos = decode_varint(data, 0)
        end = pos + size
        if end > len(data):
            raise DecodeError("message is shorter than its length prefix")
        return cls._decode_body(data[pos:end])


@dataclass
class Packet(Message):
    """Envelope carrying one encoded message and the id of its type."""

    packet_id: PacketId = PacketId.OPEN_CONNECTION
    payload: bytes = b""

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "packet_id", _Kind.ENUM),
        _Field(2, "payload", _Kind.BYTES),
    )


@dataclass
class RequestJoin(Message):
    plugin_version: int = 0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.REQUEST_JOIN
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "plugin_version", _Kind.INT32),
    )


@dataclass
class JoinResponse(Message):
    success: bool = False
    current_version: Optional[int] = None

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.JOIN_RESPONSE
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "success", _Kind.BOOL),
        _Field(2, "current_version", _Kind.INT32, optional=True),
    )


@dataclass
class CreateBrowser(Message):
    browser_id: int = 0
    url: str = ""
    hidden: bool = False
    focused: bool = False

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.CREATE_BROWSER
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "url", _Kind.STRING),
        _Field(3, "hidden", _Kind.BOOL),
        _Field(4, "focused", _Kind.BOOL),
    )


@dataclass
class DestroyBrowser(Message):
    browser_id: int = 0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.DESTROY_BROWSER
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
    )


@dataclass
class AlwaysListenKeys(Message):
    browser_id: int = 0
    listen: bool = False

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.ALWAYS_LISTEN_KEYS
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "listen", _Kind.BOOL),
    )


@dataclass
class EventValue(Message):
    """One argument of an event: a string, a float or an integer."""

    string_value: Optional[str] = None
    float_value: Optional[float] = None
    integer_value: Optional[int] = None

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "string_value", _Kind.STRING, optional=True),
        _Field(2, "float_value", _Kind.FLOAT, optional=True),
        _Field(3, "integer_value", _Kind.INT32, optional=True),
    )


@dataclass
class EmitEvent(Message):
    event_name: str = ""
    args: Optional[str] = None
    arguments: list[EventValue] = field(default_factory=list)

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.EMIT_EVENT
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "event_name", _Kind.STRING),
        _Field(2, "args", _Kind.STRING, optional=True),
        _Field(3, "arguments", _Kind.MESSAGE, repeated=True, message=EventValue),
    )


@dataclass
class HideBrowser(Message):
    browser_id: int = 0
    hide: bool = False

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.HIDE_BROWSER
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "hide", _Kind.BOOL),
    )


@dataclass
class FocusBrowser(Message):
    browser_id: int = 0
    focused: bool = False

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.FOCUS_BROWSER
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "focused", _Kind.BOOL),
    )


@dataclass
class BrowserCreated(Message):
    browser_id: int = 0
    status_code: int = 0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.BROWSER_CREATED
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "status_code", _Kind.INT32),
    )


@dataclass
class Got(Message):
    """Empty acknowledgement; any body content is ignored when decoding."""

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.GOT

    @classmethod
    def _decode_body(cls, body: bytes) -> "Got":
        return cls()


@dataclass
class OpenConnection(Message):
    """Empty greeting; any body content is ignored when decoding."""

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.OPEN_CONNECTION

    @classmethod
    def _decode_body(cls, body: bytes) -> "OpenConnection":
        return cls()


@dataclass
class CreateExternalBrowser(Message):
    browser_id: int = 0
    url: str = ""
    scale: int = 0
    texture: str = ""

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.CREATE_EXTERNAL_BROWSER
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "url", _Kind.STRING),
        _Field(3, "scale", _Kind.INT32),
        _Field(4, "texture", _Kind.STRING),
    )


@dataclass
class AppendToObject(Message):
    browser_id: int = 0
    object_id: int = 0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.APPEND_TO_OBJECT
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "object_id", _Kind.INT32),
    )


@dataclass
class RemoveFromObject(Message):
    browser_id: int = 0
    object_id: int = 0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.REMOVE_FROM_OBJECT
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "object_id", _Kind.INT32),
    )


@dataclass
class ToggleDevTools(Message):
    browser_id: int = 0
    enabled: bool = False

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.TOGGLE_DEV_TOOLS
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "enabled", _Kind.BOOL),
    )


@dataclass
class SetAudioSettings(Message):
    browser_id: int = 0
    max_distance: float = 0.0
    reference_distance: float = 0.0

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.SET_AUDIO_SETTINGS
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "max_distance", _Kind.FLOAT),
        _Field(3, "reference_distance", _Kind.FLOAT),
    )


@dataclass
class LoadUrl(Message):
    browser_id: int = 0
    url: str = ""

    PACKET_ID: ClassVar[Optional[PacketId]] = PacketId.LOAD_URL
    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "browser_id", _Kind.UINT32),
        _Field(2, "url", _Kind.STRING),
    )


def to_packet(message: Message) -> Packet:
    """Wrap a message in a :class:`Packet` tagged with its id.

    Raises ``TypeError`` for messages that cannot travel on their own.
    """
    packet_id = getattr(message, "PACKET_ID", None)
    if packet_id is None:
        raise TypeError(f"{type(message).__name__} cannot be sent as a packet")
    return Packet(packet_id=packet_id, payload=message.encode())


def try_into_packet(message: Message) -> bytes:
    """Wrap a message in a packet and return the packet's wire bytes."""
    return to_packet(message).encode()