"""Sahara wire packets.

Packets are frozen msgspec structs; their byte layout is declared with
Construct (little-endian, explicit widths, no padding). The header length
field is a per-type constant, so it is validated on decode and generated on
encode rather than stored on the instance.
"""

from __future__ import annotations

from typing import Any, ClassVar, Type, TypeVar

import msgspec
from construct import (  # type: ignore
    Array,
    Bytes,
    Const,
    Construct,
    ConstructError,
    GreedyRange,
    Int16ul,
    Int32ul,
    Int64ul,
    Struct as BinStruct,
)

from ..errors import MalformedPacket
from . import protocol
from .protocol import MessageType

T = TypeVar("T", bound="BaseStruct")
P = TypeVar("P", bound="Packet")


class Header(msgspec.Struct, frozen=True):
    message_type: int
    length: int

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> "Header":
        if len(data) < protocol.HEADER_SIZE:
            raise MalformedPacket(f"Packet too short for header: {len(data)} bytes")
        container: Any = protocol.HEADER_STRUCT.parse(bytes(data[: protocol.HEADER_SIZE]))
        return cls(message_type=container.message_type, length=container.length)


class BaseStruct(msgspec.Struct, frozen=True):
    """Base class for hybrid Msgspec/Construct structures."""

    _SCHEMA: ClassVar[Construct[Any]]

    @classmethod
    def wire_size(cls) -> int:
        return cls._SCHEMA.sizeof()

    @classmethod
    def decode(cls: Type[T], data: bytes | bytearray | memoryview) -> T:
        """Decode binary data into a typed struct, rejecting short buffers."""
        return cls._parse(cls._SCHEMA, data)

    @classmethod
    def _parse(cls: Type[T], schema: Construct[Any], data: bytes | bytearray | memoryview) -> T:
        if not data:
            raise MalformedPacket(f"Empty {cls.__name__} payload")
        try:
            container: Any = schema.parse(bytes(data))
        except ConstructError as exc:
            raise MalformedPacket(f"{cls.__name__} decode failed: {exc}") from exc
        # Fields absent from the chosen layout keep their defaults.
        return cls(**{name: _plain(container[name]) for name in cls.__struct_fields__ if name in container})

    def encode(self) -> bytes:
        return self._SCHEMA.build(msgspec.structs.asdict(self))


def _plain(value: Any) -> Any:
    # Construct returns ListContainer for arrays; msgspec fields want tuples.
    if isinstance(value, list):
        return tuple(value)
    return value


def _packet_schema(*fields: Any) -> Construct[Any]:
    body = BinStruct(*fields)
    length = protocol.HEADER_SIZE + body.sizeof()
    return BinStruct(
        "message_type" / Int32ul,
        "length" / Const(length, Int32ul),
        *fields,
    )


class Packet(BaseStruct, frozen=True):
    """A header-bearing packet.

    Every subclass declares a ``message_type`` field; fixed-type packets
    give it a default.
    """

    @classmethod
    def decode(cls: Type[P], data: bytes | bytearray | memoryview) -> P:
        header = Header.decode(data)
        schema = cls._schema_for_length(header.length)
        if len(data) != header.length:
            raise MalformedPacket(
                f"{cls.__name__} buffer holds {len(data)} bytes, header declares {header.length}"
            )
        return cls._parse(schema, data)

    @classmethod
    def _schema_for_length(cls, length: int) -> Construct[Any]:
        expected = cls.wire_size()
        if length != expected:
            raise MalformedPacket(
                f"{cls.__name__} length field {length} does not match packet size {expected}"
            )
        return cls._SCHEMA


# --- Host and device packets ---

_HELLO_REQUEST_FIELDS = (
    "version" / Int32ul,
    "compatible" / Int32ul,
    "max_len" / Int32ul,
    "mode" / Int32ul,
)


class HelloRequest(Packet, frozen=True):
    """Device HELLO.

    Devices send either the bare 0x18 byte form or the 0x30 byte form that
    carries six reserved words; the header length selects the layout.
    ``reserved`` is ``None`` for the bare form and re-encodes to it.
    """

    version: int
    compatible: int
    max_len: int
    mode: int
    reserved: tuple[int, ...] | None = None
    message_type: int = MessageType.HELLO_REQUEST

    _SCHEMA = _packet_schema(*_HELLO_REQUEST_FIELDS, "reserved" / Array(protocol.HELLO_RESERVED_WORDS, Int32ul))
    _BARE_SCHEMA: ClassVar[Construct[Any]] = _packet_schema(*_HELLO_REQUEST_FIELDS)

    @classmethod
    def _schema_for_length(cls, length: int) -> Construct[Any]:
        if length == cls._BARE_SCHEMA.sizeof():
            return cls._BARE_SCHEMA
        if length == cls._SCHEMA.sizeof():
            return cls._SCHEMA
        raise MalformedPacket(
            f"HelloRequest length field {length} is neither "
            f"{cls._BARE_SCHEMA.sizeof()} nor {cls._SCHEMA.sizeof()}"
        )

    def encode(self) -> bytes:
        if self.reserved is None:
            return self._BARE_SCHEMA.build(msgspec.structs.asdict(self))
        return super().encode()


class HelloResponse(Packet, frozen=True):
    mode: int
    version: int = protocol.HELLO_VERSION
    compatible: int = protocol.HELLO_COMPATIBLE
    status: int = 0
    reserved: tuple[int, ...] = protocol.HELLO_RESERVED
    message_type: int = MessageType.HELLO_RESPONSE

    _SCHEMA = _packet_schema(
        "version" / Int32ul,
        "compatible" / Int32ul,
        "status" / Int32ul,
        "mode" / Int32ul,
        "reserved" / Array(protocol.HELLO_RESERVED_WORDS, Int32ul),
    )


class ResetRequest(Packet, frozen=True):
    message_type: int = MessageType.RESET_REQUEST

    _SCHEMA = _packet_schema()


class ResetResponse(Packet, frozen=True):
    message_type: int = MessageType.RESET_RESPONSE

    _SCHEMA = _packet_schema()


class DoneRequest(Packet, frozen=True):
    message_type: int = MessageType.DONE_REQUEST

    _SCHEMA = _packet_schema()


class DoneResponse(Packet, frozen=True):
    status: int
    message_type: int = MessageType.DONE_RESPONSE

    _SCHEMA = _packet_schema("status" / Int32ul)


class Exec(Packet, frozen=True):
    """Execute packet, sent as EXECUTE_REQUEST and again as EXECUTE_DATA."""

    message_type: int
    command: int

    _SCHEMA = _packet_schema("command" / Int32ul)


class MemoryRead32(Packet, frozen=True):
    address: int
    size: int
    message_type: int = MessageType.MEMORY_READ

    _SCHEMA = _packet_schema("address" / Int32ul, "size" / Int32ul)


class MemoryRead64(Packet, frozen=True):
    address: int
    size: int
    message_type: int = MessageType.MEMORY_READ_64

    _SCHEMA = _packet_schema("address" / Int64ul, "size" / Int64ul)


class EndOfTransfer(Packet, frozen=True):
    image: int
    status: int
    message_type: int = MessageType.END_OF_TRANSFER

    _SCHEMA = _packet_schema("image" / Int32ul, "status" / Int32ul)


# --- Command payloads (no header) ---


class HardwareId(BaseStruct, frozen=True):
    model: int
    oem: int
    id: int

    _SCHEMA = BinStruct("model" / Int16ul, "oem" / Int16ul, "id" / Int32ul)


class SerialNo(BaseStruct, frozen=True):
    serial: bytes

    _SCHEMA = BinStruct("serial" / Bytes(protocol.SERIAL_NUMBER_LENGTH))

    @property
    def text(self) -> str:
        return self.serial.hex().upper()


class OemPkHash(BaseStruct, frozen=True):
    """Three hash blocks, surfaced individually.

    Known devices repeat the same hash three times; that is reported by
    :attr:`identical` and never assumed while parsing.
    """

    hash1: bytes
    hash2: bytes
    hash3: bytes

    _SCHEMA = BinStruct(
        "hash1" / Bytes(protocol.OEM_PK_HASH_LENGTH),
        "hash2" / Bytes(protocol.OEM_PK_HASH_LENGTH),
        "hash3" / Bytes(protocol.OEM_PK_HASH_LENGTH),
    )

    @property
    def blocks(self) -> tuple[bytes, bytes, bytes]:
        return (self.hash1, self.hash2, self.hash3)

    @property
    def identical(self) -> bool:
        return self.hash1 == self.hash2 == self.hash3


class SblVersion(BaseStruct, frozen=True):
    version: int

    _SCHEMA = BinStruct("version" / Int32ul)


class CommandIdList(BaseStruct, frozen=True):
    commands: tuple[int, ...]

    _SCHEMA = BinStruct("commands" / GreedyRange(Int32ul))
