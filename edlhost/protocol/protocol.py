"""Sahara protocol bindings: message types, modes, commands and the header."""
from __future__ import annotations
from construct import Int32ul, Struct as BinStruct  # type: ignore
from enum import IntEnum
from typing import Final

QUALCOMM_VENDOR_ID: Final[int] = 0x05C6
EDL_PRODUCT_ID: Final[int] = 0x9008

HELLO_VERSION: Final[int] = 2
HELLO_COMPATIBLE: Final[int] = 1
HELLO_RESERVED: Final[tuple[int, ...]] = (1, 2, 3, 4, 5, 6)
HELLO_RESERVED_WORDS: Final[int] = len(HELLO_RESERVED)

# Hardware ID and OEM key hash retrieval only exist below this version.
LEGACY_INFO_VERSION_LIMIT: Final[int] = 3

MAX_TRANSFER_SIZE: Final[int] = 0x400
UINT32_MAX: Final[int] = 0xFFFFFFFF
SERIAL_NUMBER_LENGTH: Final[int] = 8
OEM_PK_HASH_LENGTH: Final[int] = 32
OEM_PK_HASH_COUNT: Final[int] = 3

DEFAULT_TRANSFER_TIMEOUT: Final[float] = 5.0
DEFAULT_CLAIM_TIMEOUT: Final[float] = 1.0
DEFAULT_CLAIM_INTERVAL: Final[float] = 0.0002

HEADER_STRUCT: Final = BinStruct(
    "message_type" / Int32ul,
    "length" / Int32ul,
)
HEADER_SIZE: Final[int] = HEADER_STRUCT.sizeof()  # type: ignore

# bInterfaceProtocol values seen on EDL interfaces (class/subclass 0xFF).
EDL_INTERFACE_PROTOCOLS: Final[frozenset[int]] = frozenset({0xFF, 0x10, 0x11})


class MessageType(IntEnum):
    HELLO_REQUEST = 0x01
    HELLO_RESPONSE = 0x02
    READ_DATA = 0x03
    END_OF_TRANSFER = 0x04
    DONE_REQUEST = 0x05
    DONE_RESPONSE = 0x06
    RESET_REQUEST = 0x07
    RESET_RESPONSE = 0x08
    MEMORY_DEBUG = 0x09
    MEMORY_READ = 0x0A
    READY = 0x0B
    SWITCH_MODE = 0x0C  # Not issued by the engine.
    EXECUTE_REQUEST = 0x0D
    EXECUTE_RESPONSE = 0x0E
    EXECUTE_DATA = 0x0F
    MEMORY_DEBUG_64 = 0x10
    MEMORY_READ_64 = 0x11
    MEMORY_READ_DATA_64 = 0x12
    RESET_STATE_MACHINE = 0x13


class Mode(IntEnum):
    IMAGE_TX_PENDING = 0
    IMAGE_TX_COMPLETE = 1
    MEMORY_DEBUG = 2
    COMMAND = 3


class ExecCommand(IntEnum):
    GET_SERIAL_NUM = 0x01
    GET_HARDWARE_ID = 0x02
    GET_OEM_PK_HASH = 0x03
    GET_SBL_VERSION = 0x07
    GET_COMMAND_ID_LIST = 0x08
    GET_TRAINING_DATA = 0x09


def message_type_name(value: int) -> str:
    try:
        return MessageType(value).name
    except ValueError:
        return f"UNKNOWN(0x{value:02X})"
