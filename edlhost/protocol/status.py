"""Human readable names for device status codes and hardware IDs.

These tables are for diagnostics only and have no effect on the protocol.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final


class Status(IntEnum):
    SUCCESS = 0x00
    INVALID_CMD = 0x01
    PROTOCOL_MISMATCH = 0x02
    INVALID_TARGET_PROTOCOL = 0x03
    INVALID_HOST_PROTOCOL = 0x04
    INVALID_PACKET_SIZE = 0x05
    UNEXPECTED_IMAGE_ID = 0x06
    INVALID_HEADER_SIZE = 0x07
    INVALID_DATA_SIZE = 0x08
    INVALID_IMAGE_TYPE = 0x09
    INVALID_TX_LENGTH = 0x0A
    INVALID_RX_LENGTH = 0x0B
    GENERAL_TX_RX_ERROR = 0x0C
    READ_DATA_ERROR = 0x0D
    UNSUPPORTED_NUM_PHDRS = 0x0E
    INVALID_PHDR_SIZE = 0x0F
    MULTIPLE_SHARED_SEG = 0x10
    UNINIT_PHDR_LOC = 0x11
    INVALID_DEST_ADDR = 0x12
    INVALID_IMG_HDR_DATA_SIZE = 0x13
    INVALID_ELF_HDR = 0x14
    UNKNOWN_HOST_ERROR = 0x15
    TIMEOUT_RX = 0x16
    TIMEOUT_TX = 0x17
    INVALID_HOST_MODE = 0x18
    INVALID_MEMORY_READ = 0x19
    INVALID_DATA_SIZE_REQUEST = 0x1A
    MEMORY_DEBUG_NOT_SUPPORTED = 0x1B
    INVALID_MODE_SWITCH = 0x1C
    CMD_EXEC_FAILURE = 0x1D
    EXEC_CMD_INVALID_PARAM = 0x1E
    EXEC_CMD_UNSUPPORTED = 0x1F
    EXEC_DATA_INVALID_CLIENT_CMD = 0x20
    HASH_TABLE_AUTH_FAILURE = 0x21
    HASH_VERIFICATION_FAILURE = 0x22
    HASH_TABLE_NOT_FOUND = 0x23
    TARGET_INIT_FAILURE = 0x24
    IMAGE_AUTH_FAILURE = 0x25
    INVALID_IMG_HASH_TABLE_SIZE = 0x26


_STATUS_MESSAGES: Final[dict[int, str]] = {
    Status.SUCCESS: "Success",
    Status.INVALID_CMD: "Invalid command received in current state",
    Status.PROTOCOL_MISMATCH: "Protocol mismatch between host and target",
    Status.INVALID_TARGET_PROTOCOL: "Invalid target protocol version",
    Status.INVALID_HOST_PROTOCOL: "Invalid host protocol version",
    Status.INVALID_PACKET_SIZE: "Invalid packet size received",
    Status.UNEXPECTED_IMAGE_ID: "Unexpected image ID received",
    Status.INVALID_HEADER_SIZE: "Invalid image header size received",
    Status.INVALID_DATA_SIZE: "Invalid image data size received",
    Status.INVALID_IMAGE_TYPE: "Invalid image type received",
    Status.INVALID_TX_LENGTH: "Invalid transmission length",
    Status.INVALID_RX_LENGTH: "Invalid reception length",
    Status.GENERAL_TX_RX_ERROR: "General transmission or reception error",
    Status.READ_DATA_ERROR: "Error while transmitting READ_DATA packet",
    Status.UNSUPPORTED_NUM_PHDRS: "Cannot receive specified number of program headers",
    Status.INVALID_PHDR_SIZE: "Invalid data length received for program headers",
    Status.MULTIPLE_SHARED_SEG: "Multiple shared segments found in ELF image",
    Status.UNINIT_PHDR_LOC: "Uninitialized program header location",
    Status.INVALID_DEST_ADDR: "Invalid destination address",
    Status.INVALID_IMG_HDR_DATA_SIZE: "Invalid data size received in image header",
    Status.INVALID_ELF_HDR: "Invalid ELF header received",
    Status.UNKNOWN_HOST_ERROR: "Unknown host error received in HELLO_RESP",
    Status.TIMEOUT_RX: "Timeout while receiving data",
    Status.TIMEOUT_TX: "Timeout while transmitting data",
    Status.INVALID_HOST_MODE: "Invalid mode received from host",
    Status.INVALID_MEMORY_READ: "Invalid memory read access",
    Status.INVALID_DATA_SIZE_REQUEST: "Host cannot handle read data size requested",
    Status.MEMORY_DEBUG_NOT_SUPPORTED: "Memory debug not supported",
    Status.INVALID_MODE_SWITCH: "Invalid mode switch",
    Status.CMD_EXEC_FAILURE: "Failed to execute command",
    Status.EXEC_CMD_INVALID_PARAM: "Invalid parameter passed to command execution",
    Status.EXEC_CMD_UNSUPPORTED: "Unsupported client command received",
    Status.EXEC_DATA_INVALID_CLIENT_CMD: "Invalid client command received for data response",
    Status.HASH_TABLE_AUTH_FAILURE: "Failed to authenticate hash table",
    Status.HASH_VERIFICATION_FAILURE: "Failed to verify hash for a given segment of ELF image",
    Status.HASH_TABLE_NOT_FOUND: "Failed to find hash table in ELF image",
    Status.TARGET_INIT_FAILURE: "Target failed to initialize",
    Status.IMAGE_AUTH_FAILURE: "Failed to authenticate generic image",
    Status.INVALID_IMG_HASH_TABLE_SIZE: "Invalid ELF hash table size",
}

# MSM hardware IDs as reported by GetHardwareId (OEM/model bits masked off).
_HARDWARE_IDS: Final[dict[int, str]] = {
    0x007050E1: "MSM8916",
    0x000560E1: "MSM8917",
    0x0004F0E1: "MSM8937",
    0x000460E1: "MSM8953",
    0x009470E1: "MSM8996",
    0x0005E0E1: "MSM8998",
    0x0008B0E1: "SDM845",
    0x000910E1: "SDM670",
    0x000950E1: "SM6150",
    0x000A50E1: "SM8150",
    0x000C30E1: "SM8250",
}


def status_code_to_message(status: int) -> str:
    """Resolve a device status code to a description."""
    return _STATUS_MESSAGES.get(status, f"Unknown status 0x{status:02X}")


def hardware_id_to_name(hardware_id: int) -> str:
    return _HARDWARE_IDS.get(hardware_id, "unknown")
