"""Exception hierarchy for EDL sessions.

Every failure is raised to the caller; only the CLI decides whether an
error terminates the process.
"""

from __future__ import annotations

from .protocol.protocol import message_type_name
from .protocol.status import status_code_to_message


class EdlError(Exception):
    """Base class for all edlhost errors."""


class TransferTimeout(EdlError, TimeoutError):
    """No bulk transfer completed within the configured window."""


class TransportFailure(EdlError):
    """The USB stack reported an I/O error during a bulk transfer."""


class DeviceNotFound(EdlError):
    """No attached device matches the configured vendor/product."""


class EndpointNotFound(EdlError):
    """The selected interface lacks a bulk IN or bulk OUT endpoint."""


class ClaimInterfaceTimeout(EdlError):
    """The interface could not be claimed before the retry deadline."""


class InvalidSessionState(EdlError):
    """Operation is not allowed in the engine's current state."""


class ProtocolViolation(EdlError):
    """The device sent something that is invalid for the current state."""


class MalformedPacket(ProtocolViolation):
    """A packet failed to decode or its length field was wrong."""


class UnexpectedMessage(ProtocolViolation):
    def __init__(self, actual: int, expected: int | None = None) -> None:
        self.actual = actual
        self.expected = expected
        if expected is None:
            text = f"Unexpected message {message_type_name(actual)}"
        else:
            text = f"Expected {message_type_name(expected)}, got {message_type_name(actual)}"
        super().__init__(text)


class IncompleteRead(ProtocolViolation):
    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Incomplete read: expected {expected} bytes, got {actual}")


class DeviceReportedFailure(EdlError):
    """The device answered with END_OF_TRANSFER carrying a status code."""

    operation = "operation"

    def __init__(self, status: int, message: str | None = None) -> None:
        self.status = status
        self.message = message if message is not None else status_code_to_message(status)
        super().__init__(f"{self.operation} failed: status 0x{status:02X} ({self.message})")


class ModeSwitchFailed(DeviceReportedFailure):
    operation = "Mode switch"


class CommandFailed(DeviceReportedFailure):
    operation = "Command"

    def __init__(self, command: int, status: int, message: str | None = None) -> None:
        self.command = command
        super().__init__(status, message)


class MemoryReadFailed(DeviceReportedFailure):
    operation = "Memory read"


class ResetFailed(DeviceReportedFailure):
    operation = "Reset"


class DoneFailed(DeviceReportedFailure):
    operation = "Done"
