"""Sahara request/response engine.

The device speaks first: it sends HELLO_REQUEST as soon as the interface is
claimed, and the host answers with HELLO_RESPONSE carrying the mode it
wants. Every later exchange is half-duplex, one request outstanding at a
time.

State machine::

    await_hello -> mode_negotiated -> switching_mode -> ready
    ready -> exec_request -> exec_data -> ready
    ready -> memory_reading -> ready
    {mode_negotiated, ready, fault} -> resetting -> closed
    ready -> ending -> closed
    * -> fault   (timeout, USB failure or protocol violation)

Device-reported failures (END_OF_TRANSFER) leave the session usable and are
raised as :class:`~edlhost.errors.DeviceReportedFailure` subclasses.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, TypeVar

import msgspec
from transitions import Machine, MachineError

from ..config.settings import RuntimeConfig
from ..errors import (
    CommandFailed,
    DeviceReportedFailure,
    DoneFailed,
    IncompleteRead,
    InvalidSessionState,
    MemoryReadFailed,
    ModeSwitchFailed,
    ProtocolViolation,
    ResetFailed,
    TransferTimeout,
    TransportFailure,
    UnexpectedMessage,
)
from ..protocol import protocol
from ..protocol.protocol import ExecCommand, MessageType, Mode, message_type_name
from ..protocol.structures import (
    BaseStruct,
    DoneRequest,
    DoneResponse,
    EndOfTransfer,
    Exec,
    HardwareId,
    Header,
    HelloRequest,
    HelloResponse,
    MemoryRead32,
    MemoryRead64,
    OemPkHash,
    Packet,
    ResetRequest,
    SerialNo,
)
from ..transport.usb import Transport
from ..util import chunk_ranges

logger = logging.getLogger("edlhost.engine")

S = TypeVar("S", bound=BaseStruct)


class HelloInfo(msgspec.Struct, frozen=True):
    """Fields reported by the device's HELLO_REQUEST."""

    version: int
    compatible: int
    max_len: int
    mode: int


class Capabilities(msgspec.Struct, frozen=True):
    """Commands available for the negotiated protocol version."""

    version: int
    legacy_info: bool

    @classmethod
    def from_version(cls, version: int) -> "Capabilities":
        return cls(version=version, legacy_info=version < protocol.LEGACY_INFO_VERSION_LIMIT)


class DeviceInfo(msgspec.Struct, frozen=True):
    """Result of :meth:`ProtocolEngine.info`; unsupported commands are ``None``."""

    serial: SerialNo | None = None
    hardware_id: HardwareId | None = None
    oem_pk_hash: OemPkHash | None = None

    @property
    def serial_number(self) -> str | None:
        return self.serial.text if self.serial is not None else None


class ProtocolEngine:
    """Drives the Sahara handshake and command exchanges over a Transport."""

    if TYPE_CHECKING:
        fsm_state: str
        trigger: Callable[[str], bool]

    STATE_AWAIT_HELLO = "await_hello"
    STATE_MODE_NEGOTIATED = "mode_negotiated"
    STATE_SWITCHING_MODE = "switching_mode"
    STATE_READY = "ready"
    STATE_EXEC_REQUEST = "exec_request"
    STATE_EXEC_DATA = "exec_data"
    STATE_MEMORY_READING = "memory_reading"
    STATE_RESETTING = "resetting"
    STATE_ENDING = "ending"
    STATE_CLOSED = "closed"
    STATE_FAULT = "fault"

    def __init__(
        self,
        transport: Transport,
        in_endpoint: int,
        out_endpoint: int,
        *,
        config: RuntimeConfig | None = None,
    ) -> None:
        self._transport = transport
        self._in_endpoint = in_endpoint
        self._out_endpoint = out_endpoint
        self._config = config or RuntimeConfig()
        self._logger = logger
        self._capabilities: Capabilities | None = None
        self._mode: Mode | None = None
        self._reset_origin: str | None = None

        self.state_machine = Machine(
            model=self,
            states=[
                self.STATE_AWAIT_HELLO,
                self.STATE_MODE_NEGOTIATED,
                self.STATE_SWITCHING_MODE,
                self.STATE_READY,
                self.STATE_EXEC_REQUEST,
                self.STATE_EXEC_DATA,
                self.STATE_MEMORY_READING,
                self.STATE_RESETTING,
                self.STATE_ENDING,
                self.STATE_CLOSED,
                self.STATE_FAULT,
            ],
            initial=self.STATE_AWAIT_HELLO,
            auto_transitions=False,
            after_state_change="_log_state",
            model_attribute="fsm_state",
        )

        add = self.state_machine.add_transition
        add(trigger="hello_received", source=self.STATE_AWAIT_HELLO, dest=self.STATE_MODE_NEGOTIATED)
        add(
            trigger="begin_switch",
            source=[self.STATE_MODE_NEGOTIATED, self.STATE_READY],
            dest=self.STATE_SWITCHING_MODE,
        )
        add(trigger="switch_done", source=self.STATE_SWITCHING_MODE, dest=self.STATE_READY)
        add(trigger="switch_failed", source=self.STATE_SWITCHING_MODE, dest=self.STATE_MODE_NEGOTIATED)
        add(trigger="begin_exec", source=self.STATE_READY, dest=self.STATE_EXEC_REQUEST)
        # The data phase is only reachable from an accepted request phase.
        add(trigger="exec_accepted", source=self.STATE_EXEC_REQUEST, dest=self.STATE_EXEC_DATA)
        add(trigger="exec_done", source=[self.STATE_EXEC_REQUEST, self.STATE_EXEC_DATA], dest=self.STATE_READY)
        add(trigger="begin_memory_read", source=self.STATE_READY, dest=self.STATE_MEMORY_READING)
        add(trigger="memory_read_done", source=self.STATE_MEMORY_READING, dest=self.STATE_READY)
        add(
            trigger="begin_reset",
            source=[self.STATE_MODE_NEGOTIATED, self.STATE_READY, self.STATE_FAULT],
            dest=self.STATE_RESETTING,
        )
        add(trigger="reset_done", source=self.STATE_RESETTING, dest=self.STATE_CLOSED)
        # A reset that does not complete leaves a faulted engine faulted.
        add(
            trigger="reset_aborted",
            source=self.STATE_RESETTING,
            dest=self.STATE_FAULT,
            conditions="_reset_from_fault",
        )
        add(
            trigger="reset_aborted",
            source=self.STATE_RESETTING,
            dest=self.STATE_MODE_NEGOTIATED,
            unless="_reset_from_fault",
        )
        add(trigger="begin_end", source=self.STATE_READY, dest=self.STATE_ENDING)
        add(trigger="end_done", source=self.STATE_ENDING, dest=self.STATE_CLOSED)
        add(trigger="end_aborted", source=self.STATE_ENDING, dest=self.STATE_MODE_NEGOTIATED)
        add(trigger="fail", source="*", dest=self.STATE_FAULT)

    # --- State helpers ---

    def _log_state(self) -> None:
        self._logger.debug("Engine state -> %s", self.fsm_state)

    def _reset_from_fault(self) -> bool:
        return self._reset_origin == self.STATE_FAULT

    def _fire(self, trigger: str) -> None:
        try:
            self.trigger(trigger)
        except MachineError as exc:
            raise InvalidSessionState(f"Cannot {trigger} while {self.fsm_state}") from exc

    @contextlib.contextmanager
    def _guard(self, recover: str | None = None) -> Iterator[None]:
        """Route failures inside an exchange to the matching transition.

        Device-reported failures fire ``recover``; anything that leaves the
        device in an unknown state moves the engine to ``fault``.
        """
        try:
            yield
        except DeviceReportedFailure:
            if recover is not None:
                self._fire(recover)
            raise
        except (TransferTimeout, TransportFailure, ProtocolViolation):
            self._fire("fail")
            raise

    @property
    def state(self) -> str:
        return self.fsm_state

    @property
    def mode(self) -> Mode | None:
        return self._mode

    @property
    def capabilities(self) -> Capabilities:
        if self._capabilities is None:
            raise InvalidSessionState("hello() has not completed")
        return self._capabilities

    # --- Wire helpers ---

    async def _send(self, packet: Packet) -> None:
        data = packet.encode()
        written = await self._transport.write(self._out_endpoint, data)
        if written != len(data):
            raise TransportFailure(f"Short write: {written} of {len(data)} bytes")

    async def _receive(self, max_bytes: int | None = None) -> tuple[Header, bytes]:
        data = await self._transport.read(self._in_endpoint, max_bytes or self._config.max_transfer_size)
        return Header.decode(data), data

    def _end_of_transfer_status(self, data: bytes) -> int:
        packet = EndOfTransfer.decode(data)
        self._logger.debug("END_OF_TRANSFER image=0x%X status=0x%X", packet.image, packet.status)
        return packet.status

    # --- Operations ---

    async def hello(self) -> HelloInfo:
        """Consume the device's unsolicited HELLO_REQUEST."""
        if self.fsm_state != self.STATE_AWAIT_HELLO:
            raise InvalidSessionState(f"Cannot hello while {self.fsm_state}")

        with self._guard():
            header, data = await self._receive()
            if header.message_type != MessageType.HELLO_REQUEST:
                raise UnexpectedMessage(header.message_type, MessageType.HELLO_REQUEST)
            request = HelloRequest.decode(data)

        self._capabilities = Capabilities.from_version(request.version)
        self._fire("hello_received")
        self._logger.info(
            "Device hello: version %d (compatible %d), max_len 0x%X, mode %d",
            request.version,
            request.compatible,
            request.max_len,
            request.mode,
        )
        return HelloInfo(
            version=request.version,
            compatible=request.compatible,
            max_len=request.max_len,
            mode=request.mode,
        )

    async def switch_mode(self, mode: Mode | int) -> None:
        """Answer the hello with ``mode`` and wait for READY."""
        mode = Mode(mode)
        self._fire("begin_switch")

        with self._guard(recover="switch_failed"):
            await self._send(
                HelloResponse(
                    mode=mode,
                    version=self._config.hello_version,
                    compatible=self._config.hello_compatible,
                )
            )
            header, data = await self._receive()
            if header.message_type == MessageType.END_OF_TRANSFER:
                raise ModeSwitchFailed(self._end_of_transfer_status(data))
            if header.message_type != MessageType.READY:
                raise UnexpectedMessage(header.message_type, MessageType.READY)

        self._mode = mode
        self._fire("switch_done")
        self._logger.debug("Mode switched to %s", mode.name)

    async def ensure_mode(self, mode: Mode | int) -> None:
        """Switch to ``mode`` unless the engine is already ready in it."""
        if self.fsm_state == self.STATE_READY and self._mode == mode:
            return
        await self.switch_mode(mode)

    async def exec(self, command: ExecCommand | int) -> None:
        """Run the request phase of ``command`` and, if accepted, request its data.

        Leaves the engine in ``exec_data``; the payload must be collected
        with :meth:`read_payload`.
        """
        self._fire("begin_exec")

        with self._guard(recover="exec_done"):
            await self._send(Exec(message_type=MessageType.EXECUTE_REQUEST, command=command))
            header, data = await self._receive()
            if header.message_type == MessageType.END_OF_TRANSFER:
                raise CommandFailed(command, self._end_of_transfer_status(data))
            if header.message_type != MessageType.EXECUTE_RESPONSE:
                raise UnexpectedMessage(header.message_type, MessageType.EXECUTE_RESPONSE)

            self._fire("exec_accepted")
            await self._send_exec_data(command)

    async def _send_exec_data(self, command: int) -> None:
        if self.fsm_state != self.STATE_EXEC_DATA:
            raise InvalidSessionState(f"EXECUTE_DATA not allowed while {self.fsm_state}")
        await self._send(Exec(message_type=MessageType.EXECUTE_DATA, command=command))

    async def read_payload(self, max_bytes: int | None = None) -> bytes:
        """Read the raw payload produced by the data phase of :meth:`exec`."""
        if self.fsm_state != self.STATE_EXEC_DATA:
            raise InvalidSessionState(f"No command payload pending while {self.fsm_state}")

        with self._guard():
            data = await self._transport.read(self._in_endpoint, max_bytes or self._config.max_transfer_size)

        self._fire("exec_done")
        return data

    async def execute(self, command: ExecCommand | int) -> bytes:
        """Run ``command`` through both phases and return its raw payload."""
        await self.exec(command)
        return await self.read_payload()

    async def _query(self, command: ExecCommand, payload_type: type[S]) -> S | None:
        try:
            data = await self.execute(command)
        except CommandFailed as exc:
            self._logger.warning("%s not supported by device: %s", command.name, exc)
            return None
        return payload_type.decode(data)

    async def info(self, version: int | None = None) -> DeviceInfo:
        """Collect serial number and, for old protocol versions, hardware ID and key hashes.

        ``version`` overrides the capability derived from hello().
        """
        capabilities = Capabilities.from_version(version) if version is not None else self.capabilities

        await self.ensure_mode(Mode.COMMAND)

        serial = await self._query(ExecCommand.GET_SERIAL_NUM, SerialNo)
        hardware_id: HardwareId | None = None
        oem_pk_hash: OemPkHash | None = None
        if capabilities.legacy_info:
            hardware_id = await self._query(ExecCommand.GET_HARDWARE_ID, HardwareId)
            oem_pk_hash = await self._query(ExecCommand.GET_OEM_PK_HASH, OemPkHash)
            if oem_pk_hash is not None and not oem_pk_hash.identical:
                self._logger.warning("OEM PK hash blocks differ")

        return DeviceInfo(serial=serial, hardware_id=hardware_id, oem_pk_hash=oem_pk_hash)

    async def read_mem(self, address: int, size: int = 4) -> bytes:
        """Read ``size`` bytes of device memory starting at ``address``.

        A 16 byte reply shaped like END_OF_TRANSFER is reported as a device
        failure, unless the chunk asked for is itself 16 bytes long.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        if address < 0 or address + size - 1 > 0xFFFFFFFFFFFFFFFF:
            raise ValueError(f"Address range 0x{address:X}+0x{size:X} out of range")

        await self.switch_mode(Mode.MEMORY_DEBUG)
        self._fire("begin_memory_read")

        chunks: list[bytes] = []
        with self._guard(recover="memory_read_done"):
            for chunk_address, chunk_size in chunk_ranges(address, size, self._config.max_transfer_size):
                chunks.append(await self._read_memory_chunk(chunk_address, chunk_size))

        self._fire("memory_read_done")
        return b"".join(chunks)

    async def _read_memory_chunk(self, address: int, size: int) -> bytes:
        request: Packet
        if address + size - 1 > protocol.UINT32_MAX:
            request = MemoryRead64(address=address, size=size)
        else:
            request = MemoryRead32(address=address, size=size)
        await self._send(request)

        data = await self._transport.read(self._in_endpoint, max(size, self._config.max_transfer_size))
        # A chunk of exactly the END_OF_TRANSFER size is taken as data.
        if len(data) == EndOfTransfer.wire_size() and size != len(data):
            header = Header.decode(data)
            if header.message_type == MessageType.END_OF_TRANSFER and header.length == len(data):
                raise MemoryReadFailed(self._end_of_transfer_status(data))
        if len(data) != size:
            raise IncompleteRead(size, len(data))
        return data

    async def reset(self) -> bool:
        """Ask the device to reset; returns ``False`` on an unrecognised reply."""
        origin = self.fsm_state
        self._fire("begin_reset")
        self._reset_origin = origin

        with self._guard(recover="reset_aborted"):
            await self._send(ResetRequest())
            header, data = await self._receive()
            if header.message_type == MessageType.END_OF_TRANSFER:
                raise ResetFailed(self._end_of_transfer_status(data))

        if header.message_type == MessageType.RESET_RESPONSE:
            self._fire("reset_done")
            self._logger.info("Device reset acknowledged")
            return True

        self._logger.warning("Unexpected reply to reset: %s", message_type_name(header.message_type))
        self._fire("reset_aborted")
        return False

    async def end(self) -> DoneResponse | None:
        """Switch to image transfer mode and close the session with DONE."""
        await self.switch_mode(Mode.IMAGE_TX_PENDING)
        self._fire("begin_end")

        response: DoneResponse | None = None
        with self._guard(recover="end_aborted"):
            await self._send(DoneRequest())
            header, data = await self._receive()
            if header.message_type == MessageType.END_OF_TRANSFER:
                raise DoneFailed(self._end_of_transfer_status(data))
            if header.message_type == MessageType.DONE_RESPONSE:
                response = DoneResponse.decode(data)

        if response is None:
            self._logger.warning("Unexpected reply to done: %s", message_type_name(header.message_type))
            self._fire("end_aborted")
            return None

        self._fire("end_done")
        self._logger.info("Session done (status 0x%X)", response.status)
        return response
