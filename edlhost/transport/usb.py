"""USB bulk transport and session setup for EDL devices.

Every transfer is a single in-flight pyusb call run in a worker thread and
raced against ``asyncio.wait_for``; pyusb receives the same timeout so the
worker ends shortly after the race is lost. No retries happen here except
for claiming the interface.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import tenacity
import usb.core
import usb.util

from ..config.settings import RuntimeConfig
from ..errors import (
    ClaimInterfaceTimeout,
    DeviceNotFound,
    EndpointNotFound,
    TransferTimeout,
    TransportFailure,
)
from ..protocol import protocol
from ..util import log_hexdump

logger = logging.getLogger("edlhost.transport")

_SPEED_PACKET_SIZES: dict[int, int] = {
    usb.util.SPEED_LOW: 64,
    usb.util.SPEED_FULL: 64,
    usb.util.SPEED_HIGH: 512,
    usb.util.SPEED_SUPER: 1024,
}


class BulkDevice(Protocol):
    """The subset of :class:`usb.core.Device` used for bulk transfers."""

    def read(self, endpoint: int, size_or_buffer: int, timeout: int | None = None) -> Any: ...

    def write(self, endpoint: int, data: bytes, timeout: int | None = None) -> int: ...


class Transport:
    """Bounded single bulk transfers against one device."""

    def __init__(self, device: BulkDevice, *, timeout: float = protocol.DEFAULT_TRANSFER_TIMEOUT) -> None:
        self._device = device
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def _timeout_ms(self) -> int:
        return int(round(self._timeout * 1000.0))

    async def read(self, endpoint: int, max_bytes: int = protocol.MAX_TRANSFER_SIZE) -> bytes:
        """Issue one bulk-IN transfer and return the bytes received."""
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._device.read, endpoint, max_bytes, self._timeout_ms),
                timeout=self._timeout,
            )
        except (TimeoutError, usb.core.USBTimeoutError) as exc:
            raise TransferTimeout(
                f"Bulk IN 0x{endpoint:02X} timed out after {self._timeout:.2f}s"
            ) from exc
        except usb.core.USBError as exc:
            raise TransportFailure(f"Bulk IN 0x{endpoint:02X} failed: {exc}") from exc

        data = bytes(raw)
        log_hexdump(logger, logging.DEBUG, f"IN 0x{endpoint:02X}", data)
        return data

    async def write(self, endpoint: int, data: bytes) -> int:
        """Issue one bulk-OUT transfer and return the number of bytes sent."""
        log_hexdump(logger, logging.DEBUG, f"OUT 0x{endpoint:02X}", data)
        try:
            written = await asyncio.wait_for(
                asyncio.to_thread(self._device.write, endpoint, data, self._timeout_ms),
                timeout=self._timeout,
            )
        except (TimeoutError, usb.core.USBTimeoutError) as exc:
            raise TransferTimeout(
                f"Bulk OUT 0x{endpoint:02X} timed out after {self._timeout:.2f}s"
            ) from exc
        except usb.core.USBError as exc:
            raise TransportFailure(f"Bulk OUT 0x{endpoint:02X} failed: {exc}") from exc
        return int(written)


@dataclass(slots=True)
class SessionHandle:
    """A claimed EDL interface and its bulk endpoint addresses."""

    device: Any
    interface_number: int
    in_endpoint: int
    out_endpoint: int

    def close(self) -> None:
        try:
            usb.util.release_interface(self.device, self.interface_number)
        except usb.core.USBError as exc:
            logger.warning("Releasing interface %d failed: %s", self.interface_number, exc)
        usb.util.dispose_resources(self.device)


def _log_claim_retry(retry_state: tenacity.RetryCallState) -> None:
    if retry_state.attempt_number == 1 and retry_state.outcome is not None:
        logger.debug("Claiming interface failed (%s); retrying", retry_state.outcome.exception())


def _is_bulk(endpoint: Any, direction: int) -> bool:
    return (
        usb.util.endpoint_direction(endpoint.bEndpointAddress) == direction
        and usb.util.endpoint_type(endpoint.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
    )


class Session:
    """Finds the EDL device and claims its interface."""

    def __init__(self, config: RuntimeConfig) -> None:
        self._config = config

    def _find_device(self) -> Any:
        config = self._config
        try:
            devices = usb.core.find(find_all=True, idVendor=config.vendor_id, idProduct=config.product_id)
            device = next(iter(devices), None)
        except usb.core.NoBackendError as exc:
            raise TransportFailure(f"No libusb backend available: {exc}") from exc
        if device is None:
            raise DeviceNotFound(
                f"No device {config.vendor_id:04x}:{config.product_id:04x} found; "
                "is it connected and in download mode?"
            )
        return device

    @staticmethod
    def _describe(device: Any) -> None:
        try:
            manufacturer = device.manufacturer or "[no manufacturer]"
            product = device.product or "[no product]"
        except (usb.core.USBError, ValueError):
            manufacturer, product = "[no manufacturer]", "[no product]"
        logger.info("Found %s %s", manufacturer, product)

        speed = getattr(device, "speed", None)
        packet_size = _SPEED_PACKET_SIZES.get(speed) if speed is not None else None
        logger.debug("speed %s - max packet size: %s", speed, packet_size)

    @staticmethod
    def _prepare(device: Any, interface_number: int) -> None:
        try:
            if device.is_kernel_driver_active(interface_number):
                device.detach_kernel_driver(interface_number)
        except NotImplementedError:
            pass
        except usb.core.USBError as exc:
            logger.warning("Could not detach kernel driver: %s", exc)

        try:
            device.get_active_configuration()
        except usb.core.USBError:
            device.set_configuration()

    @staticmethod
    def _select_interface(device: Any) -> tuple[int, int, int]:
        configuration = device[0]
        setting = next(iter(configuration), None)
        if setting is None:
            raise EndpointNotFound("First configuration has no interfaces")
        interface_number = setting.bInterfaceNumber

        if (
            setting.bInterfaceClass != 0xFF
            or setting.bInterfaceSubClass != 0xFF
            or setting.bInterfaceProtocol not in protocol.EDL_INTERFACE_PROTOCOLS
        ):
            logger.debug(
                "Interface %d has class %02x/%02x/%02x; using it anyway",
                interface_number,
                setting.bInterfaceClass,
                setting.bInterfaceSubClass,
                setting.bInterfaceProtocol,
            )

        endpoint_out = usb.util.find_descriptor(
            setting, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_OUT)
        )
        endpoint_in = usb.util.find_descriptor(
            setting, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_IN)
        )
        if endpoint_out is None or endpoint_in is None:
            raise EndpointNotFound(f"Interface {interface_number} lacks a bulk IN/OUT endpoint pair")

        return interface_number, endpoint_in.bEndpointAddress, endpoint_out.bEndpointAddress

    async def claim(self, device: Any, interface_number: int) -> None:
        """Claim the interface, retrying until the claim deadline expires."""
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_delay(self._config.claim_timeout),
            wait=tenacity.wait_fixed(self._config.claim_interval),
            retry=tenacity.retry_if_exception_type(usb.core.USBError),
            before_sleep=_log_claim_retry,
            reraise=False,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    usb.util.claim_interface(device, interface_number)
        except tenacity.RetryError as exc:
            raise ClaimInterfaceTimeout(
                f"Could not claim interface {interface_number} within {self._config.claim_timeout:.2f}s"
            ) from exc.last_attempt.exception()

    async def connect(self) -> SessionHandle:
        device = self._find_device()
        self._describe(device)

        interface_number, in_endpoint, out_endpoint = self._select_interface(device)
        self._prepare(device, interface_number)
        await self.claim(device, interface_number)

        logger.debug(
            "Claimed interface %d (IN 0x%02X, OUT 0x%02X)", interface_number, in_endpoint, out_endpoint
        )
        return SessionHandle(
            device=device,
            interface_number=interface_number,
            in_endpoint=in_endpoint,
            out_endpoint=out_endpoint,
        )

    def transport(self, handle: SessionHandle) -> Transport:
        return Transport(handle.device, timeout=self._config.transfer_timeout)
