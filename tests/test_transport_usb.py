"""Tests for the pyusb transport and session setup."""

from __future__ import annotations

import array
import time
from unittest.mock import MagicMock

import pytest
import usb.core
import usb.util

from edlhost.config.settings import RuntimeConfig
from edlhost.errors import (
    ClaimInterfaceTimeout,
    DeviceNotFound,
    EndpointNotFound,
    TransferTimeout,
    TransportFailure,
)
from edlhost.transport.usb import Session, SessionHandle, Transport
from mocks import FakeEndpoint, FakeInterface, FakeUsbDevice


@pytest.mark.asyncio
async def test_read_returns_received_bytes_only() -> None:
    device = MagicMock()
    device.read.return_value = array.array("B", b"\x0b\x00\x00\x00\x08\x00\x00\x00")
    transport = Transport(device, timeout=5.0)

    data = await transport.read(0x81)

    assert data == b"\x0b\x00\x00\x00\x08\x00\x00\x00"
    device.read.assert_called_once_with(0x81, 0x400, 5000)


@pytest.mark.asyncio
async def test_write_returns_byte_count() -> None:
    device = MagicMock()
    device.write.return_value = 12
    transport = Transport(device, timeout=0.5)

    assert await transport.write(0x01, bytes(12)) == 12
    device.write.assert_called_once_with(0x01, bytes(12), 500)


@pytest.mark.asyncio
async def test_usb_timeout_maps_to_transfer_timeout() -> None:
    device = MagicMock()
    device.read.side_effect = usb.core.USBTimeoutError("Operation timed out")
    transport = Transport(device, timeout=0.1)

    with pytest.raises(TransferTimeout) as excinfo:
        await transport.read(0x81)
    assert isinstance(excinfo.value, TimeoutError)


@pytest.mark.asyncio
async def test_stalled_read_is_bounded_by_timer() -> None:
    def _stall(endpoint: int, size: int, timeout: int) -> bytes:
        time.sleep(0.3)
        return b""

    device = MagicMock()
    device.read.side_effect = _stall
    transport = Transport(device, timeout=0.05)

    started = time.monotonic()
    with pytest.raises(TransferTimeout):
        await transport.read(0x81)
    assert time.monotonic() - started < 0.25


@pytest.mark.asyncio
async def test_usb_error_maps_to_transport_failure() -> None:
    device = MagicMock()
    error = usb.core.USBError("Pipe error", errno=32)
    device.write.side_effect = error
    transport = Transport(device, timeout=0.1)

    with pytest.raises(TransportFailure) as excinfo:
        await transport.write(0x01, b"\x00")
    assert excinfo.value.__cause__ is error


def test_find_device_reports_missing_device(
    monkeypatch: pytest.MonkeyPatch, runtime_config: RuntimeConfig
) -> None:
    monkeypatch.setattr(usb.core, "find", lambda **kwargs: iter(()))

    with pytest.raises(DeviceNotFound, match="05c6:9008"):
        Session(runtime_config)._find_device()


def test_find_device_without_backend(monkeypatch: pytest.MonkeyPatch, runtime_config: RuntimeConfig) -> None:
    def _no_backend(**kwargs):
        raise usb.core.NoBackendError("No backend available")

    monkeypatch.setattr(usb.core, "find", _no_backend)

    with pytest.raises(TransportFailure, match="backend"):
        Session(runtime_config)._find_device()


def test_select_interface_picks_bulk_endpoints() -> None:
    setting = FakeInterface(
        [FakeEndpoint(0x83, bmAttributes=0x03), FakeEndpoint(0x02), FakeEndpoint(0x85)],
        number=1,
        interface_protocol=0x10,
    )

    assert Session._select_interface(FakeUsbDevice(interfaces=[setting])) == (1, 0x85, 0x02)


def test_select_interface_accepts_non_edl_class(caplog: pytest.LogCaptureFixture) -> None:
    setting = FakeInterface([FakeEndpoint(0x01), FakeEndpoint(0x81)], interface_class=0x0A)

    with caplog.at_level("DEBUG", logger="edlhost.transport"):
        assert Session._select_interface(FakeUsbDevice(interfaces=[setting])) == (0, 0x81, 0x01)
    assert "using it anyway" in caplog.text


def test_select_interface_requires_both_directions() -> None:
    setting = FakeInterface([FakeEndpoint(0x81)])

    with pytest.raises(EndpointNotFound):
        Session._select_interface(FakeUsbDevice(interfaces=[setting]))
    with pytest.raises(EndpointNotFound):
        Session._select_interface(FakeUsbDevice(interfaces=[]))


def test_prepare_detaches_driver_and_configures() -> None:
    device = FakeUsbDevice(kernel_driver_active=True, configured=False)

    Session._prepare(device, 0)

    assert device.detached == [0]
    assert device.set_configuration_calls == 1


@pytest.mark.asyncio
async def test_claim_retries_until_success(monkeypatch: pytest.MonkeyPatch, runtime_config: RuntimeConfig) -> None:
    claim = MagicMock(side_effect=[usb.core.USBError("Resource busy"), usb.core.USBError("Resource busy"), None])
    monkeypatch.setattr(usb.util, "claim_interface", claim)

    await Session(runtime_config).claim(object(), 0)

    assert claim.call_count == 3


@pytest.mark.asyncio
async def test_claim_timeout_is_raised_once(monkeypatch: pytest.MonkeyPatch, runtime_config: RuntimeConfig) -> None:
    busy = usb.core.USBError("Resource busy", errno=16)
    claim = MagicMock(side_effect=busy)
    monkeypatch.setattr(usb.util, "claim_interface", claim)

    started = time.monotonic()
    with pytest.raises(ClaimInterfaceTimeout) as excinfo:
        await Session(runtime_config).claim(object(), 0)

    assert time.monotonic() - started >= runtime_config.claim_timeout
    assert claim.call_count > 1
    assert excinfo.value.__cause__ is busy


@pytest.mark.asyncio
async def test_connect_returns_claimed_handle(monkeypatch: pytest.MonkeyPatch, runtime_config: RuntimeConfig) -> None:
    device = FakeUsbDevice()
    monkeypatch.setattr(usb.core, "find", lambda **kwargs: iter([device]))
    claim = MagicMock()
    monkeypatch.setattr(usb.util, "claim_interface", claim)
    session = Session(runtime_config)

    handle = await session.connect()

    assert (handle.interface_number, handle.in_endpoint, handle.out_endpoint) == (0, 0x81, 0x01)
    claim.assert_called_once_with(device, 0)
    assert session.transport(handle).timeout == runtime_config.transfer_timeout


def test_session_handle_close_releases_interface(monkeypatch: pytest.MonkeyPatch) -> None:
    release = MagicMock(side_effect=usb.core.USBError("No such device"))
    dispose = MagicMock()
    monkeypatch.setattr(usb.util, "release_interface", release)
    monkeypatch.setattr(usb.util, "dispose_resources", dispose)
    device = FakeUsbDevice()

    SessionHandle(device=device, interface_number=0, in_endpoint=0x81, out_endpoint=0x01).close()

    release.assert_called_once_with(device, 0)
    dispose.assert_called_once_with(device)
