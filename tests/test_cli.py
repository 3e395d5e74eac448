"""Tests for the edlhost command line front end."""

from __future__ import annotations

import struct
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from edlhost import cli
from edlhost.errors import DeviceNotFound
from edlhost.protocol.protocol import ExecCommand, MessageType
from edlhost.protocol.structures import OemPkHash
from edlhost.services.engine import DeviceInfo
from mocks import FakeTransport, execute_response, header_only, hello_request, ready


class _FakeSession:
    def __init__(self, replies: list[bytes], error: Exception | None = None) -> None:
        self.transport_ = FakeTransport(replies)
        self.handle = MagicMock(in_endpoint=0x81, out_endpoint=0x01)
        self.error = error

    def __call__(self, config) -> "_FakeSession":
        self.config = config
        return self

    async def connect(self):
        if self.error is not None:
            raise self.error
        return self.handle

    def transport(self, handle):
        return self.transport_


def _install(monkeypatch: pytest.MonkeyPatch, *replies: bytes, error: Exception | None = None) -> _FakeSession:
    session = _FakeSession(list(replies), error)
    monkeypatch.setattr(cli, "Session", session)
    return session


def test_parser_defaults_to_info() -> None:
    args = cli.build_arg_parser().parse_args([])

    assert args.command == "info"
    assert args.protocol_version is None


def test_parser_accepts_hex_addresses() -> None:
    args = cli.build_arg_parser().parse_args(["peek", "0x1000", "--size", "0x20"])

    assert (args.command, args.address, args.size) == ("peek", 0x1000, 0x20)


@pytest.mark.parametrize(
    "argv",
    [
        ["peek", "0x1000", "--size", "0"],
        ["peek", "0x1000", "--size", "-4"],
        ["peek", "-16"],
        ["peek", "0x10000000000000000"],
    ],
)
def test_peek_rejects_invalid_ranges_as_usage_errors(argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)

    assert excinfo.value.code == 2
    assert "peek" in capsys.readouterr().err


def test_info_prints_serial_number(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    serial = bytes.fromhex("0badcafe12345678")
    session = _install(
        monkeypatch,
        hello_request(version=3),
        ready(),
        execute_response(ExecCommand.GET_SERIAL_NUM, len(serial)),
        serial,
    )

    assert cli.main(["info"]) == 0

    out = capsys.readouterr().out
    assert "Sahara version 3" in out
    assert "Serial number: 0BADCAFE12345678" in out
    session.handle.close.assert_called_once_with()


def test_peek_prints_hexdump(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    _install(monkeypatch, hello_request(), ready(), b"\xde\xad\xbe\xef")

    assert cli.main(["peek", "0x100"]) == 0

    assert "00000100+0000  DE AD BE EF" in capsys.readouterr().out


def test_commands_lists_known_names(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    payload = struct.pack("<3I", 0x01, 0x08, 0x42)
    _install(
        monkeypatch,
        hello_request(),
        ready(),
        execute_response(ExecCommand.GET_COMMAND_ID_LIST, len(payload)),
        payload,
    )

    assert cli.main(["commands"]) == 0

    out = capsys.readouterr().out
    assert "0x01 GET_SERIAL_NUM" in out
    assert "0x08 GET_COMMAND_ID_LIST" in out
    assert "0x42 unknown" in out


def test_reset_without_acknowledgement_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, hello_request(), header_only(MessageType.READY))

    assert cli.main(["reset"]) == 1


def test_edl_errors_exit_with_status_one(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, error=DeviceNotFound("No device 05c6:9008 found"))

    assert cli.main(["--debug", "info"]) == 1


def test_missing_config_file_is_a_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(tmp_path / "absent.toml"), "info"])
    assert excinfo.value.code == 2


def test_format_device_info_lists_differing_hash_blocks() -> None:
    pk_hash = OemPkHash(hash1=bytes(32), hash2=b"\x01" * 32, hash3=bytes(32))

    lines = cli.format_device_info(DeviceInfo(oem_pk_hash=pk_hash))

    assert lines[0] == "Serial number: unavailable"
    assert lines[2] == "OEM PK hash 2: " + "01" * 32
