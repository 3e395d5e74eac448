#!/usr/bin/env python3
"""Command line front end for edlhost.

Connects to the first EDL device, consumes its hello and runs one
operation. Any :class:`~edlhost.errors.EdlError` ends the process with
status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import uvloop

from . import __version__
from .config.logging import configure_logging
from .config.settings import RuntimeConfig, load_runtime_config
from .errors import EdlError
from .protocol.protocol import ExecCommand, Mode
from .protocol.status import hardware_id_to_name
from .protocol.structures import CommandIdList, SblVersion
from .services.engine import DeviceInfo, ProtocolEngine
from .transport.usb import Session
from .util import format_hexdump

logger = logging.getLogger("edlhost")


def _int_auto(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc


def _address(value: str) -> int:
    address = _int_auto(value)
    if not 0 <= address <= 0xFFFFFFFFFFFFFFFF:
        raise argparse.ArgumentTypeError(f"address out of range: {value!r}")
    return address


def _positive_int(value: str) -> int:
    number = _int_auto(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edlhost",
        description="Talk to a Qualcomm device in emergency download mode.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML configuration file (default: ~/.config/edlhost/config.toml).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines.")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    info = subparsers.add_parser("info", help="Print serial number, hardware ID and OEM key hashes.")
    info.add_argument(
        "--protocol-version",
        type=int,
        help="Override the protocol version used to pick the info commands.",
    )

    peek = subparsers.add_parser("peek", help="Read device memory.")
    peek.add_argument("address", type=_address, help="Start address (decimal or 0x-prefixed).")
    peek.add_argument("--size", type=_positive_int, default=4, help="Number of bytes (default: %(default)s).")

    subparsers.add_parser("commands", help="List the command IDs supported by the device.")
    subparsers.add_parser("sbl-version", help="Print the SBL version.")
    subparsers.add_parser("reset", help="Reset the device.")
    subparsers.add_parser("done", help="End the session with a DONE request.")
    parser.set_defaults(command="info", protocol_version=None)
    return parser


def format_device_info(info: DeviceInfo) -> list[str]:
    lines = [f"Serial number: {info.serial_number or 'unavailable'}"]
    if info.hardware_id is not None:
        hw = info.hardware_id
        lines.append(
            f"Hardware ID:   0x{hw.id:08X} ({hardware_id_to_name(hw.id)}), "
            f"OEM 0x{hw.oem:04X}, model 0x{hw.model:04X}"
        )
    if info.oem_pk_hash is not None:
        pk_hash = info.oem_pk_hash
        if pk_hash.identical:
            lines.append(f"OEM PK hash:   {pk_hash.hash1.hex()}")
        else:
            for index, block in enumerate(pk_hash.blocks, start=1):
                lines.append(f"OEM PK hash {index}: {block.hex()}")
    return lines


async def run_command(args: argparse.Namespace, config: RuntimeConfig) -> int:
    session = Session(config)
    handle = await session.connect()
    try:
        engine = ProtocolEngine(
            session.transport(handle),
            handle.in_endpoint,
            handle.out_endpoint,
            config=config,
        )
        hello = await engine.hello()
        print(f"Sahara version {hello.version} (compatible {hello.compatible}), mode {hello.mode}")

        match args.command:
            case "info":
                for line in format_device_info(await engine.info(args.protocol_version)):
                    print(line)
            case "peek":
                data = await engine.read_mem(args.address, args.size)
                print(format_hexdump(data, prefix=f"{args.address:08X}+"))
            case "commands":
                await engine.ensure_mode(Mode.COMMAND)
                payload = CommandIdList.decode(await engine.execute(ExecCommand.GET_COMMAND_ID_LIST))
                for command_id in payload.commands:
                    try:
                        name = ExecCommand(command_id).name
                    except ValueError:
                        name = "unknown"
                    print(f"0x{command_id:02X} {name}")
            case "sbl-version":
                await engine.ensure_mode(Mode.COMMAND)
                payload = SblVersion.decode(await engine.execute(ExecCommand.GET_SBL_VERSION))
                print(f"SBL version: 0x{payload.version:08X}")
            case "reset":
                if not await engine.reset():
                    return 1
                print("Device reset")
            case "done":
                response = await engine.end()
                if response is None:
                    return 1
                print(f"Done, status 0x{response.status:X}")
            case _:
                raise ValueError(f"unknown command {args.command!r}")
    finally:
        handle.close()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = load_runtime_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))
    if args.debug:
        config.debug_logging = True
    if args.json_logs:
        config.log_format = "json"
    configure_logging(config)

    try:
        return asyncio.run(run_command(args, config), loop_factory=uvloop.new_event_loop)
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 130
    except EdlError as exc:
        logger.critical("%s: %s", type(exc).__name__, exc, exc_info=config.debug_logging)
        return 1


if __name__ == "__main__":
    sys.exit(main())
