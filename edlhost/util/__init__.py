"""General-purpose utilities for edlhost."""

from __future__ import annotations

import logging

__all__ = [
    "chunk_ranges",
    "format_hexdump",
    "log_hexdump",
]


def chunk_ranges(start: int, size: int, chunk_size: int) -> list[tuple[int, int]]:
    """Split ``size`` bytes starting at ``start`` into (address, length) chunks."""
    if size <= 0:
        return []
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [(start + offset, min(chunk_size, size - offset)) for offset in range(0, size, chunk_size)]


def log_hexdump(logger_instance: logging.Logger, level: int, label: str, data: bytes) -> None:
    """Log binary data in hexadecimal format.

    Format: [HEXDUMP] %s: %s
    """
    if not logger_instance.isEnabledFor(level):
        return

    hex_str = data.hex(" ").upper()
    logger_instance.log(level, "[HEXDUMP] %s: %s", label, hex_str)


def format_hexdump(data: bytes, prefix: str = "") -> str:
    if not data:
        return f"{prefix}<empty>"
    lines: list[str] = []
    for offset in range(0, len(data), 16):
        chunk = data[offset: offset + 16]
        hex_parts = [" ".join(f"{b:02X}" for b in chunk[i: i + 4]) for i in range(0, 16, 4)]
        hex_str = "  ".join(hex_parts).ljust(47)
        ascii_str = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        lines.append(f"{prefix}{offset:04X}  {hex_str}  |{ascii_str}|")
    return "\n".join(lines)
