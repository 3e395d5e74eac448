"""Settings loader for edlhost.

Configuration comes from an optional TOML file with sane defaults when no
file is given. Values are validated by :mod:`edlhost.config.schema` before
the typed :class:`RuntimeConfig` is built.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from marshmallow import ValidationError

from ..protocol import protocol

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/edlhost/config.toml")
LOG_FORMATS = ("text", "json")


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for an EDL session."""

    vendor_id: int = protocol.QUALCOMM_VENDOR_ID
    product_id: int = protocol.EDL_PRODUCT_ID
    transfer_timeout: float = protocol.DEFAULT_TRANSFER_TIMEOUT
    claim_timeout: float = protocol.DEFAULT_CLAIM_TIMEOUT
    claim_interval: float = protocol.DEFAULT_CLAIM_INTERVAL
    max_transfer_size: int = protocol.MAX_TRANSFER_SIZE
    hello_version: int = protocol.HELLO_VERSION
    hello_compatible: int = protocol.HELLO_COMPATIBLE
    debug_logging: bool = False
    log_format: str = "text"

    def __post_init__(self) -> None:
        for name in ("vendor_id", "product_id"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFF:
                raise ValueError(f"{name} must be a 16-bit USB identifier")
        for name in ("transfer_timeout", "claim_timeout"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be a positive number")
        if self.claim_interval < 0.0:
            raise ValueError("claim_interval must not be negative")
        if self.claim_interval >= self.claim_timeout:
            raise ValueError("claim_interval must be shorter than claim_timeout")
        if self.max_transfer_size <= 0:
            raise ValueError("max_transfer_size must be a positive integer")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")

    @property
    def transfer_timeout_ms(self) -> int:
        return int(round(self.transfer_timeout * 1000.0))


def _read_config_file(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        document = tomllib.load(handle)
    # Accept either a flat file or an [edlhost] table.
    section = document.get("edlhost", document)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: [edlhost] must be a table")
    return section


def load_runtime_config(path: str | Path | None = None) -> RuntimeConfig:
    """Load configuration from ``path`` (or the default location) and validate it."""
    from .schema import RuntimeConfigSchema

    explicit = path is not None
    candidate = Path(path if path is not None else DEFAULT_CONFIG_PATH).expanduser()

    raw: dict[str, Any] = {}
    if candidate.is_file():
        try:
            raw = _read_config_file(candidate)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"Invalid TOML in {candidate}: {exc}") from exc
        logger.debug("Loaded configuration from %s", candidate)
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {candidate}")

    try:
        return RuntimeConfigSchema().load(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc.messages}") from exc
