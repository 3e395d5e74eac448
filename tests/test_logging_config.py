"""Tests for the logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from edlhost.config import logging as log_mod
from edlhost.config.settings import RuntimeConfig


def test_structured_formatter_trims_prefix_and_hexes_bytes() -> None:
    record = logging.LogRecord(
        name="edlhost.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="reply %s",
        args=("READY",),
        exc_info=None,
    )
    record.packet = b"\x0b\x00\x00\x00"  # type: ignore
    record.endpoint = 0x81  # type: ignore

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["logger"] == "engine"
    assert payload["level"] == "INFO"
    assert payload["message"] == "reply READY"
    assert payload["ts"].endswith("Z")
    assert payload["extra"] == {"packet": "[0B 00 00 00]", "endpoint": 0x81}


def test_structured_formatter_includes_exception() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        exc_info = sys.exc_info()
    record = logging.LogRecord("other", logging.ERROR, __file__, 1, "failed", (), exc_info)

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["logger"] == "other"
    assert "RuntimeError: boom" in payload["exception"]


def test_configure_logging_selects_formatter_and_level() -> None:
    with patch("edlhost.config.logging.dictConfig") as mock_dict_config:
        log_mod.configure_logging(RuntimeConfig(debug_logging=True, log_format="json"))

    config_arg = mock_dict_config.call_args[0][0]
    assert config_arg["handlers"]["edlhost"]["formatter"] == "structured"
    assert config_arg["root"]["level"] == "DEBUG"


def test_configure_logging_quiets_state_machine_library() -> None:
    with patch("edlhost.config.logging.dictConfig") as mock_dict_config:
        log_mod.configure_logging(RuntimeConfig())

    config_arg = mock_dict_config.call_args[0][0]
    assert config_arg["loggers"]["transitions"]["level"] == "WARNING"


def test_configure_logging_text_default() -> None:
    log_mod.configure_logging(RuntimeConfig())

    root = logging.getLogger()
    assert root.level == logging.INFO
    assert any(isinstance(handler, logging.StreamHandler) for handler in root.handlers)
