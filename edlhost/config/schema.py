"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

from typing import Any, Dict

from marshmallow import EXCLUDE, Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

from ..protocol import protocol
from .settings import LOG_FORMATS, RuntimeConfig


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for edlhost configuration."""

    class Meta:
        unknown = EXCLUDE

    # USB
    vendor_id = fields.Int(load_default=protocol.QUALCOMM_VENDOR_ID, validate=validate.Range(min=0, max=0xFFFF))
    product_id = fields.Int(load_default=protocol.EDL_PRODUCT_ID, validate=validate.Range(min=0, max=0xFFFF))
    transfer_timeout = fields.Float(
        load_default=protocol.DEFAULT_TRANSFER_TIMEOUT, validate=validate.Range(min=0.01)
    )
    claim_timeout = fields.Float(load_default=protocol.DEFAULT_CLAIM_TIMEOUT, validate=validate.Range(min=0.01))
    claim_interval = fields.Float(load_default=protocol.DEFAULT_CLAIM_INTERVAL, validate=validate.Range(min=0.0))
    max_transfer_size = fields.Int(
        load_default=protocol.MAX_TRANSFER_SIZE, validate=validate.Range(min=1, max=protocol.UINT32_MAX)
    )

    # Handshake
    hello_version = fields.Int(load_default=protocol.HELLO_VERSION, validate=validate.Range(min=1))
    hello_compatible = fields.Int(load_default=protocol.HELLO_COMPATIBLE, validate=validate.Range(min=1))

    # Logging
    debug_logging = fields.Bool(load_default=False)
    log_format = fields.Str(load_default="text", validate=validate.OneOf(LOG_FORMATS))

    @pre_load
    def parse_hex_identifiers(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        """Allow USB identifiers written as hex strings ("0x05c6")."""
        cleaned = dict(data)
        for key in ("vendor_id", "product_id"):
            value = cleaned.get(key)
            if isinstance(value, str):
                try:
                    cleaned[key] = int(value, 0)
                except ValueError as exc:
                    raise ValidationError(f"{key} must be an integer, got {value!r}", field_name=key) from exc
        return cleaned

    @validates_schema
    def validate_claim_window(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if data["claim_interval"] >= data["claim_timeout"]:
            raise ValidationError("claim_interval must be shorter than claim_timeout", field_name="claim_interval")

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        return RuntimeConfig(**data)
