"""Protocol services for edlhost."""

from .engine import Capabilities, DeviceInfo, HelloInfo, ProtocolEngine

__all__ = ["Capabilities", "DeviceInfo", "HelloInfo", "ProtocolEngine"]
