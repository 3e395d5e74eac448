"""USB transport layer for edlhost."""

from .usb import BulkDevice, Session, SessionHandle, Transport

__all__ = ["BulkDevice", "Session", "SessionHandle", "Transport"]
