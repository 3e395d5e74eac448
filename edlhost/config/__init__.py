"""Configuration helpers for edlhost."""

from . import logging, settings  # noqa: F401  # pyright: ignore[reportUnusedImport]
from .settings import RuntimeConfig, load_runtime_config

__all__ = ["RuntimeConfig", "load_runtime_config", "logging", "settings"]
