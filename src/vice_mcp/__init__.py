"""VICE MCP Server - Debug the VICE C64 emulator through its binary monitor."""

__version__ = "1.0.1"

from .client import ViceClient
from .connection import ViceConnection
from .errors import (
    ViceError,
    ValidationError,
    ConnectionError,
    CommandError,
    ProtocolError,
)
from .protocol import get_profile

__all__ = [
    "ViceClient",
    "ViceConnection",
    "ViceError",
    "ValidationError",
    "ConnectionError",
    "CommandError",
    "ProtocolError",
    "get_profile",
]
