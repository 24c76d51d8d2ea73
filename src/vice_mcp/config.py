"""
Shared configuration for the VICE MCP server.
Connection defaults and protocol selection used by both MCP and HTTP servers.
"""

import logging
import os

# Binary monitor endpoint
VICE_HOST = os.environ.get("VICE_HOST", "127.0.0.1")
VICE_PORT = int(os.environ.get("VICE_PORT", "6502"))

# Binary monitor API version: 1 (legacy layout) or 2 (VICE 3.5+)
VICE_API_VERSION = int(os.environ.get("VICE_API_VERSION", "2"))

# Timeouts in seconds
CONNECT_TIMEOUT = float(os.environ.get("VICE_CONNECT_TIMEOUT", "5.0"))
RESPONSE_TIMEOUT = float(os.environ.get("VICE_RESPONSE_TIMEOUT", "10.0"))

# HTTP API server
HTTP_HOST = os.environ.get("VICE_HTTP_HOST", "127.0.0.1")
HTTP_PORT = int(os.environ.get("VICE_HTTP_PORT", "8080"))

LOG_LEVEL = os.environ.get("VICE_MCP_LOG_LEVEL", "WARNING").upper()
LOG_FORMAT = "[%(name)s] %(levelname)s %(message)s"

# C64 memory
ADDRESS_MAX = 0xFFFF
MEMORY_SIZE = 0x10000


def get_connection_info() -> dict:
    """Return connection and protocol settings as a dictionary."""
    return {
        "vice_host": VICE_HOST,
        "vice_port": VICE_PORT,
        "api_version": VICE_API_VERSION,
        "connect_timeout": CONNECT_TIMEOUT,
        "response_timeout": RESPONSE_TIMEOUT,
        "http_host": HTTP_HOST,
        "http_port": HTTP_PORT,
        "log_level": LOG_LEVEL,
    }


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Send log records to stderr; stdout is reserved for the MCP stream."""
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format=LOG_FORMAT)
