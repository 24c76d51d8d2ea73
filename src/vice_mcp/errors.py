"""
Classified errors raised by the VICE client.

Every failure surfaces as a ViceError carrying a stable code, a message and
a remediation hint, so callers never see raw transport exceptions.
"""

from typing import Any, Optional


class ViceError(Exception):
    """Base exception for VICE client errors."""

    def __init__(self, code: str, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        """Return the structured error object exposed to tool callers."""
        data: dict[str, Any] = {
            "isError": True,
            "code": self.code,
            "message": self.message,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code!r}, {self.message!r})"


class ValidationError(ViceError):
    """Arguments rejected locally, before anything is sent."""

    pass


class ConnectionError(ViceError):
    """Socket-level failure: not connected, timeout, closed connection."""

    pass


class CommandError(ViceError):
    """VICE answered with a non-OK status code."""

    def __init__(self, status: int, code: str, message: str, suggestion: Optional[str] = None):
        super().__init__(code, message, suggestion)
        self.status = status


class ProtocolError(ViceError):
    """VICE answered OK with a body the active profile cannot decode."""

    pass


ADDRESS_HINT = "C64 addresses are 16-bit (0x0000-0xFFFF)"
BINARY_MONITOR_HINT = (
    "Ensure VICE is running with -binarymonitor flag: "
    "x64sc -binarymonitor -binarymonitoraddress ip4://127.0.0.1:6502"
)

# Status code -> (error code, suggestion)
PEER_ERRORS = {
    0x01: (
        "OBJECT_MISSING",
        "The requested object (checkpoint, etc.) does not exist",
    ),
    0x02: (
        "INVALID_MEMSPACE",
        "Invalid memory space specified. Use 0 for main CPU memory.",
    ),
    0x80: (
        "INVALID_COMMAND_LENGTH",
        "Command packet has invalid length - this is likely a protocol bug",
    ),
    0x81: (
        "INVALID_PARAMETER_LENGTH",
        "A parameter has an invalid length - check filenames and data sizes",
    ),
    0x82: (
        "INVALID_API_VERSION",
        "VICE does not support this API version. Set VICE_API_VERSION to match your VICE release.",
    ),
    0x83: (
        "INVALID_COMMAND_TYPE",
        "VICE does not recognise this command. Check that VICE_API_VERSION matches your VICE release.",
    ),
    0x84: (
        "INVALID_TARGET",
        "The command target is not valid in the current machine state",
    ),
    0x85: (
        "INVALID_PARAMETER",
        "Invalid parameter value - check address ranges (0x0000-0xFFFF for C64)",
    ),
}


def peer_error(status: int) -> CommandError:
    """Classify a non-OK status code returned by VICE."""
    if status in PEER_ERRORS:
        code, suggestion = PEER_ERRORS[status]
        return CommandError(
            status,
            code,
            f"VICE returned error code 0x{status:02x} ({code})",
            suggestion,
        )
    return CommandError(
        status,
        f"VICE_ERROR_{status}",
        f"VICE returned error code {status}",
        "Check VICE console for more details",
    )


def not_connected() -> ConnectionError:
    return ConnectionError(
        "NOT_CONNECTED",
        "Not connected to VICE",
        "Use connect() first to establish connection",
    )


def connection_closed() -> ConnectionError:
    return ConnectionError(
        "CONNECTION_CLOSED",
        "Connection to VICE closed unexpectedly",
        "VICE may have been closed or crashed. Try reconnecting.",
    )


def response_timeout(timeout: float) -> ConnectionError:
    return ConnectionError(
        "RESPONSE_TIMEOUT",
        f"Timeout waiting for VICE response after {timeout:g} seconds",
        "VICE may be busy or unresponsive. Try again or reconnect.",
    )


def invalid_response(what: str, needed: int, actual: int) -> ProtocolError:
    return ProtocolError(
        "INVALID_RESPONSE",
        f"VICE {what} response too short: needed {needed} bytes, got {actual}",
        "Check that VICE_API_VERSION matches your VICE release",
    )


def invalid_address(address: int, label: str = "Address") -> ValidationError:
    return ValidationError(
        "INVALID_ADDRESS",
        f"{label} {_hex(address)} is outside C64 memory range",
        ADDRESS_HINT,
    )


def invalid_range(start: int, end: int) -> ValidationError:
    return ValidationError(
        "INVALID_RANGE",
        f"Start address ({_hex(start)}) is greater than end address ({_hex(end)})",
        "Swap the addresses or check your range",
    )


def _hex(value: int) -> str:
    if value < 0:
        return f"-0x{-value:x}"
    return f"0x{value:x}"
