"""Exception hierarchy shared by the codec, the framers and the client."""

from __future__ import annotations

from typing import Optional


class ModbusError(RuntimeError):
    """Base class for every failure raised by modbus_engine."""


class ModbusValidationError(ModbusError, ValueError):
    """Raised for malformed caller input before any bytes hit the wire."""


class ModbusOutOfRangeError(ModbusValidationError):
    """Raised when a quantity, address, value or id is outside its range."""


class ModbusLengthMismatchError(ModbusValidationError):
    """Raised when a byte payload is not a multiple of the element width."""


class ModbusTruncatedPayloadError(ModbusError):
    """Raised when a response PDU is shorter than its layout requires."""


class ModbusFramingError(ModbusError):
    """Raised for integrity problems: bad checksum, hex, protocol id or identity."""


class ModbusProtocolException(ModbusError):
    """A well-formed exception response reported by the remote device."""

    def __init__(self, function: int, exception_code: int, message: Optional[str] = None) -> None:
        self.function = function
        self.exception_code = exception_code
        if message is None:
            name = getattr(exception_code, "name", None) or f"0x{int(exception_code):02X}"
            message = f"MODBUS exception: function=0x{function:02X} code={name}"
        super().__init__(message)


class ModbusTimeoutError(ModbusError, TimeoutError):
    """Raised when no valid matching frame arrived before the deadline."""


class ModbusConnectionError(ModbusError, ConnectionError):
    """Raised when the transport is closed, not connected or fails."""


class TransportError(ModbusConnectionError):
    """Raised by transports that cannot be opened or used."""


__all__ = [
    "ModbusError",
    "ModbusValidationError",
    "ModbusOutOfRangeError",
    "ModbusLengthMismatchError",
    "ModbusTruncatedPayloadError",
    "ModbusFramingError",
    "ModbusProtocolException",
    "ModbusTimeoutError",
    "ModbusConnectionError",
    "TransportError",
]
