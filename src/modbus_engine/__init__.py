"""Master-side MODBUS protocol engine for TCP, RTU and ASCII transports."""

from . import byte_order, checksum, config, pdu
from .byte_order import ByteOrder, DataType
from .checksum import Crc16Variant
from .client import (
    ModbusClient,
    create_ascii_client,
    create_client,
    create_rtu_client,
    create_tcp_client,
)
from .errors import (
    ModbusConnectionError,
    ModbusError,
    ModbusFramingError,
    ModbusLengthMismatchError,
    ModbusOutOfRangeError,
    ModbusProtocolException,
    ModbusTimeoutError,
    ModbusTruncatedPayloadError,
    ModbusValidationError,
    TransportError,
)
from .framers import AsciiFramer, RtuFramer, TcpFramer
from .pdu import ExceptionCode, FunctionCode
from .sync import FrameSynchronizer, SyncState

__all__ = [
    "AsciiFramer",
    "ByteOrder",
    "Crc16Variant",
    "DataType",
    "ExceptionCode",
    "FrameSynchronizer",
    "FunctionCode",
    "ModbusClient",
    "ModbusConnectionError",
    "ModbusError",
    "ModbusFramingError",
    "ModbusLengthMismatchError",
    "ModbusOutOfRangeError",
    "ModbusProtocolException",
    "ModbusTimeoutError",
    "ModbusTruncatedPayloadError",
    "ModbusValidationError",
    "RtuFramer",
    "SyncState",
    "TcpFramer",
    "TransportError",
    "byte_order",
    "checksum",
    "config",
    "create_ascii_client",
    "create_client",
    "create_rtu_client",
    "create_tcp_client",
    "pdu",
]
