"""MODBUS protocol data unit (PDU) encoding and decoding.

A PDU is the function code followed by the operation payload. It carries no
addressing, framing or checksum information, so the functions in this module
are shared by every transport. All address, quantity and register fields are
big-endian regardless of the byte-order policy used for extended types.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import List, Sequence, Tuple, Union

from .errors import (
    ModbusFramingError,
    ModbusOutOfRangeError,
    ModbusProtocolException,
    ModbusTruncatedPayloadError,
    ModbusValidationError,
)


class FunctionCode(IntEnum):
    """Standard MODBUS public function codes supported by the engine."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


class ExceptionCode(IntEnum):
    """Exception codes carried by an exception response."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SERVER_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SERVER_DEVICE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_FAILED_TO_RESPOND = 0x0B


EXCEPTION_FLAG = 0x80

READ_FUNCTIONS = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)
WRITE_FUNCTIONS = frozenset(
    {
        FunctionCode.WRITE_SINGLE_COIL,
        FunctionCode.WRITE_SINGLE_REGISTER,
        FunctionCode.WRITE_MULTIPLE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
    }
)

# Quantity limits from the MODBUS application protocol
MAX_READ_BITS = 2000
MAX_READ_REGISTERS = 125
MAX_WRITE_COILS = 1968
MAX_WRITE_REGISTERS = 123

COIL_ON = 0xFF00
COIL_OFF = 0x0000


# ----------------------------------------------------------------------
# Validation helpers
# ----------------------------------------------------------------------


def validate_quantity(quantity: int, minimum: int, maximum: int) -> None:
    """Raise :class:`ModbusOutOfRangeError` unless ``minimum <= quantity <= maximum``."""

    if not minimum <= quantity <= maximum:
        raise ModbusOutOfRangeError(f"Quantity {quantity} must be between {minimum} and {maximum}")


def _validate_word(value: int, what: str) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ModbusOutOfRangeError(f"{what} {value} out of range [0, 65535]")


def is_exception(function: int) -> bool:
    return bool(function & EXCEPTION_FLAG)


def pack_bits(values: Sequence[bool]) -> bytes:
    """Pack booleans into bytes, first value in the least significant bit."""

    packed = bytearray((len(values) + 7) // 8)
    for idx, value in enumerate(values):
        if value:
            packed[idx // 8] |= 1 << (idx % 8)
    return bytes(packed)


def unpack_bits(data: bytes, quantity: int) -> List[bool]:
    """Inverse of :func:`pack_bits`, returning exactly *quantity* booleans."""

    if quantity > len(data) * 8:
        raise ModbusTruncatedPayloadError(
            f"Bit payload of {len(data)} bytes cannot hold {quantity} values"
        )
    return [bool((data[idx // 8] >> (idx % 8)) & 0x01) for idx in range(quantity)]


# ----------------------------------------------------------------------
# Request encoders
# ----------------------------------------------------------------------

_READ_LIMITS = {
    FunctionCode.READ_COILS: MAX_READ_BITS,
    FunctionCode.READ_DISCRETE_INPUTS: MAX_READ_BITS,
    FunctionCode.READ_HOLDING_REGISTERS: MAX_READ_REGISTERS,
    FunctionCode.READ_INPUT_REGISTERS: MAX_READ_REGISTERS,
}


def encode_read_request(function: Union[FunctionCode, int], address: int, quantity: int) -> bytes:
    """Build the PDU for one of the four read functions."""

    try:
        function = FunctionCode(function)
    except ValueError as exc:
        raise ModbusValidationError(f"Unsupported MODBUS function code: 0x{int(function):02X}") from exc
    if function not in READ_FUNCTIONS:
        raise ModbusValidationError(f"{function.name} is not a read function")
    validate_quantity(quantity, 1, _READ_LIMITS[function])
    _validate_word(address, "Address")
    return struct.pack(">BHH", function, address, quantity)


def encode_read_coils(address: int, quantity: int) -> bytes:
    return encode_read_request(FunctionCode.READ_COILS, address, quantity)


def encode_read_discrete_inputs(address: int, quantity: int) -> bytes:
    return encode_read_request(FunctionCode.READ_DISCRETE_INPUTS, address, quantity)


def encode_read_holding_registers(address: int, quantity: int) -> bytes:
    return encode_read_request(FunctionCode.READ_HOLDING_REGISTERS, address, quantity)


def encode_read_input_registers(address: int, quantity: int) -> bytes:
    return encode_read_request(FunctionCode.READ_INPUT_REGISTERS, address, quantity)


def encode_write_single_coil(address: int, value: bool) -> bytes:
    _validate_word(address, "Address")
    return struct.pack(">BHH", FunctionCode.WRITE_SINGLE_COIL, address, COIL_ON if value else COIL_OFF)


def encode_write_single_register(address: int, value: int) -> bytes:
    _validate_word(address, "Address")
    _validate_word(value, "Register value")
    return struct.pack(">BHH", FunctionCode.WRITE_SINGLE_REGISTER, address, value)


def encode_write_multiple_coils(address: int, values: Sequence[bool]) -> bytes:
    if not values:
        raise ModbusValidationError("Write multiple coils requires at least one value")
    validate_quantity(len(values), 1, MAX_WRITE_COILS)
    _validate_word(address, "Address")
    packed = pack_bits(values)
    header = struct.pack(">BHHB", FunctionCode.WRITE_MULTIPLE_COILS, address, len(values), len(packed))
    return header + packed


def encode_write_multiple_registers(address: int, values: Sequence[int]) -> bytes:
    if not values:
        raise ModbusValidationError("Write multiple registers requires at least one value")
    validate_quantity(len(values), 1, MAX_WRITE_REGISTERS)
    _validate_word(address, "Address")
    pdu = bytearray(
        struct.pack(">BHHB", FunctionCode.WRITE_MULTIPLE_REGISTERS, address, len(values), len(values) * 2)
    )
    for value in values:
        _validate_word(value, "Register value")
        pdu += struct.pack(">H", value)
    return bytes(pdu)


# ----------------------------------------------------------------------
# Response decoders
# ----------------------------------------------------------------------


def check_exception(pdu: bytes) -> None:
    """Raise :class:`ModbusProtocolException` if *pdu* is an exception response."""

    if not pdu:
        raise ModbusTruncatedPayloadError("Empty MODBUS response")

    function = pdu[0]
    if not is_exception(function):
        return
    if len(pdu) < 2:
        raise ModbusTruncatedPayloadError("Exception response missing exception code")

    raw_code = pdu[1]
    try:
        code: int = ExceptionCode(raw_code)
    except ValueError:
        code = raw_code
    raise ModbusProtocolException(function & ~EXCEPTION_FLAG, code)


def expect_function(pdu: bytes, function: int) -> None:
    """Check *pdu* is a normal response to *function*."""

    check_exception(pdu)
    if pdu[0] != function:
        raise ModbusFramingError(
            f"Unexpected MODBUS function code in response: expected=0x{function:02X} got=0x{pdu[0]:02X}"
        )


def _byte_count_payload(pdu: bytes) -> bytes:
    check_exception(pdu)
    if len(pdu) < 2:
        raise ModbusTruncatedPayloadError("MODBUS response missing byte count")
    byte_count = pdu[1]
    if len(pdu) < 2 + byte_count:
        raise ModbusTruncatedPayloadError(
            f"MODBUS response declares {byte_count} data bytes but only {len(pdu) - 2} are present"
        )
    return bytes(pdu[2 : 2 + byte_count])


def decode_read_bits_response(pdu: bytes, quantity: int) -> List[bool]:
    """Decode a read coils / read discrete inputs response."""

    return unpack_bits(_byte_count_payload(pdu), quantity)


def decode_register_payload(pdu: bytes) -> bytes:
    """Return the raw data bytes of a read registers response."""

    return _byte_count_payload(pdu)


def decode_read_registers_response(pdu: bytes) -> List[int]:
    """Decode a read holding / input registers response."""

    payload = _byte_count_payload(pdu)
    count = len(payload) // 2
    return list(struct.unpack(f">{count}H", payload[: count * 2]))


def _address_and_word(pdu: bytes) -> Tuple[int, int]:
    check_exception(pdu)
    if len(pdu) < 5:
        raise ModbusTruncatedPayloadError("MODBUS write response too short")
    address, word = struct.unpack(">HH", pdu[1:5])
    return address, word


def decode_write_single_coil_response(pdu: bytes) -> Tuple[int, bool]:
    address, word = _address_and_word(pdu)
    return address, word == COIL_ON


def decode_write_single_register_response(pdu: bytes) -> Tuple[int, int]:
    return _address_and_word(pdu)


def decode_write_multiple_response(pdu: bytes) -> Tuple[int, int]:
    """Decode a write multiple coils / registers response into (address, quantity)."""

    return _address_and_word(pdu)


__all__ = [
    "COIL_OFF",
    "COIL_ON",
    "EXCEPTION_FLAG",
    "ExceptionCode",
    "FunctionCode",
    "MAX_READ_BITS",
    "MAX_READ_REGISTERS",
    "MAX_WRITE_COILS",
    "MAX_WRITE_REGISTERS",
    "READ_FUNCTIONS",
    "WRITE_FUNCTIONS",
    "check_exception",
    "decode_read_bits_response",
    "decode_read_registers_response",
    "decode_register_payload",
    "decode_write_multiple_response",
    "decode_write_single_coil_response",
    "decode_write_single_register_response",
    "encode_read_coils",
    "encode_read_discrete_inputs",
    "encode_read_holding_registers",
    "encode_read_input_registers",
    "encode_read_request",
    "encode_write_multiple_coils",
    "encode_write_multiple_registers",
    "encode_write_single_coil",
    "encode_write_single_register",
    "expect_function",
    "is_exception",
    "pack_bits",
    "unpack_bits",
    "validate_quantity",
]
