"""Conversion between MODBUS register payloads and typed numeric values.

Register payloads travel on the wire as big-endian 16-bit words. Devices
disagree on how wider values are laid out across those words, so the
conversion is parameterised by a :class:`ByteOrder`:

``BIG_ENDIAN`` (ABCD)
    0x12345678 is stored as ``12 34 56 78``.
``LITTLE_ENDIAN`` (DCBA)
    0x12345678 is stored as ``78 56 34 12``.
``BIG_ENDIAN_SWAP`` (CDAB)
    big-endian integer with its 16-bit words swapped: ``56 78 12 34``.
``LITTLE_ENDIAN_SWAP`` (BADC)
    little-endian integer with its 16-bit words swapped: ``34 12 78 56``.

A single 16-bit word cannot be word-swapped, so for 16-bit types the swap
variants degrade to the opposite endianness: ``BIG_ENDIAN_SWAP`` reads the
word little-endian and ``LITTLE_ENDIAN_SWAP`` reads it big-endian.
"""

from __future__ import annotations

import struct
from enum import Enum
from typing import Iterable, List, Sequence, Union

from .errors import ModbusLengthMismatchError, ModbusOutOfRangeError, ModbusValidationError


Number = Union[int, float]


class ByteOrder(Enum):
    """Layout of multi-byte values across MODBUS registers."""

    BIG_ENDIAN = "big_endian"
    LITTLE_ENDIAN = "little_endian"
    BIG_ENDIAN_SWAP = "big_endian_swap"
    LITTLE_ENDIAN_SWAP = "little_endian_swap"

    @property
    def is_word_swapped(self) -> bool:
        return self in (ByteOrder.BIG_ENDIAN_SWAP, ByteOrder.LITTLE_ENDIAN_SWAP)

    @property
    def integer_endianness(self) -> str:
        """Endianness used to read the full-width integer ("big"/"little")."""

        if self in (ByteOrder.BIG_ENDIAN, ByteOrder.BIG_ENDIAN_SWAP):
            return "big"
        return "little"

    @property
    def word_endianness(self) -> str:
        """Endianness used for 16-bit values under this policy."""

        if self in (ByteOrder.BIG_ENDIAN, ByteOrder.LITTLE_ENDIAN_SWAP):
            return "big"
        return "little"


class DataType(Enum):
    """Numeric types a register payload can be reinterpreted as."""

    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def width(self) -> int:
        """Element width in bytes."""

        return _WIDTHS[self]

    @property
    def register_count(self) -> int:
        return self.width // 2


_WIDTHS = {
    DataType.UINT16: 2,
    DataType.INT16: 2,
    DataType.UINT32: 4,
    DataType.INT32: 4,
    DataType.FLOAT32: 4,
    DataType.FLOAT64: 8,
}

_INTEGER_RANGES = {
    DataType.UINT16: (0, 0xFFFF),
    DataType.INT16: (-0x8000, 0x7FFF),
    DataType.UINT32: (0, 0xFFFFFFFF),
    DataType.INT32: (-0x80000000, 0x7FFFFFFF),
}


# ----------------------------------------------------------------------
# Bit-pattern helpers
# ----------------------------------------------------------------------


def swap_words(value: int, width: int) -> int:
    """Reverse the order of the 16-bit words inside an unsigned integer.

    *width* is the integer width in bytes and must be a multiple of 2.
    Bytes inside each word keep their order.
    """

    if width % 2 != 0 or width <= 0:
        raise ModbusValidationError(f"Word swap requires an even width, got {width}")
    words = [(value >> (16 * idx)) & 0xFFFF for idx in range(width // 2)]
    result = 0
    for word in words:
        result = (result << 16) | word
    return result


def swap_bytes16(value: int) -> int:
    """Swap the two bytes of a 16-bit word."""

    return ((value >> 8) & 0xFF) | ((value & 0xFF) << 8)


def to_signed(value: int, bits: int) -> int:
    """Reinterpret an unsigned *bits*-wide pattern as two's complement."""

    sign = 1 << (bits - 1)
    return (value & (sign - 1)) - (value & sign)


def to_unsigned(value: int, bits: int) -> int:
    """Two's complement bit pattern of *value* truncated to *bits*."""

    return value & ((1 << bits) - 1)


class Float32Nan(float):
    """NaN decoded from a float32 register pattern.

    Converting a single to a Python float quiets signalling NaNs, so the
    original 32-bit pattern is kept in ``bits`` and written back unchanged.
    """

    def __new__(cls, bits: int) -> "Float32Nan":
        value = super().__new__(cls, struct.unpack(">f", struct.pack(">I", bits))[0])
        value.bits = bits
        return value


def uint32_to_float32(value: int) -> float:
    """Transmute a 32-bit pattern (0..2**32-1) into an IEEE-754 single."""

    if value & 0x7F800000 == 0x7F800000 and value & 0x007FFFFF:
        return Float32Nan(value)
    return struct.unpack(">f", struct.pack(">I", value))[0]


def float32_to_uint32(value: float) -> int:
    """Transmute an IEEE-754 single into its 32-bit pattern."""

    if isinstance(value, Float32Nan):
        return value.bits
    try:
        return struct.unpack(">I", struct.pack(">f", float(value)))[0]
    except OverflowError as exc:
        raise ModbusOutOfRangeError(f"Value {value!r} does not fit in float32") from exc


def uint64_to_float64(value: int) -> float:
    """Transmute a 64-bit pattern into an IEEE-754 double."""

    return struct.unpack(">d", struct.pack(">Q", value))[0]


def float64_to_uint64(value: float) -> int:
    """Transmute an IEEE-754 double into its 64-bit pattern."""

    return struct.unpack(">Q", struct.pack(">d", value))[0]


# ----------------------------------------------------------------------
# Register <-> byte helpers
# ----------------------------------------------------------------------


def registers_to_bytes(registers: Iterable[int]) -> bytes:
    """Serialise 16-bit registers the way they appear on the wire (big-endian)."""

    out = bytearray()
    for register in registers:
        if not 0 <= register <= 0xFFFF:
            raise ModbusOutOfRangeError(f"Register value {register} out of range [0, 65535]")
        out += struct.pack(">H", register)
    return bytes(out)


def bytes_to_registers(data: bytes) -> List[int]:
    """Split a big-endian wire payload into 16-bit registers."""

    if len(data) % 2 != 0:
        raise ModbusLengthMismatchError("Register payload length must be even")
    return [int.from_bytes(data[idx : idx + 2], "big") for idx in range(0, len(data), 2)]


# ----------------------------------------------------------------------
# Conversion entry points
# ----------------------------------------------------------------------


def to_typed(data: bytes, data_type: DataType, order: ByteOrder = ByteOrder.BIG_ENDIAN) -> List[Number]:
    """Reinterpret a raw register payload as a list of *data_type* values.

    Args:
        data: Register bytes as received (big-endian words, concatenated)
        data_type: Target element type
        order: Byte-order policy of the remote device

    Returns:
        One value per ``data_type.width`` bytes of *data*

    Raises:
        ModbusLengthMismatchError: If ``len(data)`` is not a multiple of the width
    """

    width = data_type.width
    if len(data) % width != 0:
        raise ModbusLengthMismatchError(
            f"Payload of {len(data)} bytes is not a multiple of {width} bytes for {data_type.value}"
        )

    values: List[Number] = []
    for offset in range(0, len(data), width):
        chunk = bytes(data[offset : offset + width])
        if width == 2:
            raw = int.from_bytes(chunk, order.word_endianness)
        else:
            raw = int.from_bytes(chunk, order.integer_endianness)
            if order.is_word_swapped:
                raw = swap_words(raw, width)
        values.append(_from_bits(raw, data_type))
    return values


def from_typed(values: Sequence[Number], data_type: DataType, order: ByteOrder = ByteOrder.BIG_ENDIAN) -> List[int]:
    """Convert typed values into the register sequence to place on the wire.

    This is the exact inverse of :func:`to_typed`.
    """

    payload = bytearray()
    for value in values:
        raw = _to_bits(value, data_type)
        width = data_type.width
        if width == 2:
            payload += raw.to_bytes(2, order.word_endianness)
        else:
            if order.is_word_swapped:
                raw = swap_words(raw, width)
            payload += raw.to_bytes(width, order.integer_endianness)
    return bytes_to_registers(bytes(payload))


def _from_bits(raw: int, data_type: DataType) -> Number:
    if data_type in (DataType.UINT16, DataType.UINT32):
        return raw
    if data_type is DataType.INT16:
        return to_signed(raw, 16)
    if data_type is DataType.INT32:
        return to_signed(raw, 32)
    if data_type is DataType.FLOAT32:
        return uint32_to_float32(raw)
    return uint64_to_float64(raw)


def _to_bits(value: Number, data_type: DataType) -> int:
    if data_type is DataType.FLOAT32:
        return float32_to_uint32(value)
    if data_type is DataType.FLOAT64:
        return float64_to_uint64(float(value))

    if isinstance(value, float) and not value.is_integer():
        raise ModbusValidationError(f"Value {value!r} is not an integer for {data_type.value}")
    ivalue = int(value)
    low, high = _INTEGER_RANGES[data_type]
    if not low <= ivalue <= high:
        raise ModbusOutOfRangeError(f"{data_type.value} value {ivalue} out of range [{low}, {high}]")
    return to_unsigned(ivalue, data_type.width * 8)


__all__ = [
    "ByteOrder",
    "DataType",
    "Float32Nan",
    "bytes_to_registers",
    "float32_to_uint32",
    "float64_to_uint64",
    "from_typed",
    "registers_to_bytes",
    "swap_bytes16",
    "swap_words",
    "to_signed",
    "to_typed",
    "to_unsigned",
    "uint32_to_float32",
    "uint64_to_float64",
]
