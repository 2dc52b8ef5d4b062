"""CRC-16 and LRC-8 checksums used by the RTU and ASCII framers."""

from __future__ import annotations

from enum import Enum
from typing import List


_CRC_POLYNOMIAL = 0xA001
_CRC_SEED = 0xFFFF


class Crc16Variant(Enum):
    """Final XOR applied to the MODBUS CRC-16.

    ``EVEN`` is the standard MODBUS CRC. ``ODD``
    complements the result and is used by a number of field devices.
    """

    EVEN = "even"
    ODD = "odd"

    @property
    def xor_out(self) -> int:
        return 0x0000 if self is Crc16Variant.EVEN else 0xFFFF


def _build_crc_table() -> List[int]:
    table: List[int] = []
    for index in range(256):
        crc = index
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ _CRC_POLYNOMIAL
            else:
                crc >>= 1
        table.append(crc)
    return table


_CRC_TABLE = tuple(_build_crc_table())


def crc16(data: bytes, variant: Crc16Variant = Crc16Variant.EVEN) -> int:
    """Compute the MODBUS RTU CRC-16 of *data*."""

    crc = _CRC_SEED
    for byte in data:
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ byte) & 0xFF]
    return (crc ^ variant.xor_out) & 0xFFFF


def crc16_verify(frame: bytes, variant: Crc16Variant = Crc16Variant.EVEN) -> bool:
    """Return True when the trailing little-endian CRC of *frame* matches."""

    if len(frame) < 3:
        return False
    received = frame[-2] | (frame[-1] << 8)
    return received == crc16(frame[:-2], variant)


def lrc8(data: bytes) -> int:
    """Compute the MODBUS ASCII longitudinal redundancy check."""

    return (-sum(data)) & 0xFF


def lrc8_verify(frame: bytes) -> bool:
    """Return True when the last byte of *frame* is the LRC of the rest."""

    if len(frame) < 2:
        return False
    return frame[-1] == lrc8(frame[:-1])


__all__ = ["Crc16Variant", "crc16", "crc16_verify", "lrc8", "lrc8_verify"]
