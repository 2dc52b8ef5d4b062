"""MODBUS-RTU framing: slave address, PDU and a little-endian CRC-16.

RTU frames carry no length field and no start marker. The receiver infers
the frame length from the function code (and, for reads, the embedded byte
count) and treats every byte as a potential frame start until a candidate
with the right address and a valid CRC is found.
"""

from __future__ import annotations

import struct
from typing import Optional

from .base import PendingRequest, Scan, SyncState, answers, validate_unit_id
from ..checksum import Crc16Variant, crc16, crc16_verify
from ..errors import ModbusFramingError
from ..pdu import EXCEPTION_FLAG, READ_FUNCTIONS, WRITE_FUNCTIONS


MIN_FRAME_SIZE = 4  # address + function + CRC
EXCEPTION_FRAME_SIZE = 5  # address + function + exception code + CRC
WRITE_RESPONSE_FRAME_SIZE = 8  # address + function + address/value (4) + CRC


def expected_frame_length(window: bytes) -> Optional[int]:
    """Return the length of the response frame starting at ``window[0]``.

    Returns ``None`` when the function code has no known response shape.
    *window* must hold at least three bytes for read responses.
    """

    function = window[1]
    if function & EXCEPTION_FLAG:
        return EXCEPTION_FRAME_SIZE
    if function in READ_FUNCTIONS:
        byte_count = window[2]
        return 1 + 1 + 1 + byte_count + 2
    if function in WRITE_FUNCTIONS:
        return WRITE_RESPONSE_FRAME_SIZE
    return None


class RtuFramer:
    """Framer for MODBUS-RTU serial links."""

    name = "rtu"

    def __init__(self, crc_variant: Crc16Variant = Crc16Variant.EVEN) -> None:
        self.crc_variant = crc_variant

    def build_adu(self, unit_id: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        validate_unit_id(unit_id)
        body = bytes([unit_id]) + bytes(pdu)
        return body + struct.pack("<H", crc16(body, self.crc_variant))

    def verify(self, adu: bytes) -> bool:
        return len(adu) >= MIN_FRAME_SIZE and crc16_verify(adu, self.crc_variant)

    def extract_pdu(self, adu: bytes) -> bytes:
        """Validate a complete ADU and return its PDU."""

        if len(adu) < MIN_FRAME_SIZE:
            raise ModbusFramingError(f"ADU too short: {len(adu)} bytes (minimum {MIN_FRAME_SIZE})")
        if not crc16_verify(adu, self.crc_variant):
            raise ModbusFramingError("MODBUS RTU CRC mismatch")
        return bytes(adu[1:-2])

    def scan(self, window: bytes, pending: PendingRequest) -> Scan:
        if len(window) < MIN_FRAME_SIZE:
            return Scan.awaiting()

        length = expected_frame_length(window)
        if window[0] != pending.unit_id:
            if length is not None and len(window) >= length and crc16_verify(window[:length], self.crc_variant):
                return Scan.reject(
                    SyncState.ADDRESS_MISMATCH,
                    1,
                    f"frame for unit 0x{window[0]:02X} (waiting for 0x{pending.unit_id:02X})",
                )
            return Scan.reject(
                SyncState.NOISE_SKIP,
                1,
                f"unexpected address 0x{window[0]:02X} (waiting for 0x{pending.unit_id:02X})",
            )

        if length is None:
            return Scan.reject(SyncState.NOISE_SKIP, 1, f"unknown function code 0x{window[1]:02X}")

        if len(window) < length:
            return Scan.awaiting()

        frame = bytes(window[:length])
        if not crc16_verify(frame, self.crc_variant):
            return Scan.reject(SyncState.CHECKSUM_MISMATCH, 1, "CRC mismatch")

        if not answers(frame[1], pending.function_code):
            return Scan.reject(
                SyncState.ADDRESS_MISMATCH,
                1,
                f"response to function 0x{frame[1]:02X} (waiting for 0x{pending.function_code:02X})",
            )

        return Scan.complete(length, frame[1:-2])


__all__ = [
    "EXCEPTION_FRAME_SIZE",
    "MIN_FRAME_SIZE",
    "RtuFramer",
    "WRITE_RESPONSE_FRAME_SIZE",
    "expected_frame_length",
]
