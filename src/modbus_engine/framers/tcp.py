"""MODBUS-TCP framing: the 7-byte MBAP header.

TCP already guarantees byte integrity, so there is no checksum and no
resynchronisation: the header's length field delimits every frame. A frame
that violates the header contract means the stream itself is broken and the
exchange fails immediately.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .base import PendingRequest, Scan, SyncState, validate_unit_id
from ..errors import ModbusFramingError, ModbusOutOfRangeError, ModbusValidationError


MODBUS_PROTOCOL_ID = 0


@dataclass(slots=True)
class MbapHeader:
    """MODBUS Application Protocol header."""

    transaction_id: int
    protocol_id: int
    length: int
    unit_id: int

    SIZE = 7

    def to_bytes(self) -> bytes:
        return struct.pack(">HHHB", self.transaction_id, self.protocol_id, self.length, self.unit_id)

    @property
    def pdu_length(self) -> int:
        # Length counts the unit id byte plus the PDU
        return self.length - 1

    @property
    def frame_length(self) -> int:
        return self.SIZE + self.pdu_length


def parse_mbap_header(data: bytes) -> MbapHeader:
    """Parse the first seven bytes of *data* as an MBAP header."""

    if len(data) < MbapHeader.SIZE:
        raise ModbusValidationError("Buffer too small for MBAP header")
    transaction_id, protocol_id, length, unit_id = struct.unpack(">HHHB", bytes(data[: MbapHeader.SIZE]))
    return MbapHeader(transaction_id, protocol_id, length, unit_id)


class TcpFramer:
    """Framer for MODBUS-TCP connections."""

    name = "tcp"

    def build_adu(self, unit_id: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        """Build the MBAP header for *pdu* and prepend it.

        Args:
            unit_id: MODBUS unit identifier
            pdu: Protocol Data Unit
            transaction_id: Caller-generated identifier echoed by the server

        Returns:
            Complete TCP ADU
        """

        validate_unit_id(unit_id)
        if not 0 <= transaction_id <= 0xFFFF:
            raise ModbusOutOfRangeError(f"Transaction id {transaction_id} out of range [0, 65535]")
        if len(pdu) + 1 > 0xFFFF:
            raise ModbusValidationError("PDU too large for MBAP length field")
        header = MbapHeader(transaction_id, MODBUS_PROTOCOL_ID, len(pdu) + 1, unit_id)
        return header.to_bytes() + bytes(pdu)

    def verify(self, adu: bytes) -> bool:
        try:
            self.extract_pdu(adu)
        except (ModbusFramingError, ModbusValidationError):
            return False
        return True

    def extract_pdu(self, adu: bytes) -> bytes:
        """Validate a complete TCP ADU and return its PDU."""

        header = parse_mbap_header(adu)
        if header.protocol_id != MODBUS_PROTOCOL_ID:
            raise ModbusFramingError(f"Invalid protocol ID: {header.protocol_id}")
        if header.length < 2 or len(adu) != header.frame_length:
            raise ModbusFramingError(
                f"MBAP length {header.length} does not match ADU of {len(adu)} bytes"
            )
        return bytes(adu[MbapHeader.SIZE :])

    def scan(self, window: bytes, pending: PendingRequest) -> Scan:
        if len(window) < MbapHeader.SIZE:
            return Scan.awaiting()

        header = parse_mbap_header(window)
        if header.protocol_id != MODBUS_PROTOCOL_ID:
            return Scan(
                SyncState.NOISE_SKIP,
                consume=len(window),
                fatal=True,
                reason=f"Invalid protocol ID: {header.protocol_id}",
            )
        if header.length < 2:
            return Scan(
                SyncState.NOISE_SKIP,
                consume=len(window),
                fatal=True,
                reason=f"Invalid MBAP length: {header.length}",
            )

        if len(window) < header.frame_length:
            return Scan.awaiting()

        if header.transaction_id != pending.transaction_id:
            return Scan(
                SyncState.ADDRESS_MISMATCH,
                consume=header.frame_length,
                fatal=True,
                reason=(
                    f"Transaction ID mismatch: sent {pending.transaction_id}, "
                    f"received {header.transaction_id}"
                ),
            )

        pdu = bytes(window[MbapHeader.SIZE : header.frame_length])
        return Scan.complete(header.frame_length, pdu)


__all__ = ["MbapHeader", "MODBUS_PROTOCOL_ID", "TcpFramer", "parse_mbap_header"]
