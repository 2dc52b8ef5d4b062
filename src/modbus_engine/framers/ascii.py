"""MODBUS-ASCII framing: ``:`` + hex(address, PDU, LRC) + ``\\r\\n``."""

from __future__ import annotations

from .base import PendingRequest, Scan, SyncState, answers, validate_unit_id
from ..checksum import lrc8, lrc8_verify
from ..errors import ModbusFramingError


FRAME_START = b":"
FRAME_END = b"\r\n"
MIN_FRAME_SIZE = 9  # ':' + address(2) + function(2) + LRC(2) + CRLF

_HEX_DIGITS = b"0123456789ABCDEF"
_NIBBLES = {char: idx for idx, char in enumerate(_HEX_DIGITS)}
_NIBBLES.update({char: idx + 10 for idx, char in enumerate(b"abcdef")})


def hex_encode(data: bytes) -> bytes:
    """Expand every byte of *data* into two uppercase ASCII hex digits."""

    out = bytearray()
    for byte in data:
        out.append(_HEX_DIGITS[byte >> 4])
        out.append(_HEX_DIGITS[byte & 0x0F])
    return bytes(out)


def hex_decode(text: bytes) -> bytes:
    """Inverse of :func:`hex_encode`; lowercase digits are accepted."""

    if len(text) % 2 != 0:
        raise ModbusFramingError("ASCII hex payload length must be even")
    out = bytearray()
    for idx in range(0, len(text), 2):
        high = _NIBBLES.get(text[idx])
        low = _NIBBLES.get(text[idx + 1])
        if high is None or low is None:
            raise ModbusFramingError(f"Invalid hex character at position {idx}")
        out.append((high << 4) | low)
    return bytes(out)


def _decode_frame(adu: bytes) -> bytes:
    """Check delimiters and return the binary address + PDU + LRC."""

    if len(adu) < MIN_FRAME_SIZE:
        raise ModbusFramingError(f"ADU too short: {len(adu)} bytes (minimum {MIN_FRAME_SIZE})")
    if not adu.startswith(FRAME_START):
        raise ModbusFramingError("Invalid frame header: expected ':'")
    if not adu.endswith(FRAME_END):
        raise ModbusFramingError("Invalid frame trailer: expected '\\r\\n'")
    hex_payload = adu[1:-2]
    if len(hex_payload) < 6:
        raise ModbusFramingError("Invalid MODBUS ASCII payload length")
    return hex_decode(hex_payload)


def extract_unit_id(adu: bytes) -> int:
    if len(adu) < 3 or not adu.startswith(FRAME_START):
        raise ModbusFramingError("Invalid frame header")
    return hex_decode(adu[1:3])[0]


class AsciiFramer:
    """Framer for MODBUS-ASCII serial links."""

    name = "ascii"

    def build_adu(self, unit_id: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        validate_unit_id(unit_id)
        body = bytes([unit_id]) + bytes(pdu)
        return FRAME_START + hex_encode(body + bytes([lrc8(body)])) + FRAME_END

    def verify(self, adu: bytes) -> bool:
        try:
            return lrc8_verify(_decode_frame(bytes(adu)))
        except ModbusFramingError:
            return False

    def extract_pdu(self, adu: bytes) -> bytes:
        """Validate a complete ASCII ADU and return its PDU."""

        binary = _decode_frame(bytes(adu))
        if not lrc8_verify(binary):
            raise ModbusFramingError("MODBUS ASCII LRC mismatch")
        return binary[1:-1]

    def scan(self, window: bytes, pending: PendingRequest) -> Scan:
        if not window:
            return Scan.awaiting()

        start = window.find(FRAME_START)
        if start < 0:
            return Scan.reject(SyncState.NOISE_SKIP, len(window), "no frame start in buffer")
        if start > 0:
            return Scan.reject(SyncState.NOISE_SKIP, start, "bytes before frame start")

        end = window.find(FRAME_END, 1)
        restart = window.find(FRAME_START, 1)
        if restart > 0 and (end < 0 or restart < end):
            return Scan.reject(SyncState.NOISE_SKIP, restart, "frame restarted before terminator")
        if end < 0:
            return Scan.awaiting()

        frame_length = end + len(FRAME_END)
        frame = bytes(window[:frame_length])
        try:
            binary = _decode_frame(frame)
        except ModbusFramingError as exc:
            return Scan.reject(SyncState.NOISE_SKIP, frame_length, str(exc))

        if not lrc8_verify(binary):
            return Scan.reject(SyncState.CHECKSUM_MISMATCH, frame_length, "LRC mismatch")
        if binary[0] != pending.unit_id:
            return Scan.reject(
                SyncState.ADDRESS_MISMATCH,
                frame_length,
                f"frame for unit 0x{binary[0]:02X} (waiting for 0x{pending.unit_id:02X})",
            )
        if not answers(binary[1], pending.function_code):
            return Scan.reject(
                SyncState.ADDRESS_MISMATCH,
                frame_length,
                f"response to function 0x{binary[1]:02X} (waiting for 0x{pending.function_code:02X})",
            )
        return Scan.complete(frame_length, binary[1:-1])


__all__ = [
    "AsciiFramer",
    "FRAME_END",
    "FRAME_START",
    "MIN_FRAME_SIZE",
    "extract_unit_id",
    "hex_decode",
    "hex_encode",
]
