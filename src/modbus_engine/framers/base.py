"""Shared vocabulary for the transport framers.

A framer knows two things about its transport: how to wrap a request PDU
into the bytes sent on the wire, and how to look at the bytes received so
far and decide what to do with them. Framers do not subclass a common base;
anything with ``name``, ``build_adu`` and ``scan`` satisfies :class:`Framer`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from ..errors import ModbusOutOfRangeError
from ..pdu import EXCEPTION_FLAG


class SyncState(Enum):
    """Outcome of examining the receive window for one pending request."""

    AWAITING_FRAME = "awaiting_frame"
    NOISE_SKIP = "noise_skip"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    ADDRESS_MISMATCH = "address_mismatch"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"
    CONNECTION_CLOSED = "connection_closed"


REJECTION_STATES = frozenset(
    {SyncState.NOISE_SKIP, SyncState.CHECKSUM_MISMATCH, SyncState.ADDRESS_MISMATCH}
)


@dataclass(slots=True)
class PendingRequest:
    """Identity of the single outstanding request on a connection."""

    unit_id: int
    function_code: int
    transaction_id: int = 0


@dataclass(slots=True)
class Scan:
    """Verdict of a framer over the current receive window.

    ``consume`` is the number of leading bytes to discard from the window.
    ``pdu`` is set only for :attr:`SyncState.COMPLETE`. A ``fatal`` scan
    ends the exchange with a framing error instead of resynchronising.
    """

    state: SyncState
    consume: int = 0
    pdu: Optional[bytes] = None
    fatal: bool = False
    reason: str = ""

    @classmethod
    def awaiting(cls) -> "Scan":
        return cls(SyncState.AWAITING_FRAME)

    @classmethod
    def reject(cls, state: SyncState, consume: int, reason: str) -> "Scan":
        return cls(state, consume=consume, reason=reason)

    @classmethod
    def complete(cls, consume: int, pdu: bytes) -> "Scan":
        return cls(SyncState.COMPLETE, consume=consume, pdu=pdu)


@runtime_checkable
class Framer(Protocol):
    """Transport framing capability used by the request pipeline."""

    name: str

    def build_adu(self, unit_id: int, pdu: bytes, transaction_id: int = 0) -> bytes:
        """Wrap *pdu* into the bytes to transmit."""

    def scan(self, window: bytes, pending: PendingRequest) -> Scan:
        """Inspect *window* (never mutated) and report the next transition."""


def validate_unit_id(unit_id: int) -> None:
    if not 0 <= unit_id <= 0xFF:
        raise ModbusOutOfRangeError(f"Unit id {unit_id} out of range [0, 255]")


def answers(function: int, request_function: int) -> bool:
    """True when a response with *function* can belong to *request_function*."""

    return function in (request_function, request_function | EXCEPTION_FLAG)


__all__ = [
    "Framer",
    "PendingRequest",
    "REJECTION_STATES",
    "Scan",
    "SyncState",
    "answers",
    "validate_unit_id",
]
