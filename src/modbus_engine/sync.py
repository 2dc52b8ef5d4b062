"""Stream frame synchronizer.

Turns a stream of arbitrarily split byte chunks into exactly one validated
response PDU for the pending request. The framer decides what the current
window holds; the synchronizer applies its verdicts: drop the bytes it
rejects, rescan, and wait for more input when nothing is complete yet.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from .errors import ModbusConnectionError, ModbusFramingError, ModbusTimeoutError
from .framers.base import REJECTION_STATES, Framer, PendingRequest, SyncState
from .transports.base import Transport


_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncStats:
    """Per-request bookkeeping of what the synchronizer threw away."""

    bytes_discarded: int = 0
    rejections: Counter = field(default_factory=Counter)

    def record(self, state: SyncState, consumed: int) -> None:
        self.bytes_discarded += consumed
        self.rejections[state] += 1

    @property
    def total_rejections(self) -> int:
        return sum(self.rejections.values())

    def clear(self) -> None:
        self.bytes_discarded = 0
        self.rejections.clear()


class FrameSynchronizer:
    """Accumulates received bytes and extracts the matching response frame."""

    def __init__(self, framer: Framer, transport: Transport) -> None:
        self.framer = framer
        self.transport = transport
        self.state = SyncState.AWAITING_FRAME
        self.stats = SyncStats()
        self._window = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes currently held in the receive window."""

        return len(self._window)

    def feed(self, chunk: bytes) -> None:
        self._window.extend(chunk)

    def reset(self) -> int:
        """Drop the window and statistics; return how many bytes were dropped."""

        dropped = len(self._window)
        if dropped:
            _LOG.debug("Discarding %d stale byte(s) from %s window", dropped, self.framer.name)
        self._window.clear()
        self.stats.clear()
        self.state = SyncState.AWAITING_FRAME
        return dropped

    def poll(self, pending: PendingRequest) -> Optional[bytes]:
        """Scan the window until a frame completes or more bytes are needed.

        Returns the response PDU, or ``None`` when the window holds no
        complete matching frame yet. Raises :class:`ModbusFramingError` when
        the framer reports a failure it cannot resynchronise from.
        """

        while True:
            verdict = self.framer.scan(bytes(self._window), pending)
            self.state = verdict.state

            if verdict.state is SyncState.COMPLETE:
                del self._window[: verdict.consume]
                return verdict.pdu

            if verdict.fatal:
                del self._window[: verdict.consume]
                self.stats.record(verdict.state, verdict.consume)
                raise ModbusFramingError(f"{self.framer.name} framing error: {verdict.reason}")

            if verdict.state in REJECTION_STATES:
                # A rejection always consumes at least one byte
                consumed = max(1, verdict.consume)
                del self._window[:consumed]
                self.stats.record(verdict.state, consumed)
                _LOG.debug(
                    "%s sync %s: dropped %d byte(s) (%s)",
                    self.framer.name,
                    verdict.state.value,
                    consumed,
                    verdict.reason,
                )
                continue

            return None

    async def receive(self, pending: PendingRequest, timeout: Optional[float]) -> bytes:
        """Await transport chunks until a frame for *pending* completes."""

        try:
            return await asyncio.wait_for(self._receive(pending), timeout)
        except asyncio.TimeoutError as exc:
            self.state = SyncState.TIMED_OUT
            _LOG.warning(
                "Timed out after %.3fs waiting for %s response (unit=%d, %d byte(s) buffered, %d rejected)",
                timeout,
                self.framer.name,
                pending.unit_id,
                len(self._window),
                self.stats.bytes_discarded,
            )
            raise ModbusTimeoutError(
                f"No valid {self.framer.name} response from unit {pending.unit_id} within {timeout}s"
            ) from exc

    async def _receive(self, pending: PendingRequest) -> bytes:
        while True:
            pdu = self.poll(pending)
            if pdu is not None:
                if self.stats.total_rejections:
                    _LOG.debug(
                        "%s frame recovered after discarding %d byte(s): %s",
                        self.framer.name,
                        self.stats.bytes_discarded,
                        {state.value: count for state, count in self.stats.rejections.items()},
                    )
                return pdu

            chunk = await self.transport.read()
            if not chunk:
                self.state = SyncState.CONNECTION_CLOSED
                raise ModbusConnectionError(
                    f"Connection {self.transport.name!r} closed while awaiting response"
                )
            _LOG.debug("%s received %d byte(s): %s", self.framer.name, len(chunk), chunk.hex(" "))
            self.feed(chunk)


__all__ = ["FrameSynchronizer", "SyncState", "SyncStats"]
