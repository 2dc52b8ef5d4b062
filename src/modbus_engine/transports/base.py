"""Base transport abstraction: a duplex byte stream."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..errors import TransportError


_LOG = logging.getLogger(__name__)


class Transport(ABC):
    """Common interface implemented by all byte-stream transports.

    ``read`` returns the next non-empty chunk of received bytes, which may
    hold a partial frame or several frames. An empty result means the peer
    closed the stream.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending_read: Optional[asyncio.Future] = None

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying stream."""

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying stream. Safe to call when already closed."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the stream is open."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Transmit *data* in full."""

    @abstractmethod
    async def read(self) -> bytes:
        """Wait for and return the next chunk of received bytes."""

    async def _read_in_thread(self, func: Callable[[], bytes]) -> bytes:
        """Run the blocking reader *func* in a worker thread.

        The worker cannot be interrupted, so a read cancelled by a timeout
        keeps running; its bytes are handed to the next ``read`` call
        instead of being lost.
        """

        if self._pending_read is None:
            self._pending_read = asyncio.ensure_future(asyncio.to_thread(func))
        pending = self._pending_read
        try:
            return await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending_read is pending:
                self._pending_read = None

    def _drop_pending_read(self) -> None:
        pending = self._pending_read
        self._pending_read = None
        if pending is None:
            return
        if pending.done():
            if not pending.cancelled() and pending.exception() is not None:
                _LOG.debug("Discarding failed read on %s: %s", self.name, pending.exception())
        else:
            pending.add_done_callback(_retrieve_result)

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise TransportError(f"Transport {self.name!r} is not connected")


def _retrieve_result(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


__all__ = ["Transport", "TransportError"]
