"""TCP socket transport used by MODBUS-TCP connections."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any, Callable, Optional

from .base import Transport
from ..errors import TransportError


_LOG = logging.getLogger(__name__)

DEFAULT_PORT = 502


class TcpTransport(Transport):
    """Blocking TCP socket driven from asyncio via worker threads.

    Settings:
      - host (str, required)
      - port (int, default 502)
      - connect_timeout (float, default 5.0)
      - poll_interval (float, default 0.1): socket timeout of each receive poll
      - tcp_nodelay (bool, default True)
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout: float = 5.0,
        poll_interval: float = 0.1,
        tcp_nodelay: bool = True,
        chunk_size: int = 1024,
        socket_factory: Callable[..., Any] = socket.create_connection,
    ) -> None:
        if not host:
            raise TransportError("MODBUS-TCP 'host' setting is required")
        try:
            port = int(port)
        except (TypeError, ValueError) as exc:
            raise TransportError("port must be an integer") from exc
        if not 1 <= port <= 65535:
            raise TransportError(f"Invalid port: {port}")

        super().__init__(f"{host}:{port}")
        self._host = str(host)
        self._port = port
        self._connect_timeout = float(connect_timeout)
        self._poll_interval = float(poll_interval)
        self._tcp_nodelay = bool(tcp_nodelay)
        self._chunk_size = int(chunk_size)
        self._socket_factory = socket_factory
        self._socket: Optional[Any] = None
        self._peer_closed = False

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_connected(self) -> bool:
        return self._socket is not None and not self._peer_closed

    async def connect(self) -> None:
        if self._socket is not None and not self._peer_closed:
            return
        if self._socket is not None:
            await self.close()

        try:
            sock = await asyncio.to_thread(
                self._socket_factory,
                (self._host, self._port),
                self._connect_timeout,
            )
        except OSError as exc:
            raise TransportError(f"Failed to connect to {self._host}:{self._port}: {exc}") from exc

        sock.settimeout(self._poll_interval)
        if self._tcp_nodelay:
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except (OSError, AttributeError):
                _LOG.debug("TCP_NODELAY not supported for %s", self.name, exc_info=True)

        self._socket = sock
        self._peer_closed = False
        _LOG.info("Connected to MODBUS-TCP endpoint %s", self.name)

    async def close(self) -> None:
        sock = self._socket
        self._socket = None
        self._peer_closed = False
        self._drop_pending_read()
        if sock is None:
            return

        def _close() -> None:
            try:
                sock.close()
            except OSError:
                _LOG.debug("Socket close failed for %s", self.name, exc_info=True)

        await asyncio.to_thread(_close)
        _LOG.info("Closed MODBUS-TCP connection %s", self.name)

    async def write(self, data: bytes) -> None:
        self._require_connected()
        sock = self._socket
        try:
            await asyncio.to_thread(sock.sendall, bytes(data))
        except OSError as exc:
            raise TransportError(f"Failed to send to {self.name}: {exc}") from exc

    async def read(self) -> bytes:
        self._require_connected()
        return await self._read_in_thread(self._recv)

    def _recv(self) -> bytes:
        while True:
            sock = self._socket
            if sock is None:
                return b""
            try:
                data = sock.recv(self._chunk_size)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._socket is None:
                    return b""
                raise TransportError(f"Receive from {self.name} failed: {exc}") from exc
            if not data:
                self._peer_closed = True
            return bytes(data)


__all__ = ["DEFAULT_PORT", "TcpTransport"]
