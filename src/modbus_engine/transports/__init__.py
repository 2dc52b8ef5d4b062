"""Byte-stream transports (TCP socket, pyserial)."""

from .base import Transport, TransportError
from .serial import SerialTransport, normalize_port
from .tcp import TcpTransport

__all__ = [
	"SerialTransport",
	"TcpTransport",
	"Transport",
	"TransportError",
	"normalize_port",
]
