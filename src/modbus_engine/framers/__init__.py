"""Transport framers (TCP, RTU, ASCII)."""

from .ascii import AsciiFramer
from .base import Framer, PendingRequest, Scan, SyncState
from .rtu import RtuFramer
from .tcp import MbapHeader, TcpFramer

__all__ = [
	"AsciiFramer",
	"Framer",
	"MbapHeader",
	"PendingRequest",
	"RtuFramer",
	"Scan",
	"SyncState",
	"TcpFramer",
]
