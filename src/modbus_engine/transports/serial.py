"""pyserial transport used by MODBUS-RTU and MODBUS-ASCII connections."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Dict, Optional

import serial

from .base import Transport
from ..errors import TransportError


_LOG = logging.getLogger(__name__)

_VALID_PARITY = {"N", "E", "O", "M", "S"}
_ALLOWED_STOPBITS = {1, 1.5, 2}
_ALLOWED_BYTESIZE = {5, 6, 7, 8}


def normalize_port(port: str) -> str:
	"""Normalize platform-specific serial port names."""

	if "://" in port:
		# URL-style transports (socket://, loop://, etc.) must remain intact
		return port
	if os.name == "nt":
		if port.startswith("\\\\.\\"):
			return port
		return f"\\\\.\\{port}"
	return port


class SerialTransport(Transport):
	"""A pyserial port driven from asyncio via worker threads.

	The port is opened with a short read timeout (``poll_interval``) so the
	reader thread notices :meth:`close` promptly; request deadlines are
	enforced by the caller, not by pyserial.
	"""

	def __init__(
		self,
		port: str,
		baudrate: int = 9600,
		bytesize: int = 8,
		parity: str = "N",
		stopbits: float = 1,
		*,
		poll_interval: float = 0.05,
		write_timeout: Optional[float] = 1.0,
		xonxoff: bool = False,
		rtscts: bool = False,
		dsrdtr: bool = False,
		serial_factory: Callable[..., Any] = serial.Serial,
	) -> None:
		if not port:
			raise TransportError("Serial transport requires a 'port' setting")

		try:
			baudrate = int(baudrate)
		except (TypeError, ValueError) as exc:
			raise TransportError("baudrate must be an integer") from exc
		if baudrate <= 0:
			raise TransportError(f"Invalid baudrate: {baudrate}")

		try:
			bytesize = int(bytesize)
		except (TypeError, ValueError) as exc:
			raise TransportError("bytesize must be an integer") from exc
		if bytesize not in _ALLOWED_BYTESIZE:
			raise TransportError("bytesize must be one of 5, 6, 7, 8")

		parity = str(parity).upper()
		if parity not in _VALID_PARITY:
			raise TransportError(f"Invalid parity {parity!r}; expected one of {sorted(_VALID_PARITY)}")

		try:
			stopbits = float(stopbits)
		except (TypeError, ValueError) as exc:
			raise TransportError("stopbits must be numeric") from exc
		if stopbits not in _ALLOWED_STOPBITS:
			raise TransportError("stopbits must be one of 1, 1.5, 2")
		if stopbits.is_integer():
			stopbits = int(stopbits)

		normalized = normalize_port(str(port))
		super().__init__(normalized)
		self._serial_kwargs: Dict[str, Any] = {
			"port": normalized,
			"baudrate": baudrate,
			"bytesize": bytesize,
			"parity": parity,
			"stopbits": stopbits,
			"timeout": float(poll_interval),
			"write_timeout": write_timeout,
			"xonxoff": bool(xonxoff),
			"rtscts": bool(rtscts),
			"dsrdtr": bool(dsrdtr),
		}
		self._serial_factory = serial_factory
		self._serial: Optional[Any] = None

	@property
	def settings(self) -> Dict[str, Any]:
		"""The keyword arguments handed to the serial factory."""

		return dict(self._serial_kwargs)

	@property
	def is_connected(self) -> bool:
		serial_obj = self._serial
		return serial_obj is not None and bool(getattr(serial_obj, "is_open", True))

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	async def connect(self) -> None:
		if self.is_connected:
			return
		try:
			serial_obj = await asyncio.to_thread(self._open_serial)
		except (serial.SerialException, OSError, ValueError) as exc:
			raise TransportError(f"Failed to open serial port {self.name!r}: {exc}") from exc
		self._serial = serial_obj
		_LOG.info("Opened serial port %s (%s)", self.name, self._describe())

	async def close(self) -> None:
		serial_obj = self._serial
		self._serial = None
		self._drop_pending_read()
		if serial_obj is None:
			return

		def _close() -> None:
			try:
				serial_obj.close()
			except (serial.SerialException, OSError):
				_LOG.debug("Serial close failed for port %s", self.name, exc_info=True)

		await asyncio.to_thread(_close)
		_LOG.info("Closed serial port %s", self.name)

	# ------------------------------------------------------------------
	# I/O
	# ------------------------------------------------------------------

	async def write(self, data: bytes) -> None:
		self._require_connected()
		serial_obj = self._serial

		def _write() -> None:
			serial_obj.write(bytes(data))
			serial_obj.flush()

		try:
			await asyncio.to_thread(_write)
		except (serial.SerialException, OSError) as exc:
			raise TransportError(f"Serial write on {self.name!r} failed: {exc}") from exc

	async def read(self) -> bytes:
		self._require_connected()
		return await self._read_in_thread(self._read_chunk)

	def _read_chunk(self) -> bytes:
		while True:
			serial_obj = self._serial
			if serial_obj is None:
				return b""
			try:
				waiting = int(getattr(serial_obj, "in_waiting", 0) or 0)
				data = serial_obj.read(waiting or 1)
			except (serial.SerialException, OSError) as exc:
				if self._serial is None:
					return b""
				raise TransportError(f"Serial read on {self.name!r} failed: {exc}") from exc
			if data:
				return bytes(data)

	# ------------------------------------------------------------------
	# Helpers
	# ------------------------------------------------------------------

	def _open_serial(self) -> Any:
		serial_obj = self._serial_factory(**self._serial_kwargs)
		# Best effort cleanup of residual buffers before first use.
		try:
			serial_obj.reset_input_buffer()
			serial_obj.reset_output_buffer()
		except (serial.SerialException, OSError, AttributeError):
			_LOG.debug("Serial buffer reset failed for port %s", self.name, exc_info=True)
		return serial_obj

	def _describe(self) -> str:
		kw = self._serial_kwargs
		return f"{kw['baudrate']} {kw['bytesize']}{kw['parity']}{kw['stopbits']}"


__all__ = ["SerialTransport", "normalize_port"]
