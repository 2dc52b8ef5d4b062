"""Master-side MODBUS client: one request pipeline for every transport.

The client never knows which transport it speaks. A framer wraps request
PDUs and recognises response frames; a transport moves bytes. Every public
operation validates its arguments, encodes a PDU, and runs it through
:meth:`ModbusClient.execute`, which holds the request gate from the moment
the ADU is written until the response is parsed or the exchange fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

from . import pdu as codec
from .byte_order import ByteOrder, DataType, Number, bytes_to_registers, from_typed, to_typed
from .checksum import Crc16Variant
from .errors import ModbusConnectionError, ModbusLengthMismatchError, ModbusTimeoutError, ModbusValidationError
from .framers import AsciiFramer, Framer, PendingRequest, RtuFramer, TcpFramer
from .framers.base import validate_unit_id
from .sync import FrameSynchronizer
from .transports import SerialTransport, TcpTransport, Transport

if TYPE_CHECKING:  # pragma: no cover
    from .config import ConnectionSettings


_LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0


class ModbusClient:
    """Async MODBUS master bound to one framer and one transport.

    Args:
        framer: Transport framing (:class:`TcpFramer`, :class:`RtuFramer`
            or :class:`AsciiFramer`)
        transport: Byte stream the framer's ADUs travel over
        timeout: Seconds to wait for a valid response to each request;
            ``None`` waits forever
        byte_order: Layout used by the typed register helpers. May be
            changed at any time.
        one_based_addressing: When set, non-zero addresses given by callers
            are decremented by one before encoding
    """

    def __init__(
        self,
        framer: Framer,
        transport: Transport,
        *,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        byte_order: ByteOrder = ByteOrder.BIG_ENDIAN,
        one_based_addressing: bool = False,
    ) -> None:
        if timeout is not None and timeout <= 0:
            raise ModbusValidationError(f"Timeout must be positive, got {timeout}")
        self.framer = framer
        self.transport = transport
        self.timeout = timeout
        self.byte_order = ByteOrder(byte_order)
        self.one_based_addressing = bool(one_based_addressing)
        self._sync = FrameSynchronizer(framer, transport)
        self._gate = asyncio.Lock()
        self._transaction_id = 0

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.framer.name}, {self.transport.name!r})"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        await self.transport.connect()

    async def close(self) -> None:
        await self.transport.close()
        self._sync.reset()

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    async def __aenter__(self) -> "ModbusClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    def _next_transaction_id(self) -> int:
        """Generate next MODBUS transaction ID."""

        self._transaction_id = (self._transaction_id + 1) & 0xFFFF
        return self._transaction_id

    def _wire_address(self, address: int) -> int:
        if self.one_based_addressing and address > 0:
            return address - 1
        return address

    async def execute(self, slave_id: int, request: bytes) -> bytes:
        """Send *request* (a PDU) to *slave_id* and return the response PDU.

        Raises:
            ModbusValidationError: Invalid slave id or empty request
            ModbusProtocolException: The device answered with an exception
            ModbusFramingError: The stream broke the framing contract
            ModbusTimeoutError: No valid response before the deadline
            ModbusConnectionError: The transport is closed or failed
        """

        validate_unit_id(slave_id)
        request = bytes(request)
        if not request:
            raise ModbusValidationError("Request PDU is empty")
        function = request[0]

        async with self._gate:
            if not self.transport.is_connected:
                raise ModbusConnectionError(f"Transport {self.transport.name!r} is not connected")

            transaction_id = self._next_transaction_id()
            adu = self.framer.build_adu(slave_id, request, transaction_id)
            pending = PendingRequest(slave_id, function, transaction_id)
            self._sync.reset()

            _LOG.debug("%s send unit=%d fc=0x%02X: %s", self.framer.name, slave_id, function, adu.hex(" "))
            loop = asyncio.get_running_loop()
            started = loop.time()
            try:
                await asyncio.wait_for(self.transport.write(adu), self.timeout)
            except asyncio.TimeoutError as exc:
                raise ModbusTimeoutError(
                    f"Sending {self.framer.name} request to unit {slave_id} took longer than {self.timeout}s"
                ) from exc
            # The deadline covers the write as well as the wait for the response
            remaining = None if self.timeout is None else max(0.0, self.timeout - (loop.time() - started))
            response = await self._sync.receive(pending, remaining)
            _LOG.debug("%s recv unit=%d: %s", self.framer.name, slave_id, response.hex(" "))

        codec.expect_function(response, function)
        return response

    # ------------------------------------------------------------------
    # Standard operations
    # ------------------------------------------------------------------

    async def read_coils(self, slave_id: int, address: int, quantity: int) -> List[bool]:
        request = codec.encode_read_coils(self._wire_address(address), quantity)
        response = await self.execute(slave_id, request)
        return codec.decode_read_bits_response(response, quantity)

    async def read_discrete_inputs(self, slave_id: int, address: int, quantity: int) -> List[bool]:
        request = codec.encode_read_discrete_inputs(self._wire_address(address), quantity)
        response = await self.execute(slave_id, request)
        return codec.decode_read_bits_response(response, quantity)

    async def read_holding_registers(self, slave_id: int, address: int, quantity: int) -> List[int]:
        request = codec.encode_read_holding_registers(self._wire_address(address), quantity)
        response = await self.execute(slave_id, request)
        return codec.decode_read_registers_response(response)

    async def read_input_registers(self, slave_id: int, address: int, quantity: int) -> List[int]:
        request = codec.encode_read_input_registers(self._wire_address(address), quantity)
        response = await self.execute(slave_id, request)
        return codec.decode_read_registers_response(response)

    async def write_single_coil(self, slave_id: int, address: int, value: bool) -> None:
        request = codec.encode_write_single_coil(self._wire_address(address), bool(value))
        response = await self.execute(slave_id, request)
        codec.decode_write_single_coil_response(response)

    async def write_single_register(self, slave_id: int, address: int, value: int) -> None:
        request = codec.encode_write_single_register(self._wire_address(address), value)
        response = await self.execute(slave_id, request)
        codec.decode_write_single_register_response(response)

    async def write_multiple_coils(self, slave_id: int, address: int, values: Sequence[bool]) -> None:
        request = codec.encode_write_multiple_coils(self._wire_address(address), [bool(v) for v in values])
        response = await self.execute(slave_id, request)
        codec.decode_write_multiple_response(response)

    async def write_multiple_registers(self, slave_id: int, address: int, values: Sequence[int]) -> None:
        request = codec.encode_write_multiple_registers(self._wire_address(address), list(values))
        response = await self.execute(slave_id, request)
        codec.decode_write_multiple_response(response)

    # ------------------------------------------------------------------
    # Raw and typed register access
    # ------------------------------------------------------------------

    async def read_holding_registers_bytes(self, slave_id: int, address: int, quantity: int) -> bytes:
        """Read *quantity* holding registers and return their raw bytes."""

        request = codec.encode_read_holding_registers(self._wire_address(address), quantity)
        return codec.decode_register_payload(await self.execute(slave_id, request))

    async def read_input_registers_bytes(self, slave_id: int, address: int, quantity: int) -> bytes:
        """Read *quantity* input registers and return their raw bytes."""

        request = codec.encode_read_input_registers(self._wire_address(address), quantity)
        return codec.decode_register_payload(await self.execute(slave_id, request))

    async def read_holding_registers_as(
        self, slave_id: int, address: int, quantity: int, data_type: DataType
    ) -> List[Number]:
        """Read *quantity* holding registers as values of *data_type*.

        *quantity* counts registers, so it must be a multiple of
        ``data_type.register_count``.
        """

        data_type = DataType(data_type)
        _check_register_count(quantity, data_type)
        data = await self.read_holding_registers_bytes(slave_id, address, quantity)
        return to_typed(data, data_type, self.byte_order)

    async def read_input_registers_as(
        self, slave_id: int, address: int, quantity: int, data_type: DataType
    ) -> List[Number]:
        data_type = DataType(data_type)
        _check_register_count(quantity, data_type)
        data = await self.read_input_registers_bytes(slave_id, address, quantity)
        return to_typed(data, data_type, self.byte_order)

    async def write_multiple_registers_bytes(self, slave_id: int, address: int, data: bytes) -> None:
        """Write raw big-endian register bytes starting at *address*."""

        if len(data) % 2 != 0:
            raise ModbusLengthMismatchError(f"Register payload of {len(data)} bytes has an odd length")
        await self.write_multiple_registers(slave_id, address, bytes_to_registers(bytes(data)))

    async def write_multiple_registers_as(
        self, slave_id: int, address: int, values: Sequence[Number], data_type: DataType
    ) -> None:
        """Encode *values* as *data_type* using :attr:`byte_order` and write them."""

        registers = from_typed(values, DataType(data_type), self.byte_order)
        await self.write_multiple_registers(slave_id, address, registers)


def _check_register_count(quantity: int, data_type: DataType) -> None:
    if quantity % data_type.register_count != 0:
        raise ModbusLengthMismatchError(
            f"{quantity} registers cannot hold whole {data_type.value} values "
            f"({data_type.register_count} registers each)"
        )


# ----------------------------------------------------------------------
# Factories
# ----------------------------------------------------------------------


def create_tcp_client(
    host: str,
    port: int = 502,
    *,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    connect_timeout: float = 5.0,
    byte_order: ByteOrder = ByteOrder.BIG_ENDIAN,
    one_based_addressing: bool = False,
) -> ModbusClient:
    transport = TcpTransport(host, port, connect_timeout=connect_timeout)
    return ModbusClient(
        TcpFramer(),
        transport,
        timeout=timeout,
        byte_order=byte_order,
        one_based_addressing=one_based_addressing,
    )


def create_rtu_client(
    port: str,
    baudrate: int = 9600,
    *,
    bytesize: int = 8,
    parity: str = "N",
    stopbits: float = 1,
    crc_variant: Crc16Variant = Crc16Variant.EVEN,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    byte_order: ByteOrder = ByteOrder.BIG_ENDIAN,
    one_based_addressing: bool = False,
    **serial_options,
) -> ModbusClient:
    transport = SerialTransport(port, baudrate, bytesize, parity, stopbits, **serial_options)
    return ModbusClient(
        RtuFramer(Crc16Variant(crc_variant)),
        transport,
        timeout=timeout,
        byte_order=byte_order,
        one_based_addressing=one_based_addressing,
    )


def create_ascii_client(
    port: str,
    baudrate: int = 9600,
    *,
    bytesize: int = 7,
    parity: str = "E",
    stopbits: float = 1,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    byte_order: ByteOrder = ByteOrder.BIG_ENDIAN,
    one_based_addressing: bool = False,
    **serial_options,
) -> ModbusClient:
    transport = SerialTransport(port, baudrate, bytesize, parity, stopbits, **serial_options)
    return ModbusClient(
        AsciiFramer(),
        transport,
        timeout=timeout,
        byte_order=byte_order,
        one_based_addressing=one_based_addressing,
    )


def create_client(settings: "ConnectionSettings") -> ModbusClient:
    """Build a client from a :class:`~modbus_engine.config.ConnectionSettings`."""

    common = {
        "timeout": settings.timeout,
        "byte_order": settings.byte_order,
        "one_based_addressing": settings.one_based_addressing,
    }
    if settings.transport == "tcp":
        return create_tcp_client(
            settings.host,
            settings.port,
            connect_timeout=settings.connect_timeout,
            **common,
        )

    serial_options = {
        "bytesize": settings.bytesize,
        "parity": settings.parity,
        "stopbits": settings.stopbits,
        **settings.serial_options,
    }
    if settings.transport == "rtu":
        return create_rtu_client(
            settings.serial_port,
            settings.baudrate,
            crc_variant=settings.crc_variant,
            **serial_options,
            **common,
        )
    if settings.transport == "ascii":
        return create_ascii_client(settings.serial_port, settings.baudrate, **serial_options, **common)
    raise ModbusValidationError(f"Unsupported transport {settings.transport!r}")


__all__ = [
    "DEFAULT_TIMEOUT",
    "ModbusClient",
    "create_ascii_client",
    "create_client",
    "create_rtu_client",
    "create_tcp_client",
]
