"""Unit tests for the MODBUS client request pipeline using fake transports."""

from __future__ import annotations

import asyncio
import struct
import sys
import unittest
from pathlib import Path
from typing import Callable, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from modbus_engine.byte_order import ByteOrder, DataType
from modbus_engine.checksum import Crc16Variant, crc16
from modbus_engine.client import (
    ModbusClient,
    create_ascii_client,
    create_client,
    create_rtu_client,
    create_tcp_client,
)
from modbus_engine.config import ConnectionSettings
from modbus_engine.errors import (
    ModbusConnectionError,
    ModbusFramingError,
    ModbusLengthMismatchError,
    ModbusOutOfRangeError,
    ModbusProtocolException,
    ModbusTimeoutError,
)
from modbus_engine.framers import AsciiFramer, RtuFramer, TcpFramer
from modbus_engine.pdu import ExceptionCode
from modbus_engine.transports import SerialTransport, TcpTransport
from modbus_engine.transports.base import Transport


Responder = Callable[[bytes], List[bytes]]


class FakeTransport(Transport):
    """In-memory transport; ``responder`` maps each written ADU to reply chunks."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        super().__init__("fake")
        self.responder = responder
        self.connected = False
        self.sent: List[bytes] = []
        self._rx: "asyncio.Queue[bytes]" = asyncio.Queue()

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def write(self, data: bytes) -> None:
        self._require_connected()
        self.sent.append(bytes(data))
        if self.responder is not None:
            for chunk in self.responder(bytes(data)):
                self.push(chunk)

    def push(self, chunk: bytes) -> None:
        self._rx.put_nowait(chunk)

    async def read(self) -> bytes:
        return await self._rx.get()


class SlowTransport(FakeTransport):
    """Fake transport whose writes and reads each take a fixed time."""

    def __init__(self, responder: Optional[Responder] = None, *, write_delay: float = 0.0, read_delay: float = 0.0) -> None:
        super().__init__(responder)
        self.write_delay = write_delay
        self.read_delay = read_delay

    async def write(self, data: bytes) -> None:
        await asyncio.sleep(self.write_delay)
        await super().write(data)

    async def read(self) -> bytes:
        chunk = await super().read()
        await asyncio.sleep(self.read_delay)
        return chunk


def tcp_device(reply: Callable[[bytes], bytes]) -> Responder:
    def respond(adu: bytes) -> List[bytes]:
        tid = struct.unpack(">H", adu[:2])[0]
        pdu = reply(adu[7:])
        frame = TcpFramer().build_adu(adu[6], pdu, tid)
        # Deliver in two pieces to exercise reassembly
        return [frame[:5], frame[5:]]

    return respond


def rtu_device(reply: Callable[[bytes], bytes], noise: bytes = b"") -> Responder:
    def respond(adu: bytes) -> List[bytes]:
        frame = bytes([adu[0]]) + reply(adu[1:-2])
        return [noise + frame + struct.pack("<H", crc16(frame))]

    return respond


def ascii_device(reply: Callable[[bytes], bytes]) -> Responder:
    framer = AsciiFramer()

    def respond(adu: bytes) -> List[bytes]:
        unit = int(adu[1:3], 16)
        request = framer.extract_pdu(adu)
        frame = framer.build_adu(unit, reply(request))
        return [frame[idx : idx + 4] for idx in range(0, len(frame), 4)]

    return respond


def registers_reply(*registers: int) -> Callable[[bytes], bytes]:
    def reply(request: bytes) -> bytes:
        body = b"".join(struct.pack(">H", r) for r in registers)
        return bytes([request[0], len(body)]) + body

    return reply


def echo_reply(request: bytes) -> bytes:
    return request[:5]


def _run(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
        asyncio.set_event_loop(None)


class TcpClientTests(unittest.TestCase):
    def test_read_holding_registers(self) -> None:
        transport = FakeTransport(tcp_device(registers_reply(0x000A, 0x0102)))
        client = ModbusClient(TcpFramer(), transport)

        async def scenario():
            async with client:
                return await client.read_holding_registers(0x11, 0x006B, 2)

        self.assertEqual(_run(scenario()), [0x000A, 0x0102])
        self.assertEqual(transport.sent[0], bytes.fromhex("0001000000061103006B0002"))
        self.assertFalse(transport.is_connected)

    def test_transaction_ids_increment(self) -> None:
        transport = FakeTransport(tcp_device(echo_reply))
        client = ModbusClient(TcpFramer(), transport)

        async def scenario():
            await client.connect()
            await client.write_single_register(1, 0, 5)
            await client.write_single_register(1, 0, 6)

        _run(scenario())
        self.assertEqual([adu[:2] for adu in transport.sent], [b"\x00\x01", b"\x00\x02"])

    def test_transaction_id_wraps(self) -> None:
        client = ModbusClient(TcpFramer(), FakeTransport())
        client._transaction_id = 0xFFFF
        self.assertEqual(client._next_transaction_id(), 0)

    def test_stale_partial_frame_discarded(self) -> None:
        transport = FakeTransport()
        client = ModbusClient(TcpFramer(), transport, timeout=0.05)

        async def scenario():
            await client.connect()
            transport.push(b"\x00\x01\x00")
            with self.assertRaises(ModbusTimeoutError):
                await client.read_input_registers(1, 0, 1)
            transport.responder = tcp_device(registers_reply(42))
            return await client.read_input_registers(1, 0, 1)

        self.assertEqual(_run(scenario()), [42])

    def test_mismatched_function_code(self) -> None:
        transport = FakeTransport(tcp_device(lambda request: bytes([0x04, 0x02, 0x00, 0x01])))
        client = ModbusClient(TcpFramer(), transport)

        async def scenario():
            await client.connect()
            await client.read_holding_registers(1, 0, 1)

        with self.assertRaises(ModbusFramingError):
            _run(scenario())


class RtuClientTests(unittest.TestCase):
    def test_read_coils_with_noise(self) -> None:
        transport = FakeTransport(rtu_device(lambda request: bytes.fromhex("0102CD01"), noise=b"\xff\x00\x7e"))
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            return await client.read_coils(1, 0x13, 10)

        self.assertEqual(
            _run(scenario()),
            [True, False, True, True, False, False, True, True, True, False],
        )
        self.assertEqual(transport.sent[0][:-2], bytes.fromhex("01010013000A"))

    def test_write_operations(self) -> None:
        transport = FakeTransport(rtu_device(echo_reply))
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            await client.write_single_coil(1, 0xAC, True)
            await client.write_multiple_coils(1, 0x13, [True, False, True])
            await client.write_multiple_registers(1, 1, [0x000A, 0x0102])

        _run(scenario())
        self.assertEqual(transport.sent[0][:-2], bytes.fromhex("010500ACFF00"))
        self.assertEqual(transport.sent[1][:-2], bytes.fromhex("010F001300030105"))
        self.assertEqual(transport.sent[2][:-2], bytes.fromhex("01100001000204000A0102"))

    def test_odd_crc_variant(self) -> None:
        def respond(adu: bytes) -> List[bytes]:
            frame = bytes([adu[0]]) + bytes.fromhex("06000100FF")
            return [frame + struct.pack("<H", crc16(frame, Crc16Variant.ODD))]

        transport = FakeTransport(respond)
        client = ModbusClient(RtuFramer(Crc16Variant.ODD), transport)

        async def scenario():
            await client.connect()
            await client.write_single_register(1, 1, 0xFF)

        _run(scenario())
        sent = transport.sent[0]
        self.assertEqual(struct.unpack("<H", sent[-2:])[0], crc16(sent[:-2], Crc16Variant.ODD))

    def test_exception_response_releases_gate(self) -> None:
        replies = [lambda request: bytes([request[0] | 0x80, 0x02]), registers_reply(7)]
        transport = FakeTransport(rtu_device(lambda request: replies.pop(0)(request)))
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            with self.assertRaises(ModbusProtocolException) as ctx:
                await client.read_holding_registers(1, 0, 1)
            self.assertEqual(ctx.exception.exception_code, ExceptionCode.ILLEGAL_DATA_ADDRESS)
            self.assertEqual(ctx.exception.function, 0x03)
            self.assertFalse(client._gate.locked())
            return await client.read_holding_registers(1, 0, 1)

        self.assertEqual(_run(scenario()), [7])

    def test_frames_for_other_units_ignored(self) -> None:
        def respond(adu: bytes) -> List[bytes]:
            other = bytes([0x02]) + bytes.fromhex("03020009")
            mine = bytes([adu[0]]) + bytes.fromhex("03020001")
            return [
                other + struct.pack("<H", crc16(other)),
                mine + struct.pack("<H", crc16(mine)),
            ]

        client = ModbusClient(RtuFramer(), FakeTransport(respond))

        async def scenario():
            await client.connect()
            return await client.read_holding_registers(1, 0, 1)

        self.assertEqual(_run(scenario()), [1])


class AsciiClientTests(unittest.TestCase):
    def test_typed_read_with_word_swap(self) -> None:
        # 3.14159274 as float32 with swapped words
        transport = FakeTransport(ascii_device(registers_reply(0x0FDB, 0x4049)))
        client = ModbusClient(AsciiFramer(), transport, byte_order=ByteOrder.BIG_ENDIAN_SWAP)

        async def scenario():
            await client.connect()
            return await client.read_input_registers_as(1, 0, 2, DataType.FLOAT32)

        values = _run(scenario())
        self.assertEqual(len(values), 1)
        self.assertAlmostEqual(values[0], 3.14159274, places=6)
        self.assertTrue(transport.sent[0].startswith(b":01040000"))

    def test_typed_write(self) -> None:
        transport = FakeTransport(ascii_device(echo_reply))
        client = ModbusClient(AsciiFramer(), transport)
        client.byte_order = ByteOrder.LITTLE_ENDIAN

        async def scenario():
            await client.connect()
            await client.write_multiple_registers_as(1, 0x10, [0x12345678], DataType.UINT32)

        _run(scenario())
        request = AsciiFramer().extract_pdu(transport.sent[0])
        self.assertEqual(request, bytes.fromhex("10001000020478563412"))

    def test_raw_bytes_helpers(self) -> None:
        transport = FakeTransport(ascii_device(registers_reply(0x1234, 0x5678)))
        client = ModbusClient(AsciiFramer(), transport)

        async def scenario():
            await client.connect()
            data = await client.read_holding_registers_bytes(1, 0, 2)
            transport.responder = ascii_device(echo_reply)
            await client.write_multiple_registers_bytes(1, 0, data)
            return data

        self.assertEqual(_run(scenario()), bytes.fromhex("12345678"))
        self.assertEqual(AsciiFramer().extract_pdu(transport.sent[1]), bytes.fromhex("1000000002041234" "5678"))

    def test_typed_quantity_must_fit_type(self) -> None:
        client = ModbusClient(AsciiFramer(), FakeTransport())

        async def scenario():
            await client.connect()
            await client.read_holding_registers_as(1, 0, 3, DataType.FLOAT32)

        with self.assertRaises(ModbusLengthMismatchError):
            _run(scenario())


class PipelineFailureTests(unittest.TestCase):
    def test_timeout_releases_gate(self) -> None:
        transport = FakeTransport()
        client = ModbusClient(RtuFramer(), transport, timeout=0.05)

        async def scenario():
            await client.connect()
            with self.assertRaises(ModbusTimeoutError):
                await client.read_holding_registers(1, 0, 1)
            self.assertFalse(client._gate.locked())
            self.assertTrue(client.is_connected)

        _run(scenario())

    def test_slow_write_counts_against_timeout(self) -> None:
        transport = SlowTransport(rtu_device(registers_reply(5)), write_delay=0.15, read_delay=0.1)
        client = ModbusClient(RtuFramer(), transport, timeout=0.2)

        async def scenario():
            await client.connect()
            with self.assertRaises(ModbusTimeoutError):
                await client.read_holding_registers(1, 0, 1)
            self.assertFalse(client._gate.locked())

        _run(scenario())

    def test_write_that_never_finishes_times_out(self) -> None:
        transport = SlowTransport(write_delay=3600)
        client = ModbusClient(TcpFramer(), transport, timeout=0.05)

        async def scenario():
            await client.connect()
            with self.assertRaises(ModbusTimeoutError):
                await client.write_single_register(1, 0, 1)
            self.assertFalse(client._gate.locked())
            self.assertTrue(client.is_connected)

        _run(scenario())

    def test_connection_closed_while_waiting(self) -> None:
        transport = FakeTransport(lambda adu: [b"\x01\x03", b""])
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            await client.read_holding_registers(1, 0, 1)

        with self.assertRaises(ModbusConnectionError):
            _run(scenario())

    def test_not_connected(self) -> None:
        transport = FakeTransport()
        client = ModbusClient(TcpFramer(), transport)
        with self.assertRaises(ModbusConnectionError):
            _run(client.read_coils(1, 0, 1))
        self.assertEqual(transport.sent, [])

    def test_cancellation_releases_gate(self) -> None:
        transport = FakeTransport()
        client = ModbusClient(TcpFramer(), transport, timeout=None)

        async def scenario():
            await client.connect()
            task = asyncio.ensure_future(client.read_holding_registers(1, 0, 1))
            await asyncio.sleep(0.01)
            self.assertTrue(client._gate.locked())
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task
            self.assertFalse(client._gate.locked())
            transport.responder = tcp_device(registers_reply(9))
            return await client.read_holding_registers(1, 0, 1)

        self.assertEqual(_run(scenario()), [9])

    def test_requests_are_serialised(self) -> None:
        transport = FakeTransport(rtu_device(registers_reply(3)))
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            return await asyncio.gather(*(client.read_holding_registers(1, i, 1) for i in range(5)))

        self.assertEqual(_run(scenario()), [[3]] * 5)
        self.assertEqual(len(transport.sent), 5)

    def test_validation_happens_before_io(self) -> None:
        transport = FakeTransport(rtu_device(echo_reply))
        client = ModbusClient(RtuFramer(), transport)

        async def scenario():
            await client.connect()
            with self.assertRaises(ModbusOutOfRangeError):
                await client.read_holding_registers(256, 0, 1)
            with self.assertRaises(ModbusOutOfRangeError):
                await client.read_holding_registers(1, 0, 126)
            with self.assertRaises(ModbusOutOfRangeError):
                await client.write_single_register(1, 0, 0x10000)

        _run(scenario())
        self.assertEqual(transport.sent, [])


class AddressingTests(unittest.TestCase):
    def _sent_address(self, one_based: bool, address: int) -> int:
        transport = FakeTransport(rtu_device(registers_reply(0)))
        client = ModbusClient(RtuFramer(), transport, one_based_addressing=one_based)

        async def scenario():
            await client.connect()
            await client.read_holding_registers(1, address, 1)

        _run(scenario())
        return struct.unpack(">H", transport.sent[0][2:4])[0]

    def test_zero_based_passthrough(self) -> None:
        self.assertEqual(self._sent_address(False, 40), 40)

    def test_one_based_decrements(self) -> None:
        self.assertEqual(self._sent_address(True, 40), 39)
        self.assertEqual(self._sent_address(True, 1), 0)

    def test_one_based_zero_unchanged(self) -> None:
        self.assertEqual(self._sent_address(True, 0), 0)


class FactoryTests(unittest.TestCase):
    def test_tcp_factory(self) -> None:
        client = create_tcp_client("127.0.0.1", 1502, timeout=2.0)
        self.assertIsInstance(client.framer, TcpFramer)
        self.assertIsInstance(client.transport, TcpTransport)
        self.assertEqual(client.timeout, 2.0)

    def test_serial_factories(self) -> None:
        rtu = create_rtu_client("loop://", 19200, crc_variant=Crc16Variant.ODD)
        self.assertIsInstance(rtu.framer, RtuFramer)
        self.assertIs(rtu.framer.crc_variant, Crc16Variant.ODD)
        self.assertIsInstance(rtu.transport, SerialTransport)

        ascii_client = create_ascii_client("loop://")
        self.assertIsInstance(ascii_client.framer, AsciiFramer)
        self.assertEqual(ascii_client.transport.settings["bytesize"], 7)
        self.assertEqual(ascii_client.transport.settings["parity"], "E")

    def test_create_client_from_settings(self) -> None:
        settings = ConnectionSettings(
            name="meter",
            transport="rtu",
            serial_port="loop://",
            baudrate=38400,
            parity="E",
            byte_order=ByteOrder.LITTLE_ENDIAN_SWAP,
            one_based_addressing=True,
        )
        client = create_client(settings)
        self.assertIsInstance(client.framer, RtuFramer)
        self.assertEqual(client.transport.settings["baudrate"], 38400)
        self.assertIs(client.byte_order, ByteOrder.LITTLE_ENDIAN_SWAP)
        self.assertTrue(client.one_based_addressing)

        tcp = create_client(ConnectionSettings(name="plc", transport="tcp", host="10.0.0.2"))
        self.assertIsInstance(tcp.transport, TcpTransport)
        self.assertEqual(tcp.transport.port, 502)


if __name__ == "__main__":
    unittest.main()
