"""Command-line entry point for issuing single MODBUS requests."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .byte_order import ByteOrder, DataType, from_typed
from .client import ModbusClient, create_client
from .config import ConfigurationError, ConnectionSettings, load_config
from .errors import ModbusError


LOGGER = logging.getLogger("modbus_engine")

_READ_COMMANDS = {
    "read-coils": "read_coils",
    "read-discrete": "read_discrete_inputs",
    "read-holding": "read_holding_registers",
    "read-input": "read_input_registers",
}


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in {"1", "on", "true", "yes"}:
        return True
    if lowered in {"0", "off", "false", "no"}:
        return False
    raise argparse.ArgumentTypeError(f"Invalid coil value {text!r}; use 1/0, on/off or true/false")


def _parse_number(text: str, data_type: DataType):
    try:
        if data_type in (DataType.FLOAT32, DataType.FLOAT64):
            return float(text)
        return int(text, 0)
    except ValueError as exc:
        raise ModbusError(f"Invalid {data_type.value} value {text!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modbus_engine",
        description="Send a single MODBUS request over a configured connection",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to the connection configuration file",
    )
    parser.add_argument("--connection", help="Connection name from the configuration file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument(
        "--byte-order",
        choices=[order.value for order in ByteOrder],
        help="Override the connection's byte order for typed values",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    type_choices = [data_type.value for data_type in DataType]

    for name in _READ_COMMANDS:
        sub = commands.add_parser(name, help=f"{name.replace('-', ' ')}")
        sub.add_argument("--slave", type=int, required=True, help="Slave / unit id")
        sub.add_argument("--address", type=int, required=True, help="Start address")
        sub.add_argument("--count", type=int, default=1, help="Number of items (registers for typed reads)")
        if name in ("read-holding", "read-input"):
            sub.add_argument("--type", choices=type_choices, help="Interpret registers as this type")

    coil = commands.add_parser("write-coil", help="write one or more coils")
    coil.add_argument("--slave", type=int, required=True)
    coil.add_argument("--address", type=int, required=True)
    coil.add_argument("--value", "--values", dest="values", nargs="+", type=_parse_bool, required=True)

    register = commands.add_parser("write-register", help="write a single holding register")
    register.add_argument("--slave", type=int, required=True)
    register.add_argument("--address", type=int, required=True)
    register.add_argument("--value", "--values", dest="values", nargs=1, required=True)
    register.add_argument("--type", choices=["uint16", "int16"], default="uint16")

    registers = commands.add_parser("write-registers", help="write multiple holding registers")
    registers.add_argument("--slave", type=int, required=True)
    registers.add_argument("--address", type=int, required=True)
    registers.add_argument("--values", "--value", dest="values", nargs="+", required=True)
    registers.add_argument("--type", choices=type_choices, default="uint16")

    return parser


async def run_command(client: ModbusClient, args: argparse.Namespace) -> Optional[List]:
    """Execute the parsed sub-command on *client*; return read results."""

    command = args.command
    if command in _READ_COMMANDS:
        data_type = getattr(args, "type", None)
        if command == "read-holding" and data_type:
            return await client.read_holding_registers_as(args.slave, args.address, args.count, DataType(data_type))
        if command == "read-input" and data_type:
            return await client.read_input_registers_as(args.slave, args.address, args.count, DataType(data_type))
        method = getattr(client, _READ_COMMANDS[command])
        return await method(args.slave, args.address, args.count)

    if command == "write-coil":
        if len(args.values) == 1:
            await client.write_single_coil(args.slave, args.address, args.values[0])
        else:
            await client.write_multiple_coils(args.slave, args.address, args.values)
        return None

    data_type = DataType(args.type)
    values = [_parse_number(text, data_type) for text in args.values]
    if command == "write-register":
        register = from_typed(values, data_type, client.byte_order)[0]
        await client.write_single_register(args.slave, args.address, register)
    elif command == "write-registers":
        await client.write_multiple_registers_as(args.slave, args.address, values, data_type)
    else:  # pragma: no cover - argparse restricts choices
        raise ModbusError(f"Unknown command {command!r}")
    return None


async def _run(settings: ConnectionSettings, args: argparse.Namespace) -> Optional[List]:
    client = create_client(settings)
    if args.byte_order:
        client.byte_order = ByteOrder(args.byte_order)
    async with client:
        return await run_command(client, args)


def _format(values: Sequence) -> str:
    return " ".join(str(int(v)) if isinstance(v, bool) else str(v) for v in values)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="[%(asctime)s] %(levelname)s %(message)s")

    try:
        settings = load_config(args.config).get(args.connection)
        result = asyncio.run(_run(settings, args))
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return 2
    except ModbusError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1

    if result is not None:
        print(_format(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
