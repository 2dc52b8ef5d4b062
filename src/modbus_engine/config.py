"""Configuration loading utilities for MODBUS connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .byte_order import ByteOrder
from .checksum import Crc16Variant


TRANSPORTS = ("tcp", "rtu", "ascii")

# Serial options passed straight through to the transport
_SERIAL_PASSTHROUGH = ("poll_interval", "write_timeout", "xonxoff", "rtscts", "dsrdtr")


@dataclass(slots=True)
class ConnectionSettings:
    """Definition of one MODBUS connection.

    ``port`` is the TCP port for ``tcp`` connections; serial connections
    keep their device path in ``serial_port``.
    """

    name: str
    transport: str
    host: Optional[str] = None
    port: int = 502
    serial_port: Optional[str] = None
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = "N"
    stopbits: float = 1
    timeout: float = 1.0
    connect_timeout: float = 5.0
    byte_order: ByteOrder = ByteOrder.BIG_ENDIAN
    crc_variant: Crc16Variant = Crc16Variant.EVEN
    one_based_addressing: bool = False
    serial_options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Config:
    """Top-level configuration container."""

    connections: Dict[str, ConnectionSettings] = field(default_factory=dict)
    default: Optional[str] = None

    def get(self, name: Optional[str] = None) -> ConnectionSettings:
        """Return connection *name*, or the default one when *name* is omitted."""

        if name is None:
            name = self.default
            if name is None:
                if len(self.connections) != 1:
                    raise ConfigurationError(
                        "No connection selected and configuration does not define exactly one"
                    )
                name = next(iter(self.connections))
        try:
            return self.connections[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown connection {name!r}") from exc


class ConfigurationError(RuntimeError):
    """Raised when configuration parsing fails."""


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in configuration file: {path}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    return data


def _number(name: str, key: str, value: Any, kind=float):
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Connection {name!r}: {key} must be numeric, got {value!r}") from exc


def _enum(name: str, key: str, value: Any, enum_cls):
    try:
        return enum_cls(str(value).lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"Connection {name!r}: unknown {key} {value!r} (expected one of {choices})"
        ) from exc


def _parse_connection(name: str, body: Mapping[str, Any]) -> ConnectionSettings:
    if not isinstance(body, dict):
        raise ConfigurationError(f"Connection definition for {name!r} must be a mapping")

    transport = body.get("transport")
    if not isinstance(transport, str) or transport.lower() not in TRANSPORTS:
        raise ConfigurationError(
            f"Connection {name!r} must define 'transport' as one of {', '.join(TRANSPORTS)}"
        )
    transport = transport.lower()

    timeout = _number(name, "timeout", body.get("timeout", 1.0))
    if timeout <= 0:
        raise ConfigurationError(f"Connection {name!r}: timeout must be positive")

    settings = ConnectionSettings(
        name=name,
        transport=transport,
        timeout=timeout,
        byte_order=_enum(name, "byte_order", body.get("byte_order", "big_endian"), ByteOrder),
        one_based_addressing=bool(body.get("one_based_addressing", False)),
    )

    if transport == "tcp":
        host = body.get("host")
        if not isinstance(host, str) or not host:
            raise ConfigurationError(f"Connection {name!r} must define a string 'host'")
        settings.host = host
        settings.port = _number(name, "port", body.get("port", 502), int)
        settings.connect_timeout = _number(name, "connect_timeout", body.get("connect_timeout", 5.0))
        return settings

    port = body.get("port")
    if not isinstance(port, str) or not port:
        raise ConfigurationError(f"Connection {name!r} must define a serial device path in 'port'")
    settings.serial_port = port
    settings.baudrate = _number(name, "baudrate", body.get("baudrate", 9600), int)
    # MODBUS ASCII conventionally runs 7E1
    default_bytesize = 7 if transport == "ascii" else 8
    default_parity = "E" if transport == "ascii" else "N"
    settings.bytesize = _number(name, "bytesize", body.get("bytesize", default_bytesize), int)
    settings.parity = str(body.get("parity", default_parity)).upper()
    settings.stopbits = _number(name, "stopbits", body.get("stopbits", 1))
    if transport == "rtu":
        settings.crc_variant = _enum(name, "crc_variant", body.get("crc_variant", "even"), Crc16Variant)
    settings.serial_options = {key: body[key] for key in _SERIAL_PASSTHROUGH if key in body}
    return settings


def parse_config_dict(raw: Mapping[str, Any]) -> Config:
    """Parse configuration from an in-memory mapping."""

    if not isinstance(raw, Mapping):
        raise ConfigurationError("Configuration root must be a mapping")

    connections_raw = raw.get("connections", {})
    if connections_raw is None:
        connections_raw = {}
    if not isinstance(connections_raw, dict):
        raise ConfigurationError("connections section must be a mapping")

    connections: Dict[str, ConnectionSettings] = {}
    for name, body in connections_raw.items():
        connections[str(name)] = _parse_connection(str(name), body)

    default = raw.get("default")
    if default is not None:
        default = str(default)
        if default not in connections:
            raise ConfigurationError(f"Default connection {default!r} is not defined")

    return Config(connections=connections, default=default)


def load_config(path: Path) -> Config:
    """Load and validate configuration from a YAML file."""

    raw = _load_yaml(Path(path))
    return parse_config_dict(raw)


def config_to_dict(config: Config) -> Dict[str, Any]:
    """Convert a Config instance back into a serialisable mapping."""

    connections: Dict[str, Dict[str, Any]] = {}
    for name, settings in config.connections.items():
        entry: Dict[str, Any] = {"transport": settings.transport}
        if settings.transport == "tcp":
            entry["host"] = settings.host
            entry["port"] = settings.port
            entry["connect_timeout"] = settings.connect_timeout
        else:
            entry["port"] = settings.serial_port
            entry["baudrate"] = settings.baudrate
            entry["bytesize"] = settings.bytesize
            entry["parity"] = settings.parity
            entry["stopbits"] = settings.stopbits
            if settings.transport == "rtu":
                entry["crc_variant"] = settings.crc_variant.value
            entry.update(dict(settings.serial_options))
        entry["timeout"] = settings.timeout
        entry["byte_order"] = settings.byte_order.value
        entry["one_based_addressing"] = settings.one_based_addressing
        connections[name] = entry

    result: Dict[str, Any] = {"connections": connections}
    if config.default is not None:
        result["default"] = config.default
    return result


def save_config(path: Path, raw: Mapping[str, Any]) -> Config:
    """Validate and write configuration data to disk.

    Returns the parsed Config instance on success.
    """

    config = parse_config_dict(raw)
    serialisable = config_to_dict(config)
    with Path(path).open("w", encoding="utf-8") as handle:
        yaml.safe_dump(serialisable, handle, sort_keys=False)
    return config


__all__ = [
    "Config",
    "ConfigurationError",
    "ConnectionSettings",
    "TRANSPORTS",
    "config_to_dict",
    "load_config",
    "parse_config_dict",
    "save_config",
]
