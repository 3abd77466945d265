"""Configuration loading for the serial-to-WebSocket relay: JSON file plus command-line overrides."""

import argparse
import json
import os
from dataclasses import dataclass, fields


DEFAULT_CONFIG_FILE = "server_config.json"
DEFAULT_SERIAL_PORT = "COM5"
DEFAULT_BAUD = 115200
DEFAULT_LISTEN = "0.0.0.0"
DEFAULT_WS_PORT = 8080
DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_RETRY_DELAY_MS = 5000

# Lower bound for both the poll interval and the serial retry delay.
MIN_INTERVAL_MS = 10


@dataclass(frozen=True)
class RelayConfig:
    """Settings supplied once at startup; never mutated by the relay."""

    auth_token: str
    serial_port: str = DEFAULT_SERIAL_PORT
    serial_baudrate: int = DEFAULT_BAUD
    websocket_port: int = DEFAULT_WS_PORT
    listen: str = DEFAULT_LISTEN
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    debug: bool = False


_INT_KEYS = ("serial_baudrate", "websocket_port", "poll_interval_ms", "retry_delay_ms")
_STR_KEYS = ("auth_token", "serial_port", "listen")


def load_config_file(path: str) -> dict:
    """Read a JSON config file and return the known keys it sets."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    known = {f.name for f in fields(RelayConfig)}
    values = {k: v for k, v in raw.items() if k in known and v is not None}
    for key in _STR_KEYS:
        if key in values and not isinstance(values[key], str):
            raise ValueError(f"Config key {key!r} must be a string")
    for key in _INT_KEYS:
        if key in values:
            if isinstance(values[key], bool):
                raise ValueError(f"Config key {key!r} must be an integer")
            try:
                values[key] = int(values[key])
            except (TypeError, ValueError):
                raise ValueError(f"Config key {key!r} must be an integer") from None
    if "debug" in values and not isinstance(values["debug"], bool):
        raise ValueError("Config key 'debug' must be true or false")
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Relay a serial device to authenticated WebSocket clients."
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"JSON config file (default: {DEFAULT_CONFIG_FILE} if present)",
    )
    parser.add_argument(
        "--port",
        dest="serial_port",
        help=f"Serial port name (default: {DEFAULT_SERIAL_PORT})",
    )
    parser.add_argument(
        "--baud",
        dest="serial_baudrate",
        type=int,
        help=f"Baud rate (default: {DEFAULT_BAUD})",
    )
    parser.add_argument(
        "--ws-port",
        dest="websocket_port",
        type=int,
        help=f"WebSocket listen port (default: {DEFAULT_WS_PORT})",
    )
    parser.add_argument(
        "--listen",
        help=f"WebSocket listen address (default: {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        "--token",
        dest="auth_token",
        help="Shared token clients must pass as ?token=...",
    )
    parser.add_argument(
        "--poll-interval",
        dest="poll_interval_ms",
        type=int,
        help=f"Poll command interval in ms (default: {DEFAULT_POLL_INTERVAL_MS})",
    )
    parser.add_argument(
        "--retry-delay",
        dest="retry_delay_ms",
        type=int,
        help=f"Serial reopen delay in ms (default: {DEFAULT_RETRY_DELAY_MS})",
    )
    parser.add_argument(
        "-v",
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging (raw serial data, client events)",
    )
    return parser


def parse_args(argv=None) -> RelayConfig:
    """Parse command-line arguments, merge them over the config file and return a validated config."""
    args = build_parser().parse_args(argv)

    if args.config is not None:
        values = load_config_file(args.config)
    elif os.path.exists(DEFAULT_CONFIG_FILE):
        values = load_config_file(DEFAULT_CONFIG_FILE)
    else:
        values = {}

    for f in fields(RelayConfig):
        override = getattr(args, f.name, None)
        if override is not None:
            values[f.name] = override

    if not values.get("auth_token"):
        raise ValueError("Auth token (--token or auth_token) is required")
    config = RelayConfig(**values)
    validate(config)
    return config


def validate(config: RelayConfig) -> RelayConfig:
    """Validate a config; raise ValueError on invalid values."""
    for key in _STR_KEYS:
        if not isinstance(getattr(config, key), str):
            raise ValueError(f"{key} must be a string")
    if not (config.serial_port and config.serial_port.strip()):
        raise ValueError("Serial port (--port) must be non-empty")
    if not config.auth_token:
        raise ValueError("Auth token (--token) must be non-empty")
    if config.serial_baudrate <= 0:
        raise ValueError("Baud rate (--baud) must be positive")
    if not (1 <= config.websocket_port <= 65535):
        raise ValueError("WebSocket port (--ws-port) must be between 1 and 65535")
    if config.poll_interval_ms < MIN_INTERVAL_MS:
        raise ValueError(f"Poll interval (--poll-interval) must be at least {MIN_INTERVAL_MS} ms")
    if config.retry_delay_ms < MIN_INTERVAL_MS:
        raise ValueError(f"Retry delay (--retry-delay) must be at least {MIN_INTERVAL_MS} ms")
    return config

