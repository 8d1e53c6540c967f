"""
Serial / responder settings and the YAML loader.

Example config/mbs.yaml:

    serial:
      port: /dev/ttyAMA0
      baudrate: 9600
      parity: N
      bytesize: 8
      stopbits: 1
      rts_delay_us: 10
    register_count: 32

Command-line arguments are applied on top with ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml

from mbtools.errors import ConfigError

VERSION = "0.2"

DEFAULT_PORT = "/dev/ttyAMA0"
DEFAULT_BAUDRATE = 9600
DEFAULT_RTS_DELAY_US = 10
DEFAULT_RESPONSE_TIMEOUT_S = 2.0
DEFAULT_REGISTER_COUNT = 32

PARITIES = ("N", "E", "O")


@dataclass(frozen=True)
class SerialSettings:
    port: str = DEFAULT_PORT
    baudrate: int = DEFAULT_BAUDRATE
    parity: str = "N"
    bytesize: int = 8
    stopbits: int = 1
    rts_delay_us: int = DEFAULT_RTS_DELAY_US
    response_timeout_s: Optional[float] = DEFAULT_RESPONSE_TIMEOUT_S

    @property
    def uses_rs485(self) -> bool:
        """USB adapters do their own direction control."""
        return "USB" not in self.port


@dataclass(frozen=True)
class ResponderSettings:
    own_address: int = 1
    register_count: int = DEFAULT_REGISTER_COUNT
    debug: bool = False
    serial: SerialSettings = field(default_factory=SerialSettings)


def _build(cls, raw: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"unknown {section} keys: {', '.join(sorted(unknown))}")
    return cls(**raw)


def validate_serial(settings: SerialSettings) -> SerialSettings:
    if settings.baudrate <= 0:
        raise ConfigError(f"invalid baudrate {settings.baudrate}")
    if settings.parity not in PARITIES:
        raise ConfigError(f"invalid parity {settings.parity!r}")
    if settings.bytesize not in (7, 8):
        raise ConfigError(f"invalid bytesize {settings.bytesize}")
    if settings.stopbits not in (1, 2):
        raise ConfigError(f"invalid stopbits {settings.stopbits}")
    if settings.rts_delay_us < 0:
        raise ConfigError(f"invalid rts_delay_us {settings.rts_delay_us}")
    return settings


def validate_responder(settings: ResponderSettings) -> ResponderSettings:
    if not 0 <= settings.own_address <= 255:
        raise ConfigError(f"invalid slave address {settings.own_address}")
    if settings.register_count <= 0:
        raise ConfigError(f"invalid register_count {settings.register_count}")
    validate_serial(settings.serial)
    return settings


def load_config(path: Optional[str]) -> ResponderSettings:
    """Read responder settings from YAML. No path gives the defaults."""
    if not path:
        return ResponderSettings()

    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"bad YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    raw = dict(raw)
    serial_raw = raw.pop("serial", None) or {}
    if not isinstance(serial_raw, dict):
        raise ConfigError(f"{path}: 'serial' must be a mapping")

    serial_settings = _build(SerialSettings, serial_raw, "serial")
    settings = _build(ResponderSettings, dict(raw, serial=serial_settings), "top-level")
    return validate_responder(settings)
