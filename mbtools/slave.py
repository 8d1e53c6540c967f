"""
mbs — Modbus RTU slave emulator backed by an in-memory register map.

Usage:
  mbs <baudrate> <slave_addr>
  mbs 9600 5 --port /dev/ttyUSB0 --debug
  mbs 9600 5 --config config/mbs.yaml

Answers FC03/FC04 (read) and FC06 (write single) for registers
0..register_count-1 (32 by default). Values live only as long as the process.
Diagnostics go to the system log.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import Optional, Sequence

from mbtools.config import VERSION, load_config, validate_responder
from mbtools.errors import ConfigError, TransportError
from mbtools.logsetup import setup_logging
from mbtools.registers import RegisterMap
from mbtools.responder import Responder
from mbtools.transport import SerialTransport

log = logging.getLogger("mbs")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mbs",
        description=f"Modbus RTU slave, ver {VERSION}",
    )
    # optional so a bare call can print the usage banner
    parser.add_argument("baudrate", type=int, nargs="?")
    parser.add_argument("slave_addr", type=int, nargs="?")
    parser.add_argument("--config", default=None, help="YAML settings file")
    parser.add_argument("--port", default=None, help="serial device (default /dev/ttyAMA0)")
    parser.add_argument("--debug", action="store_true", help="log every request")
    return parser


def main(argv: Optional[Sequence[str]] = None, transport: Optional[SerialTransport] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()

    args = parser.parse_intermixed_args(argv)
    if args.slave_addr is None:
        print(f"Modbus RTU slave, ver {VERSION}")
        print("usage: mbs <baudrate> <slave_addr>\n")
        return 0

    try:
        settings = load_config(args.config)
        serial_settings = dataclasses.replace(
            settings.serial,
            baudrate=args.baudrate,
            port=args.port or settings.serial.port,
            # slave waits for requests indefinitely
            response_timeout_s=None,
        )
        settings = validate_responder(
            dataclasses.replace(
                settings,
                own_address=args.slave_addr,
                debug=args.debug or settings.debug,
                serial=serial_settings,
            )
        )
    except ConfigError as e:
        print(f"mbs: {e}", file=sys.stderr)
        return 1

    setup_logging("MBS", debug=settings.debug, use_syslog=True)

    if transport is None:
        transport = SerialTransport.from_settings(settings.serial)
    transport.set_own_address(settings.own_address)

    log.debug(f"Connecting as slave addr {settings.own_address}")
    try:
        transport.connect()
    except TransportError as e:
        log.error(f"{e}")
        return 1

    responder = Responder(
        settings.own_address,
        RegisterMap(settings.register_count),
        header_length=transport.header_length,
    )
    try:
        responder.serve(transport)
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 0
    finally:
        transport.close()
    # serve() only returns once the port is gone
    return 1


if __name__ == "__main__":
    sys.exit(main())
