"""
relconf — configure the device address of BQTEK relay cards.

The card must be in "Settings Mode" (power on with all DIP switches OFF),
where it answers on the reserved slave address 255 at 9600 baud.

Config registers:
  1  device address (1 ... 254)
  2  baud rate (2400, 4800, ... 38400)

Usage:
  relconf <reg_addr>              read register (FC03)
  relconf <reg_addr> <reg_val>    write register (FC06)
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from mbtools import client as mb
from mbtools.config import VERSION, SerialSettings
from mbtools.errors import RequestFailed, TransportError
from mbtools.protocol import FunctionCode

SETTINGS_MODE_ADDRESS = 0xFF
REG_DEVICE_ADDRESS = 1
REG_BAUDRATE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relconf",
        description=f"Relay card configuration tool, ver {VERSION}",
    )
    parser.add_argument("reg_addr", type=int, nargs="?")
    parser.add_argument("reg_val", type=int, nargs="?", default=None)
    parser.add_argument("--port", default=None, help="serial device (default /dev/ttyAMA0)")
    return parser


def main(argv: Optional[Sequence[str]] = None, client_factory=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)
    if args.reg_addr is None:
        print(f"Relay card configuration tool, ver {VERSION}\n")
        print("usage: relconf <reg_addr> [<reg_val>]")
        return 0

    # the card only looks at the low address byte
    reg_addr = args.reg_addr & 0xFF

    settings = SerialSettings(port=args.port) if args.port else SerialSettings()
    try:
        client = mb.open_client(settings, client_factory or mb.ModbusSerialClient)
    except TransportError as e:
        print(f"{e}")
        return 1

    try:
        if args.reg_val is None:
            reg_val = mb.read_registers(
                client, FunctionCode.READ_HOLDING_REGISTERS, SETTINGS_MODE_ADDRESS, reg_addr, 1
            )[0]
        else:
            reg_val = args.reg_val & 0xFFFF
            mb.write_register(client, SETTINGS_MODE_ADDRESS, reg_addr, reg_val)
    except RequestFailed:
        print("ERROR performing Modbus request")
        return 1
    finally:
        client.close()

    print(mb.format_register(reg_addr, reg_val))
    return 0


if __name__ == "__main__":
    sys.exit(main())
