"""
mbm — Modbus RTU master command line tool.

Usage:
  mbm r|R <baudrate> <slave_addr> <start_addr> <num_reg> [<poll_period>]
  mbm w|W <baudrate> <slave_addr> <start_addr> <reg_val> [<reg_val> ...]

mode:
  r - FC03 read holding registers
  R - FC04 read input registers
  w - FC06 preset single register
  W - FC10 preset multiple registers

Register values accept 0x-prefixed hex. With a poll period (seconds) the
read is repeated until Ctrl-C.
"""

from __future__ import annotations

import argparse
import sys
import time
from typing import List, Optional, Sequence

from mbtools import client as mb
from mbtools.config import VERSION, SerialSettings
from mbtools.errors import RequestFailed, TransportError
from mbtools.protocol import FunctionCode

MAX_REG = 32
MODES = ("r", "R", "w", "W")

USAGE = """\
usage: mbm r|R <baudrate> <slave_addr> <start_addr> <num_reg> [<poll_period>]
       mbm w|W <baudrate> <slave_addr> <start_addr> <reg_val> [<reg_val> ...]

mode:  r - Modbus function code 0x03 (read holding registers)
       R - Modbus function code 0x04 (read input registers)
       w - Modbus function code 0x06 (preset single register)
       W - Modbus function code 0x10 (preset multiple registers)
"""


def parse_value(text: str) -> int:
    return int(text, 0) & 0xFFFF


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mbm", usage=USAGE)
    parser.add_argument("mode", nargs="?")
    parser.add_argument("baudrate", type=int, nargs="?")
    parser.add_argument("slave_addr", type=int, nargs="?")
    parser.add_argument("start_addr", type=int, nargs="?")
    parser.add_argument("args", nargs="*")
    parser.add_argument("--port", default=None, help="serial device (default /dev/ttyAMA0)")
    return parser


def prepare(args: argparse.Namespace) -> None:
    """Convert the mode-specific trailing arguments. Raises ValueError."""
    args.num_reg = 1
    args.poll_period = 0.0
    args.values = []
    if args.mode in ("r", "R"):
        args.num_reg = min(int(args.args[0]), MAX_REG)
        if len(args.args) > 1:
            args.poll_period = float(args.args[1])
    elif args.mode == "w":
        args.values = [parse_value(args.args[0])]
    else:
        args.values = [parse_value(a) for a in args.args[:MAX_REG]]
        args.num_reg = len(args.values)


def print_registers(start: int, values: List[int]) -> None:
    for i, v in enumerate(values):
        print(f"{i}: {mb.format_register(start + i, v)}")


def run(args: argparse.Namespace, client) -> None:
    if args.mode in ("r", "R"):
        fc = FunctionCode.READ_HOLDING_REGISTERS if args.mode == "r" else FunctionCode.READ_INPUT_REGISTERS
        while True:
            values = mb.read_registers(client, fc, args.slave_addr, args.start_addr, args.num_reg)
            print_registers(args.start_addr, values)
            if args.poll_period <= 0:
                break
            time.sleep(args.poll_period)

    elif args.mode == "w":
        value = args.values[0]
        mb.write_register(client, args.slave_addr, args.start_addr, value)
        print(mb.format_register(args.start_addr, value))

    else:
        mb.write_registers(client, args.slave_addr, args.start_addr, args.values)
        print_registers(args.start_addr, args.values)


def main(argv: Optional[Sequence[str]] = None, client_factory=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_intermixed_args(argv)
    if not args.args:
        print(f"Modbus RTU master, ver {VERSION} (using pymodbus)")
        print(USAGE)
        return 0

    if args.mode not in MODES:
        print(f"Invalid mode: {args.mode}")
        return 1
    try:
        prepare(args)
    except ValueError as e:
        print(f"Invalid argument: {e}")
        return 1

    settings = SerialSettings(port=args.port, baudrate=args.baudrate) if args.port \
        else SerialSettings(baudrate=args.baudrate)

    try:
        client = mb.open_client(settings, client_factory or mb.ModbusSerialClient)
    except TransportError as e:
        print(f"{e}")
        return 1

    try:
        run(args, client)
    except RequestFailed as e:
        print(f"{e}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
