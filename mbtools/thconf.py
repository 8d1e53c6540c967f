"""
thconf — change baud rate and slave address of the PKTH100B T/H sensor.

The sensor takes a NON STANDARD extension of FC06 (write single register):

Request:
  AA      slave addr
  06      function code
  00 00   start address
  00 01   register value
  02      number of extra bytes (extension)
  NA      new slave addr (extension)
  BB      new baud rate code (extension)

Response: the first six request bytes echoed back.

Baud rate codes: 1200=3, 2400=4, 4800=5, 9600=6, 19200=7.
Slave addresses: 1..247.

pymodbus cannot send the extended frame, so this tool talks through the raw
SerialTransport.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from mbtools.config import VERSION, SerialSettings
from mbtools.errors import TransportError
from mbtools.protocol import FunctionCode
from mbtools.transport import SerialTransport

BAUDRATE_CODES = {
    1200: 3,
    2400: 4,
    4800: 5,
    9600: 6,
    19200: 7,
}
MIN_SLAVE_ADDR = 1
MAX_SLAVE_ADDR = 247
RSP_FRAME_LEN = 6


def baudrate_code(baudrate: int) -> int:
    """Sensor code for a baud rate, 0 if unsupported."""
    return BAUDRATE_CODES.get(baudrate, 0)


def build_config_request(slave_addr: int, new_slave_addr: int, br_code: int) -> bytes:
    return bytes([
        slave_addr, FunctionCode.WRITE_SINGLE_REGISTER,
        0x00, 0x00,
        0x00, 0x01,
        0x02, new_slave_addr, br_code,
    ])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="thconf",
        description=f"TH sensor configuration tool, ver {VERSION}",
    )
    parser.add_argument("baudrate", type=int, nargs="?")
    parser.add_argument("slave_addr", type=int, nargs="?")
    parser.add_argument("new_baudrate", type=int, nargs="?")
    parser.add_argument("new_slave_addr", type=int, nargs="?")
    parser.add_argument("--port", default=None, help="serial device (default /dev/ttyAMA0)")
    return parser


def validate(args: argparse.Namespace) -> Optional[str]:
    if baudrate_code(args.baudrate) == 0:
        return f"Invalid baudrate {args.baudrate}"
    if baudrate_code(args.new_baudrate) == 0:
        return f"Invalid new baudrate {args.new_baudrate}"
    if not MIN_SLAVE_ADDR <= args.slave_addr <= MAX_SLAVE_ADDR:
        return f"Invalid slave address {args.slave_addr}"
    if not MIN_SLAVE_ADDR <= args.new_slave_addr <= MAX_SLAVE_ADDR:
        return f"Invalid new slave address {args.new_slave_addr}"
    return None


def main(argv: Optional[Sequence[str]] = None, transport: Optional[SerialTransport] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_intermixed_args(argv)
    if args.new_slave_addr is None:
        print(f"TH sensor configuration tool, ver {VERSION}\n")
        print("usage: thconf <baudrate> <slave_addr> <new_baudrate> <new_slave_addr>")
        print("   baudrate, new_baudrate:     1200,2400,4800,9600,19200")
        print("   slave_addr, new_slave_addr: 1..247")
        return 0

    error = validate(args)
    if error:
        print(error)
        return 1

    request = build_config_request(
        args.slave_addr, args.new_slave_addr, baudrate_code(args.new_baudrate)
    )

    if transport is None:
        settings = SerialSettings(baudrate=args.baudrate)
        if args.port:
            settings = SerialSettings(port=args.port, baudrate=args.baudrate)
        transport = SerialTransport.from_settings(settings)

    try:
        transport.connect()
        reply = transport.request(request)
    except TransportError as e:
        print(f"ERROR changing sensor configuration: {e}")
        return 1
    finally:
        transport.close()

    if reply[:RSP_FRAME_LEN] != request[:RSP_FRAME_LEN]:
        print("ERROR changing sensor configuration, check parameters")
        return 1

    print("Successfully changed sensor configuration")
    if args.baudrate != args.new_baudrate:
        print(f"New baudrate: {args.new_baudrate}")
    if args.slave_addr != args.new_slave_addr:
        print(f"New slave address: {args.new_slave_addr}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
