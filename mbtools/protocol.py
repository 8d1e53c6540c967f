"""
Modbus RTU request decode / response build.

A received frame reaches us CRC-checked and CRC-stripped (see rtu.py), so
what is left is the ADU without the checksum:

    [header ...] slave_addr | fc | addr_hi addr_lo | val_hi val_lo

header_length is the number of bytes up to and including the slave address
(1 for RTU). Both 16-bit fields are big-endian. For FC03/FC04 the second
word is the register count, for FC06 it is the value to write.

Builders return the reply ADU without CRC; the transport appends it.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import List, Optional

from mbtools.errors import DecodeError

# Max registers in one FC03/FC04 reply (253-byte PDU limit)
MAX_READ_COUNT = 125


class FunctionCode(enum.IntEnum):
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_REGISTERS = 0x10


class ExceptionCode(enum.IntEnum):
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04


READ_FUNCTIONS = (FunctionCode.READ_HOLDING_REGISTERS, FunctionCode.READ_INPUT_REGISTERS)


@dataclass(frozen=True)
class ModbusRequest:
    slave_addr: int
    function_code: int
    address: Optional[int] = None
    value: Optional[int] = None

    @property
    def count(self) -> Optional[int]:
        """Register count, for read requests."""
        return self.value

    @property
    def has_data(self) -> bool:
        return self.address is not None and self.value is not None


def decode_request(frame: bytes, header_length: int = 1) -> ModbusRequest:
    """
    Decode slave address and function code, plus the two data words when
    the frame carries them. A frame that stops after the function code
    decodes with address/value None so the caller can still filter on the
    slave address and answer Illegal Function.
    """
    if header_length < 1:
        raise DecodeError(f"bad header length {header_length}")

    start = header_length - 1
    if len(frame) < start + 2:
        raise DecodeError(f"frame too short ({len(frame)} bytes)")

    slave_addr = frame[start]
    fc = frame[start + 1]
    if len(frame) < start + 6:
        return ModbusRequest(slave_addr, fc)
    address, value = struct.unpack(">HH", frame[start + 2 : start + 6])
    return ModbusRequest(slave_addr, fc, address, value)


def build_read_response(slave_addr: int, function_code: int, values: List[int]) -> bytes:
    byte_count = len(values) * 2
    return bytes([slave_addr, function_code, byte_count]) + b"".join(
        struct.pack(">H", v & 0xFFFF) for v in values
    )


def build_write_response(slave_addr: int, address: int, value: int) -> bytes:
    # FC06 reply echoes the request
    return bytes([slave_addr, FunctionCode.WRITE_SINGLE_REGISTER]) + struct.pack(
        ">HH", address & 0xFFFF, value & 0xFFFF
    )


def build_exception_response(slave_addr: int, function_code: int, exc_code: int) -> bytes:
    return bytes([slave_addr, (function_code | 0x80) & 0xFF, exc_code & 0xFF])
