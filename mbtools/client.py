"""
Master-side helpers on top of pymodbus ModbusSerialClient.

Used by the one-shot tools (mbm, relconf). Each helper either returns the
register values or raises RequestFailed with a printable reason; nothing is
retried.
"""

from __future__ import annotations

from typing import Callable, List

from pymodbus.client import ModbusSerialClient
from pymodbus.exceptions import ModbusException

from mbtools.config import SerialSettings
from mbtools.errors import RequestFailed, TransportError
from mbtools.protocol import FunctionCode
from mbtools.transport import enable_rs485


def open_client(
    settings: SerialSettings,
    client_factory: Callable[..., ModbusSerialClient] = ModbusSerialClient,
) -> ModbusSerialClient:
    client = client_factory(
        port=settings.port,
        baudrate=settings.baudrate,
        bytesize=settings.bytesize,
        parity=settings.parity,
        stopbits=settings.stopbits,
        timeout=settings.response_timeout_s,
        retries=0,
    )
    if not client.connect():
        raise TransportError(f"Connection failed: cannot open {settings.port}")

    socket = getattr(client, "socket", None)
    if settings.uses_rs485 and socket is not None:
        try:
            enable_rs485(socket, settings.rts_delay_us)
        except TransportError:
            client.close()
            raise
    return client


def _check(rr, what: str):
    if rr.isError():
        raise RequestFailed(f"Unable to {what}: {rr}")
    return rr


def read_registers(
    client: ModbusSerialClient, function_code: int, slave: int, start: int, count: int
) -> List[int]:
    if function_code == FunctionCode.READ_INPUT_REGISTERS:
        call, what = client.read_input_registers, "read input registers"
    else:
        call, what = client.read_holding_registers, "read holding registers"

    try:
        rr = call(start, count=count, device_id=slave)
    except ModbusException as e:
        raise RequestFailed(f"Unable to {what}: {e}") from e
    return list(_check(rr, what).registers)


def write_register(client: ModbusSerialClient, slave: int, address: int, value: int) -> None:
    what = "write single register"
    try:
        rr = client.write_register(address, value & 0xFFFF, device_id=slave)
    except ModbusException as e:
        raise RequestFailed(f"Unable to {what}: {e}") from e
    _check(rr, what)


def write_registers(
    client: ModbusSerialClient, slave: int, start: int, values: List[int]
) -> None:
    what = "write multiple registers"
    try:
        rr = client.write_registers(start, [v & 0xFFFF for v in values], device_id=slave)
    except ModbusException as e:
        raise RequestFailed(f"Unable to {what}: {e}") from e
    _check(rr, what)


def format_register(address: int, value: int) -> str:
    return f"reg {address}: 0x{value:04X} ({value})"
