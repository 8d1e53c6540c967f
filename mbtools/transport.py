"""
Serial RTU transport built on pyserial.

Frame boundaries come from the RTU silent interval: the port is opened with
``inter_byte_timeout`` set to 3.5 character times, so one ``read()`` returns
as soon as the line goes quiet after the first byte.

Direction control:
    On a plain UART (port name without "USB") the RS-485 transceiver is
    switched through RTS, low while transmitting, with ``rts_delay_us``
    before and after each transmission. The port is opened as
    ``serial.rs485.RS485`` so RTS is toggled in software. USB adapters
    switch by themselves.

Timeouts:
    response_timeout_s=None blocks forever (slave side). The master tools
    use 2 s.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import serial
from serial.rs485 import RS485, RS485Settings

from mbtools.config import DEFAULT_RTS_DELAY_US, SerialSettings
from mbtools.errors import ConnectionLostError, ReceiveTimeout, TransportError
from mbtools.rtu import MAX_FRAME_LENGTH, decode_frame, encode_frame, hexdump, silent_interval

log = logging.getLogger(__name__)


def enable_rs485(ser, rts_delay_us: int = DEFAULT_RTS_DELAY_US) -> None:
    """Drive RTS low during transmit, with a delay around each switch."""
    delay_s = rts_delay_us / 1_000_000 if rts_delay_us > 0 else None
    try:
        ser.rs485_mode = RS485Settings(
            rts_level_for_tx=False,
            rts_level_for_rx=True,
            delay_before_tx=delay_s,
            delay_before_rx=delay_s,
        )
    except (ValueError, OSError, serial.SerialException) as e:
        raise TransportError(f"Setting RTS mode failed: {e}") from e


def serial_class(settings: SerialSettings) -> Callable[..., serial.Serial]:
    """
    Port class for the line. UARTs get pyserial's RS485 subclass, which
    toggles RTS around each write in software instead of using the kernel
    RS-485 ioctl.
    """
    return RS485 if settings.uses_rs485 else serial.Serial


class SerialTransport:
    # bytes up to and including the slave address
    header_length = 1

    def __init__(self, serial_factory: Optional[Callable[..., serial.Serial]] = None):
        self._serial_factory = serial_factory
        self.settings: Optional[SerialSettings] = None
        self.own_address: Optional[int] = None
        self.ser = None

    @classmethod
    def from_settings(cls, settings: SerialSettings, **kwargs) -> "SerialTransport":
        transport = cls(**kwargs)
        transport.settings = settings
        return transport

    def configure(
        self,
        port: str,
        baudrate: int,
        parity: str = "N",
        bytesize: int = 8,
        stopbits: int = 1,
        *,
        rts_delay_us: int = DEFAULT_RTS_DELAY_US,
        response_timeout_s: Optional[float] = None,
    ) -> None:
        self.settings = SerialSettings(
            port=port,
            baudrate=baudrate,
            parity=parity,
            bytesize=bytesize,
            stopbits=stopbits,
            rts_delay_us=rts_delay_us,
            response_timeout_s=response_timeout_s,
        )

    def set_own_address(self, addr: int) -> None:
        self.own_address = addr

    @property
    def is_connected(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def connect(self) -> None:
        if self.settings is None:
            raise TransportError("transport not configured")
        if self.is_connected:
            log.warning("Already connected")
            return

        s = self.settings
        try:
            factory = self._serial_factory or serial_class(s)
            self.ser = factory(
                port=s.port,
                baudrate=s.baudrate,
                parity=s.parity,
                bytesize=s.bytesize,
                stopbits=s.stopbits,
                timeout=s.response_timeout_s,
                inter_byte_timeout=silent_interval(s.baudrate),
            )
        except (serial.SerialException, ValueError) as e:
            self.ser = None
            raise TransportError(f"Connection failed: {e}") from e

        if s.uses_rs485:
            try:
                enable_rs485(self.ser, s.rts_delay_us)
            except TransportError:
                self.close()
                raise
            log.debug(f"RTS delay is {s.rts_delay_us}us")

        log.info(f"Open {s.port} {s.baudrate} {s.bytesize}{s.parity}{s.stopbits}")

    def receive_frame(self) -> bytes:
        """Block for one frame; return it CRC-checked, without the CRC."""
        if not self.is_connected:
            raise TransportError("Serial port not open")
        try:
            raw = self.ser.read(MAX_FRAME_LENGTH)
        except serial.SerialException as e:
            raise ConnectionLostError(f"read failed: {e}") from e

        if not raw:
            raise ReceiveTimeout("Timeout (no response)")
        log.debug(f"RX: {hexdump(raw)}")
        return decode_frame(raw)

    def send_frame(self, adu: bytes) -> None:
        """Append the CRC and transmit."""
        if not self.is_connected:
            raise TransportError("Serial port not open")
        frame = encode_frame(adu)
        try:
            self.ser.write(frame)
            self.ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"write failed: {e}") from e
        log.debug(f"TX: {hexdump(frame)}")

    def request(self, adu: bytes) -> bytes:
        """Master side: send a request and wait for the confirmation."""
        if not self.is_connected:
            raise TransportError("Serial port not open")
        self.ser.reset_input_buffer()
        self.send_frame(adu)
        return self.receive_frame()

    def close(self) -> None:
        if self.ser is None:
            return
        port = self.settings.port if self.settings else "?"
        try:
            self.ser.close()
            log.info(f"Closed {port}")
        except serial.SerialException as e:
            log.error(f"Close error: {e}")
        finally:
            self.ser = None
