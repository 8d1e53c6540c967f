"""
Modbus RTU framing helpers: CRC16, frame encode/verify, timing.
"""

from __future__ import annotations

from mbtools.errors import FrameError

# slave addr + fc + CRC
MIN_FRAME_LENGTH = 4
MAX_FRAME_LENGTH = 256


def crc16(data: bytes) -> int:
    """Modbus CRC16 (poly 0xA001, init 0xFFFF)."""
    crc = 0xFFFF
    for b in data:
        crc ^= b
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc & 0xFFFF


def encode_frame(adu: bytes) -> bytes:
    """Append CRC, low byte first."""
    crc = crc16(adu)
    return bytes(adu) + bytes([crc & 0xFF, (crc >> 8) & 0xFF])


def decode_frame(raw: bytes) -> bytes:
    """Verify length and CRC of a received frame, return it without the CRC."""
    if len(raw) < MIN_FRAME_LENGTH:
        raise FrameError(f"frame too short ({len(raw)} bytes): {hexdump(raw)}")
    if len(raw) > MAX_FRAME_LENGTH:
        raise FrameError(f"frame too long ({len(raw)} bytes)")

    data = raw[:-2]
    recv_crc = raw[-2] | (raw[-1] << 8)
    calc_crc = crc16(data)
    if recv_crc != calc_crc:
        raise FrameError(f"CRC mismatch (got 0x{recv_crc:04X}, want 0x{calc_crc:04X})")
    return bytes(data)


def silent_interval(baudrate: int) -> float:
    """3.5 character times in seconds; fixed 1.75 ms above 19200 baud."""
    if baudrate > 19200:
        return 0.00175
    # 11 bits per character (start + 8 data + parity/stop + stop)
    return 3.5 * 11 / baudrate


def hexdump(b: bytes) -> str:
    return b.hex(" ").upper()
