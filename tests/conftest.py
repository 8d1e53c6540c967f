from __future__ import annotations

from typing import List

import pytest

from mbtools.errors import ConnectionLostError


class FakeSerial:
    """Stands in for serial.Serial: scripted reads, recorded writes."""

    def __init__(self, reads=(), **kwargs):
        self.kwargs = kwargs
        self._reads = list(reads)
        self.written: List[bytes] = []
        self.is_open = True
        self.rs485_mode = None
        self.input_resets = 0

    def read(self, size=1):
        if not self._reads:
            return b""
        item = self._reads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def flush(self):
        pass

    def reset_input_buffer(self):
        self.input_resets += 1

    def close(self):
        self.is_open = False


class FakeTransport:
    """Feeds frames (or errors) to a responder and records what it sends."""

    header_length = 1

    def __init__(self, frames=(), connect_error=None):
        self._frames = list(frames)
        self.sent: List[bytes] = []
        self.own_address = None
        self.connected = False
        self.closed = False
        self.connect_error = connect_error

    def set_own_address(self, addr):
        self.own_address = addr

    def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def receive_frame(self):
        if not self._frames:
            raise ConnectionLostError("script exhausted")
        item = self._frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def send_frame(self, adu):
        self.sent.append(bytes(adu))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def serial_factory(fake_serial):
    def factory(**kwargs):
        fake_serial.kwargs = kwargs
        return fake_serial

    return factory
