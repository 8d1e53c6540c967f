import logging

import pytest

from conftest import FakeTransport
from mbtools.errors import ConnectionLostError, FrameError, ReceiveTimeout, RegisterAccessError, TransportError
from mbtools.protocol import ExceptionCode
from mbtools.registers import RegisterMap
from mbtools.responder import (
    Action,
    ActionKind,
    ExceptionResult,
    ReadResult,
    Responder,
    WriteResult,
)

OWN = 5


def req(addr, fc, reg, val):
    return bytes([addr, fc, (reg >> 8) & 0xFF, reg & 0xFF, (val >> 8) & 0xFF, val & 0xFF])


@pytest.fixture
def responder():
    return Responder(OWN, RegisterMap(32))


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------

def test_scenario_write_then_read(responder):
    action = responder.step(req(5, 0x06, 10, 1234))
    assert action == Action.respond(bytes([5, 0x06, 0, 10, 0x04, 0xD2]))
    assert responder.registers.read(10) == [1234]

    action = responder.step(req(5, 0x03, 10, 1))
    assert action.kind is ActionKind.RESPOND
    assert action.reply == bytes([5, 0x03, 2, 0x04, 0xD2])


def test_scenario_read_out_of_range(responder):
    before = responder.registers.snapshot()
    action = responder.step(req(5, 0x03, 40, 1))
    assert action.reply == bytes([5, 0x83, 0x02])
    assert responder.registers.snapshot() == before


def test_scenario_other_slave_ignored(responder):
    action = responder.step(req(9, 0x06, 0, 1))
    assert action.kind is ActionKind.IGNORE
    assert action.reply is None
    assert responder.registers.read(0) == [0]


def test_scenario_unsupported_function(responder):
    action = responder.step(req(5, 0x07, 0, 0))
    assert action.reply == bytes([5, 0x87, 0x01])


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("fc", [0x03, 0x04])
@pytest.mark.parametrize("address", [0, 1, 17, 31])
def test_read_returns_current_value_and_leaves_map(fc, address):
    regs = RegisterMap(32)
    regs.write(address, 0x1000 + address)
    before = regs.snapshot()
    action = Responder(OWN, regs).step(req(OWN, fc, address, 1))
    hi, lo = divmod(0x1000 + address, 256)
    assert action.reply == bytes([OWN, fc, 2, hi, lo])
    assert regs.snapshot() == before


def test_holding_and_input_share_one_bank(responder):
    responder.step(req(OWN, 0x06, 3, 77))
    holding = responder.step(req(OWN, 0x03, 3, 1)).reply
    inputs = responder.step(req(OWN, 0x04, 3, 1)).reply
    assert holding[2:] == inputs[2:] == bytes([2, 0, 77])


def test_multi_register_read_in_order(responder):
    for i, v in enumerate([11, 22, 33]):
        responder.step(req(OWN, 0x06, 4 + i, v))
    action = responder.step(req(OWN, 0x03, 4, 3))
    assert action.reply == bytes([OWN, 0x03, 6, 0, 11, 0, 22, 0, 33])


@pytest.mark.parametrize("address,value", [(0, 0), (0, 0xFFFF), (31, 1), (15, 4321)])
def test_write_stores_and_echoes(responder, address, value):
    action = responder.step(req(OWN, 0x06, address, value))
    assert responder.registers.read(address) == [value]
    assert action.reply == req(OWN, 0x06, address, value)


@pytest.mark.parametrize("fc", [0x03, 0x04, 0x06])
@pytest.mark.parametrize("address", [32, 33, 0x1000, 0xFFFF])
def test_out_of_range_is_illegal_address_and_no_mutation(responder, fc, address):
    before = responder.registers.snapshot()
    action = responder.step(req(OWN, fc, address, 1))
    assert action.reply == bytes([OWN, fc | 0x80, ExceptionCode.ILLEGAL_DATA_ADDRESS])
    assert responder.registers.snapshot() == before


def test_read_running_past_end_is_illegal_address(responder):
    action = responder.step(req(OWN, 0x03, 31, 2))
    assert action.reply == bytes([OWN, 0x83, 0x02])


@pytest.mark.parametrize("count", [0, 126])
def test_bad_read_count_is_illegal_value(responder, count):
    action = responder.step(req(OWN, 0x03, 0, count))
    assert action.reply == bytes([OWN, 0x83, 0x03])


@pytest.mark.parametrize("fc", [0x01, 0x02, 0x05, 0x07, 0x0F, 0x10, 0x17, 0x2B, 0x80])
def test_unsupported_functions(responder, fc):
    before = responder.registers.snapshot()
    action = responder.step(req(OWN, fc, 0, 1))
    assert action.reply == bytes([OWN, (fc | 0x80) & 0xFF, 0x01])
    assert responder.registers.snapshot() == before


@pytest.mark.parametrize("fc", [0x03, 0x06, 0x07])
def test_address_filtering_precedes_function_checks(responder, fc):
    assert responder.step(req(6, fc, 99, 1)).kind is ActionKind.IGNORE


def test_repeated_read_is_idempotent(responder):
    responder.step(req(OWN, 0x06, 2, 9))
    first = responder.step(req(OWN, 0x03, 2, 1))
    second = responder.step(req(OWN, 0x03, 2, 1))
    assert first == second


def test_short_frame_ignored_and_logged(responder, caplog):
    with caplog.at_level(logging.ERROR):
        action = responder.step(bytes([OWN]))
    assert action.kind is ActionKind.IGNORE
    assert "bad request" in caplog.text


@pytest.mark.parametrize("fc", [0x07, 0x11])
def test_two_byte_request_gets_illegal_function(responder, fc):
    action = responder.step(bytes([OWN, fc]))
    assert action == Action.respond(bytes([OWN, fc | 0x80, 0x01]))


def test_two_byte_request_for_other_slave_ignored(responder, caplog):
    with caplog.at_level(logging.INFO):
        action = responder.step(bytes([9, 0x07]))
    assert action.kind is ActionKind.IGNORE
    assert caplog.text == ""


@pytest.mark.parametrize("fc", [0x03, 0x04, 0x06])
def test_truncated_supported_request_gets_illegal_data_value(responder, fc):
    before = responder.registers.snapshot()
    action = responder.step(bytes([OWN, fc, 0x00, 0x01]))
    assert action == Action.respond(bytes([OWN, fc | 0x80, 0x03]))
    assert responder.registers.snapshot() == before


def test_other_slave_not_logged(responder, caplog):
    with caplog.at_level(logging.INFO):
        responder.step(req(9, 0x07, 0, 0))
    assert caplog.text == ""


# ---------------------------------------------------------------------------
# Handler results
# ---------------------------------------------------------------------------

def test_dispatch_returns_tagged_results(responder):
    from mbtools.protocol import decode_request

    assert responder.dispatch(decode_request(req(OWN, 0x06, 1, 5))) == WriteResult(1, 5)
    assert responder.dispatch(decode_request(req(OWN, 0x03, 1, 1))) == ReadResult((5,))
    assert responder.dispatch(decode_request(req(OWN, 0x42, 1, 1))) == ExceptionResult(
        ExceptionCode.ILLEGAL_FUNCTION
    )


class FailingRegisters(RegisterMap):
    def read(self, address, count=1):
        self._check_range(address, count)
        raise RegisterAccessError("sensor not responding")

    def write(self, address, value):
        self._check_range(address, 1)
        raise RegisterAccessError("sensor not responding")


@pytest.mark.parametrize("fc", [0x03, 0x04, 0x06])
def test_backing_store_failure_is_slave_failure(fc):
    responder = Responder(OWN, FailingRegisters(32))
    assert responder.step(req(OWN, fc, 0, 1)).reply == bytes([OWN, fc | 0x80, 0x04])


def test_backing_store_range_checked_before_access():
    responder = Responder(OWN, FailingRegisters(32))
    assert responder.step(req(OWN, 0x06, 32, 1)).reply == bytes([OWN, 0x86, 0x02])


# ---------------------------------------------------------------------------
# Serve loop
# ---------------------------------------------------------------------------

def test_serve_answers_addressed_frames_only(responder):
    transport = FakeTransport([
        req(OWN, 0x06, 10, 1234),
        req(9, 0x06, 0, 1),
        req(OWN, 0x03, 10, 1),
        req(OWN, 0x07, 0, 0),
    ])
    responder.serve(transport)
    assert transport.sent == [
        req(OWN, 0x06, 10, 1234),
        bytes([OWN, 0x03, 2, 0x04, 0xD2]),
        bytes([OWN, 0x87, 0x01]),
    ]


def test_serve_survives_receive_errors(responder, caplog):
    transport = FakeTransport([
        FrameError("CRC mismatch"),
        ReceiveTimeout("Timeout (no response)"),
        TransportError("overrun"),
        req(OWN, 0x03, 0, 1),
    ])
    with caplog.at_level(logging.WARNING):
        responder.serve(transport)
    assert transport.sent == [bytes([OWN, 0x03, 2, 0, 0])]
    assert "CRC mismatch" in caplog.text


def test_serve_survives_send_errors(responder, caplog):
    class FlakySend(FakeTransport):
        def send_frame(self, adu):
            if not self.sent and not getattr(self, "failed", False):
                self.failed = True
                raise TransportError("write failed")
            super().send_frame(adu)

    transport = FlakySend([req(OWN, 0x06, 1, 1), req(OWN, 0x03, 1, 1)])
    with caplog.at_level(logging.ERROR):
        responder.serve(transport)
    assert "Failed to send reply" in caplog.text
    assert transport.sent == [bytes([OWN, 0x03, 2, 0, 1])]
    assert responder.registers.read(1) == [1]


def test_connection_lost_stops(responder):
    assert responder.on_receive_error(ConnectionLostError("gone")).kind is ActionKind.STOP
    assert responder.on_receive_error(FrameError("bad")).kind is ActionKind.IGNORE
