"""
Modbus RTU slave responder: request decode -> dispatch -> reply.

One received frame goes through

    AddressFiltering -> FunctionDispatch -> Read | Write | Unsupported -> ResponseReady

in ``Responder.step``, which returns an ``Action`` (respond / ignore / stop)
instead of driving the transport itself. ``Responder.serve`` is the loop that
feeds it frames and carries out the actions.

Supported function codes:
  FC03 Read Holding Registers  \\  same register bank
  FC04 Read Input Registers    /
  FC06 Write Single Register

Every register access is range-checked by RegisterMap before anything is
read or written, so a rejected write leaves the map untouched.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, Union

from mbtools.errors import (
    ConnectionLostError,
    DecodeError,
    IllegalAddressError,
    ReceiveTimeout,
    RegisterAccessError,
    TransportError,
)
from mbtools.protocol import (
    MAX_READ_COUNT,
    ExceptionCode,
    FunctionCode,
    ModbusRequest,
    build_exception_response,
    build_read_response,
    build_write_response,
    decode_request,
)
from mbtools.registers import RegisterMap
from mbtools.rtu import hexdump

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handler results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReadResult:
    values: Tuple[int, ...]


@dataclass(frozen=True)
class WriteResult:
    address: int
    value: int


@dataclass(frozen=True)
class ExceptionResult:
    code: ExceptionCode


HandlerResult = Union[ReadResult, WriteResult, ExceptionResult]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class ActionKind(enum.Enum):
    RESPOND = "respond"
    IGNORE = "ignore"
    STOP = "stop"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    reply: Optional[bytes] = None

    @classmethod
    def respond(cls, reply: bytes) -> "Action":
        return cls(ActionKind.RESPOND, reply)

    @classmethod
    def ignore(cls) -> "Action":
        return cls(ActionKind.IGNORE)

    @classmethod
    def stop(cls) -> "Action":
        return cls(ActionKind.STOP)


# ---------------------------------------------------------------------------
# Responder
# ---------------------------------------------------------------------------

class Responder:
    """Answers requests addressed to ``own_address`` from its own register map."""

    def __init__(
        self,
        own_address: int,
        registers: Optional[RegisterMap] = None,
        header_length: int = 1,
    ):
        self.own_address = own_address
        self.registers = registers if registers is not None else RegisterMap()
        self.header_length = header_length
        self._handlers: Dict[int, Callable[[ModbusRequest], HandlerResult]] = {
            FunctionCode.READ_HOLDING_REGISTERS: self._read,
            FunctionCode.READ_INPUT_REGISTERS: self._read,
            FunctionCode.WRITE_SINGLE_REGISTER: self._write,
        }

    def step(self, frame: bytes) -> Action:
        """Handle one received frame (CRC already verified and stripped)."""
        try:
            req = decode_request(frame, self.header_length)
        except DecodeError as e:
            log.error(f"Slave #{self.own_address}: bad request {hexdump(frame)}: {e}")
            return Action.ignore()

        log.debug(
            f"received request for slave {req.slave_addr}, op {req.function_code}, "
            f"addr {req.address}, reg_val {req.value}"
        )

        # Shared bus: only the addressed node replies
        if req.slave_addr != self.own_address:
            return Action.ignore()

        result = self.dispatch(req)
        return Action.respond(self.build_reply(req, result))

    def dispatch(self, req: ModbusRequest) -> HandlerResult:
        handler = self._handlers.get(req.function_code)
        if handler is None:
            log.error(f"Invalid operation {req.function_code}")
            return ExceptionResult(ExceptionCode.ILLEGAL_FUNCTION)
        if not req.has_data:
            log.error(f"Slave #{self.own_address}: truncated request, op {req.function_code}")
            return ExceptionResult(ExceptionCode.ILLEGAL_DATA_VALUE)

        try:
            return handler(req)
        except IllegalAddressError:
            return ExceptionResult(ExceptionCode.ILLEGAL_DATA_ADDRESS)
        except RegisterAccessError as e:
            log.error(f"Slave #{self.own_address}: register access failed: {e}")
            return ExceptionResult(ExceptionCode.SLAVE_DEVICE_FAILURE)

    def build_reply(self, req: ModbusRequest, result: HandlerResult) -> bytes:
        if isinstance(result, ReadResult):
            return build_read_response(self.own_address, req.function_code, list(result.values))
        if isinstance(result, WriteResult):
            return build_write_response(self.own_address, result.address, result.value)
        return build_exception_response(self.own_address, req.function_code, result.code)

    def _read(self, req: ModbusRequest) -> HandlerResult:
        if req.address >= self.registers.size:
            return ExceptionResult(ExceptionCode.ILLEGAL_DATA_ADDRESS)
        if not 1 <= req.count <= MAX_READ_COUNT:
            return ExceptionResult(ExceptionCode.ILLEGAL_DATA_VALUE)

        values = self.registers.read(req.address, req.count)
        log.debug(f"Read val {values} from addr {req.address}")
        return ReadResult(tuple(values))

    def _write(self, req: ModbusRequest) -> HandlerResult:
        self.registers.write(req.address, req.value)
        log.debug(f"Wrote val {req.value} to addr {req.address}")
        return WriteResult(req.address, req.value)

    def on_receive_error(self, exc: TransportError) -> Action:
        if isinstance(exc, ConnectionLostError):
            log.error(f"Slave #{self.own_address}: connection lost: {exc}")
            return Action.stop()
        if isinstance(exc, ReceiveTimeout):
            log.warning(f"Slave #{self.own_address}: receive timed out")
        else:
            log.error(f"Slave #{self.own_address}: receive failed: {exc}")
        return Action.ignore()

    def serve(self, transport) -> None:
        """Request/response loop. Returns only when the port is lost."""
        log.info(
            f"Slave #{self.own_address} serving {self.registers.size} registers"
        )
        while True:
            try:
                frame = transport.receive_frame()
            except TransportError as e:
                action = self.on_receive_error(e)
            else:
                action = self.step(frame)

            if action.kind is ActionKind.STOP:
                log.info(f"Slave #{self.own_address} stopped")
                return
            if action.kind is ActionKind.RESPOND:
                try:
                    transport.send_frame(action.reply)
                except TransportError as e:
                    log.error(
                        f"Slave #{self.own_address}: Failed to send reply to the client: {e}"
                    )
