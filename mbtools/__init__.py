"""Modbus RTU serial tools: slave emulator (mbs), master (mbm), device configurators."""

from mbtools.config import VERSION as __version__
from mbtools.registers import RegisterMap
from mbtools.responder import Action, ActionKind, Responder

__all__ = ["__version__", "Action", "ActionKind", "RegisterMap", "Responder"]
