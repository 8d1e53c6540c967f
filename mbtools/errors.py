"""
Exception hierarchy shared by the responder, the transport and the CLI tools.

Transport errors never reach the protocol layer as Modbus exceptions and
register errors never leave the dispatcher; see responder.py.
"""


class MbtoolsError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(MbtoolsError):
    """Invalid or unreadable configuration."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class TransportError(MbtoolsError):
    """Serial port could not be opened, configured or used."""


class FrameError(TransportError):
    """Received bytes are not a valid RTU frame (too short or bad CRC)."""


class ReceiveTimeout(TransportError):
    """No frame arrived before the response timeout."""


class ConnectionLostError(TransportError):
    """The serial port went away while serving."""


# ---------------------------------------------------------------------------
# Protocol / registers
# ---------------------------------------------------------------------------

class DecodeError(MbtoolsError):
    """Frame too short to hold a request."""


class RegisterError(MbtoolsError):
    pass


class IllegalAddressError(RegisterError):
    """Register range falls outside the map."""


class RegisterAccessError(RegisterError):
    """Backing store failed to read or write a register in range."""


class RequestFailed(MbtoolsError):
    """A master-side request got an exception reply or no reply at all."""
