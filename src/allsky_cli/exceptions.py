"""
Exception classes for the AllSky camera driver.

Transfer cancellation is not an error and has no exception here; see
AcquisitionOutcome in device/params.py.
"""


class AllSkyError(Exception):
    """Base exception for all AllSky driver errors."""
    pass


class TransportError(AllSkyError):
    """The byte-stream link failed to open, write, drain or read."""
    pass


class NotConnectedError(TransportError):
    """I/O attempted on a stream that is not open."""
    pass


class ProtocolError(AllSkyError):
    """The camera answered in a way the protocol does not allow."""
    pass


class ChecksumMismatchError(ProtocolError):
    """Checksum validation failed (only raised when strict checking is on)."""

    def __init__(self, message: str, expected: int, received: int):
        super().__init__(message)
        self.expected = expected
        self.received = received


class ResponseTimeoutError(ProtocolError):
    """No reply arrived within the allowed time."""
    pass


class ChannelBusyError(AllSkyError):
    """Another command exchange currently owns the channel."""
    pass


class CameraTestError(AllSkyError):
    """The camera's self test ('E' command) did not answer 'O'."""
    pass


class InvalidParameterError(AllSkyError, ValueError):
    """Invalid acquisition, sub-frame or configuration value."""
    pass
