"""
Stream protocol for the camera link.

A stream is a raw byte pipe with asynchronous delivery: received bytes and
lifecycle changes are announced through its `events` bus rather than read
by the caller.
"""

from typing import Protocol, runtime_checkable

from .events import EventBus


@runtime_checkable
class Stream(Protocol):
    """Protocol defining the interface for camera communication streams."""

    events: EventBus

    @property
    def is_open(self) -> bool:
        ...

    def open(self) -> None:
        """Opens the link and starts event delivery. Raises TransportError."""
        ...

    def close(self) -> None:
        """Stops event delivery and closes the link."""
        ...

    def write(self, data: bytes) -> int:
        """Queues data for transmission. Raises TransportError."""
        ...

    def drain(self) -> None:
        """Blocks until the output buffer has been transmitted. Raises TransportError."""
        ...
