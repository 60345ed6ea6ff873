"""Byte-stream transports and their event bus."""

from .events import EventBus
from .streams import Stream
from .usb import USBStream, SERIAL_TIMEOUT
from .dummy import DummyStream
