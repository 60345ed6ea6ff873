import logging
import queue
import threading
import time
from typing import Callable, Iterable, List, Optional

from ..exceptions import NotConnectedError, TransportError
from .events import EventBus, EVENT_CLOSE, EVENT_DATA, EVENT_OPEN
from .streams import Stream

Responder = Callable[[bytes], Optional[Iterable[bytes]]]

_STOP = object()


class DummyStream(Stream):
    """
    A scripted in-memory stream for testing the camera driver.

    Written data is recorded. Bytes to "receive" are queued with feed() or
    produced by a responder called on every write, and are delivered as
    'data' events from a background thread, like USBStream's reader thread.
    """

    def __init__(self, address: str = "dummy", responder: Optional[Responder] = None):
        self.log = logging.getLogger("DummyStream")
        self.address = address
        self.events = EventBus()
        self.responder = responder
        self.sent_data: List[bytes] = []
        self.write_error: Optional[Exception] = None
        self.drain_error: Optional[Exception] = None
        self._open = False
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    # --- Stream Protocol Methods --- #

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self._open:
            return
        self._open = True
        self._thread = threading.Thread(target=self._deliver_loop, name="DummyStream", daemon=True)
        self._thread.start()
        self.log.debug(f"DummyStream opened for {self.address}")
        self.events.emit(EVENT_OPEN, self.address)

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._queue.put(_STOP)
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None
        self.log.debug(f"DummyStream closed for {self.address}")
        self.events.emit(EVENT_CLOSE, self.address)

    def write(self, data: bytes) -> int:
        if not self._open:
            raise NotConnectedError("Stream is closed")
        if self.write_error is not None:
            raise TransportError(f"Simulated write failure: {self.write_error}") from self.write_error
        data = bytes(data)
        self.log.debug(f"Write: {data!r}")
        self.sent_data.append(data)
        if self.responder is not None:
            replies = self.responder(data)
            if replies:
                self.feed(*replies)
        return len(data)

    def drain(self) -> None:
        if not self._open:
            raise NotConnectedError("Stream is closed")
        if self.drain_error is not None:
            raise TransportError(f"Simulated drain failure: {self.drain_error}") from self.drain_error

    # --- Test Helper Methods --- #

    def feed(self, *chunks: bytes) -> None:
        """Queue chunks for delivery as separate 'data' events."""
        for chunk in chunks:
            self._queue.put(bytes(chunk))

    def wait_delivered(self, timeout: float = 2.0) -> bool:
        """Block until every queued chunk has been delivered."""
        done = threading.Event()
        self._queue.put(done)
        return done.wait(timeout)

    def get_sent_data(self) -> List[bytes]:
        return list(self.sent_data)

    def clear_sent_data(self) -> None:
        self.sent_data.clear()

    def _deliver_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if isinstance(item, threading.Event):
                item.set()
                continue
            self.events.emit(EVENT_DATA, item)


class CameraSimulator:
    """
    Responder for DummyStream that behaves like an AllSky 340.

    Framed commands are acknowledged with their checksum echo. 'T' answers
    with `exposure_markers` 'E' markers and a 'D' (unless `hold_exposure`
    is set, then only the markers), 'X' starts the block transfer and every
    raw 'K' sends the next block. Blocks are delivered in chunks of
    `chunk_size` bytes. Every write is recorded in `writes` with its
    monotonic timestamp.
    """

    # frame code -> (width, height, block_count)
    GEOMETRY = {0: (640, 480, 4096), 1: (512, 480, 4096), 2: (320, 240, 1024)}

    def __init__(self, firmware_version: int = 17, serial_number: bytes = b'AS34012345',
                 test_answer: bytes = b'O', exposure_markers: int = 2,
                 hold_exposure: bool = False, chunk_size: int = 1000,
                 corrupt_block: Optional[int] = None):
        self.firmware_version = firmware_version
        self.serial_number = serial_number
        self.test_answer = test_answer
        self.exposure_markers = exposure_markers
        self.hold_exposure = hold_exposure
        self.chunk_size = chunk_size
        self.corrupt_block = corrupt_block
        self.subframe_size = 127
        self.writes: List[tuple] = []
        self.blocks_sent = 0
        self.blocks_expected = 0
        self.block_bytes = 0
        self.transfer_stopped = False
        self.aborted = False

    def __call__(self, data: bytes) -> List[bytes]:
        self.writes.append((time.monotonic(), data))
        if data == b'K':
            return self._next_block()

        opcode, echo = data[:1], bytes([data[-1]])
        if opcode == b'E':
            return [echo + self.test_answer]
        if opcode == b'V':
            return [echo, self.firmware_version.to_bytes(2, 'little', signed=True)]
        if opcode == b'r':
            return [echo + self.serial_number[:5], self.serial_number[5:]]
        if opcode == b'S' and len(data) == 7:
            self.subframe_size = data[5]
            return [echo]
        if opcode == b'S':
            self.transfer_stopped = True
            return []
        if opcode == b'A':
            self.aborted = True
            return []
        if opcode == b'T':
            return self._expose(data, echo)
        if opcode == b'X':
            self.blocks_sent = 0
            return [echo] + self._next_block()
        return [echo]

    def configure_frame(self, frame_code: int) -> None:
        """Set the transfer geometry for `frame_code`, as a 'T' command does."""
        if frame_code == 255:
            size = self.subframe_size
            width, height, block_count = size, size, size
        else:
            width, height, block_count = self.GEOMETRY[frame_code]
        self.block_bytes = 2 * block_count
        self.blocks_expected = (width * height) // block_count

    def _expose(self, data: bytes, echo: bytes) -> List[bytes]:
        self.configure_frame(data[4])
        replies = [echo] + [b'E'] * self.exposure_markers
        if not self.hold_exposure:
            replies.append(b'D')
        return replies

    def block_payload(self, index: int) -> bytes:
        return bytes((index + i) & 0xFF for i in range(self.block_bytes))

    def _next_block(self) -> List[bytes]:
        if self.transfer_stopped or self.blocks_sent >= self.blocks_expected:
            return []
        payload = self.block_payload(self.blocks_sent)
        cs = 0
        for byte in payload:
            cs ^= byte
        if self.blocks_sent == self.corrupt_block:
            cs ^= 0xFF
        self.blocks_sent += 1
        block = payload + bytes([cs])
        return [block[i:i + self.chunk_size] for i in range(0, len(block), self.chunk_size)]

    def sent_opcodes(self) -> List[bytes]:
        return [data[:1] for _, data in self.writes]
