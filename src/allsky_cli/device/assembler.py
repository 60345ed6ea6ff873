import logging
from typing import Callable


class ResponseAssembler:
    """
    Accumulates partial 'data' deliveries into fixed-length buffers.

    feed() is installed as the channel's data listener. Each time exactly
    `total_bytes` have been accumulated `on_complete(buffer)` is called once
    and the counters are reset, so the same assembler keeps collecting
    buffers of the same size (one per transfer block).

    With `skip_leading_byte` the first byte of the first delivery is dropped
    (the camera's checksum echo of the command that started the stream).
    This happens once per assembler, not once per buffer.
    """

    def __init__(self, total_bytes: int, on_complete: Callable[[bytes], None],
                 skip_leading_byte: bool = False):
        if total_bytes < 1:
            raise ValueError(f"total_bytes must be >= 1, got {total_bytes}")
        self.log = logging.getLogger("ResponseAssembler")
        self.total_bytes = total_bytes
        self.on_complete = on_complete
        self._skip_pending = skip_leading_byte
        self._buffer = bytearray(total_bytes)
        self._received = 0
        self.completed_count = 0

    @property
    def received(self) -> int:
        """Bytes accumulated towards the current buffer."""
        return self._received

    def reset(self) -> None:
        self._received = 0

    def feed(self, data: bytes) -> None:
        view = memoryview(data)
        if self._skip_pending and len(view) > 0:
            self._skip_pending = False
            view = view[1:]

        while len(view) > 0:
            take = min(len(view), self.total_bytes - self._received)
            self._buffer[self._received:self._received + take] = view[:take]
            self._received += take
            view = view[take:]

            if self._received == self.total_bytes:
                buffer = bytes(self._buffer)
                self.reset()
                self.completed_count += 1
                if len(view) > 0:
                    self.log.debug(f"Delivery straddles buffer boundary, {len(view)} bytes carried over")
                self.on_complete(buffer)
