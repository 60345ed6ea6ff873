import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, Optional, Union

from ..exceptions import (
    AllSkyError,
    ChannelBusyError,
    ChecksumMismatchError,
    ResponseTimeoutError,
    TransportError,
)
from ..protocol.checksum import append_checksum
from ..streams.streams import Stream
from .assembler import ResponseAssembler

DEFAULT_TIMEOUT = 5.0       # seconds to wait for a command reply
DEFAULT_BUSY_TIMEOUT = 0.0  # seconds to wait for the exchange slot before giving up
WAIT_SLICE = 0.05           # polling interval for inactivity timeouts

# `response` argument of CommandChannel.send() when no arity is given:
# the next delivery is checksum echo + payload.
ONE_SHOT = object()

DataHandler = Callable[[bytes], None]
ResponseArity = Union[object, int, DataHandler, None]


class PendingReply:
    """
    A result produced on the reader thread and awaited on the caller's thread.

    The first resolve() or fail() wins; later calls are ignored.
    """

    def __init__(self):
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._result = None
        self._error: Optional[BaseException] = None
        self._last_activity = time.monotonic()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def touch(self) -> None:
        """Record link activity (resets the inactivity timer)."""
        self._last_activity = time.monotonic()

    def resolve(self, result=None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._result = result
            self._done.set()
            return True

    def fail(self, error: BaseException) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._error = error
            self._done.set()
            return True

    def wait(self, timeout: Optional[float], idle: bool = False, what: str = "reply"):
        """
        Block until resolved and return the result, or raise the failure.

        Args:
            timeout: Seconds to wait; None waits forever.
            idle: If True, `timeout` is measured from the last touch() instead
                  of from the call, so a chatty link never times out.
            what: Description used in the timeout message.

        Raises:
            ResponseTimeoutError: Nothing resolved the reply in time.
        """
        if timeout is None:
            self._done.wait()
        elif not idle:
            if not self._done.wait(timeout):
                raise ResponseTimeoutError(f"No {what} within {timeout:.1f}s")
        else:
            self.touch()
            while not self._done.wait(WAIT_SLICE):
                if time.monotonic() - self._last_activity > timeout:
                    raise ResponseTimeoutError(f"Link idle for more than {timeout:.1f}s waiting for {what}")
        if self._error is not None:
            raise self._error
        return self._result


class CommandChannel:
    """
    Frames commands, writes them to the stream and routes the replies.

    The stream's event bus has a single "current data listener" slot. Only
    one command exchange may own it at a time; callers claim the slot for a
    whole (possibly multi-command) operation with `exchange()`.
    """

    def __init__(self, stream: Stream, strict_checksum: bool = False,
                 timeout: float = DEFAULT_TIMEOUT, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.log = logging.getLogger("CommandChannel")
        self.stream = stream
        self.events = stream.events
        self.strict_checksum = strict_checksum
        self.timeout = timeout
        self.busy_timeout = busy_timeout
        self._exchange_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._owner: Optional[str] = None

    # --- Exchange slot ---

    @contextlib.contextmanager
    def exchange(self, name: str) -> Iterator[None]:
        """
        Hold the exchange slot for the duration of the block.

        Raises:
            ChannelBusyError: Another operation kept the slot for longer than
                `busy_timeout` seconds.
        """
        if not self._exchange_lock.acquire(timeout=self.busy_timeout):
            raise ChannelBusyError(f"Cannot start '{name}': channel busy with '{self._owner}'")
        self._owner = name
        try:
            yield
        finally:
            self.events.clear_data_listener()
            self._owner = None
            self._exchange_lock.release()

    @property
    def busy(self) -> bool:
        return self._exchange_lock.locked()

    # --- Listener slot ---

    def install_listener(self, listener: Optional[DataHandler]) -> None:
        self.events.set_data_listener(listener)

    def release_listener(self, listener: Optional[DataHandler] = None) -> None:
        self.events.clear_data_listener(listener)

    def collect(self, total_bytes: int, on_complete: Callable[[bytes], None],
                skip_leading_byte: bool = False) -> ResponseAssembler:
        """Install a ResponseAssembler for `total_bytes` as the data listener."""
        assembler = ResponseAssembler(total_bytes, on_complete, skip_leading_byte)
        self.install_listener(assembler.feed)
        return assembler

    # --- Checksum policy ---

    def verify(self, what: str, expected: int, received: int) -> bool:
        """
        Compare a received checksum with the expected one.

        Mismatches are logged; with strict checking they also raise.

        Raises:
            ChecksumMismatchError: Mismatch and `strict_checksum` is set.
        """
        if expected == received:
            return True
        message = f"{what}: checksum mismatch (expected 0x{expected:02X}, received 0x{received:02X})"
        if self.strict_checksum:
            self.log.error(message)
            raise ChecksumMismatchError(message, expected, received)
        self.log.warning(message)
        return False

    # --- Writing ---

    def write_raw(self, data: bytes) -> None:
        """
        Write bytes as-is, then wait for the output buffer to drain.

        Raises:
            TransportError: The write or the drain failed.
        """
        with self._write_lock:
            self.log.debug(f"TX: {bytes(data).hex(' ')}")
            try:
                self.stream.write(data)
                self.stream.drain()
            except AllSkyError:
                raise
            except (OSError, ValueError) as e:
                raise TransportError(f"Write failed: {e}") from e

    def send(self, command: bytes, response: ResponseArity = ONE_SHOT,
             timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Append the checksum to `command`, send it and handle the reply.

        Args:
            command: Command body (opcode + payload).
            response: How the following data is interpreted:
                ONE_SHOT (default) - the next delivery is checksum echo +
                    payload; returns the payload.
                int N - collect exactly N bytes (echo included); returns
                    bytes 1..N-1.
                callable - install it as the data listener and return None
                    once the frame is written.
                None - fire and forget; return None once the frame is written.
            timeout: Reply timeout in seconds (default: the channel's).

        Raises:
            TransportError: The frame could not be written.
            ResponseTimeoutError: No reply in time.
            ChecksumMismatchError: Echo mismatch with strict checking.
        """
        frame = append_checksum(command)
        sent_cs = frame[-1]
        label = f"'{chr(command[0])}'" if command else "empty command"

        if response is None:
            self.write_raw(frame)
            return None

        if callable(response):
            self.install_listener(response)
            try:
                self.write_raw(frame)
            except AllSkyError:
                self.release_listener(response)
                raise
            return None

        pending = PendingReply()

        def finish(data: bytes) -> None:
            try:
                self.verify(f"Reply to {label}", sent_cs, data[0])
            except ChecksumMismatchError as e:
                pending.fail(e)
                return
            pending.resolve(bytes(data[1:]))

        if response is ONE_SHOT:
            def listener(data: bytes) -> None:
                if not data:
                    return
                self.release_listener(listener)
                finish(data)

            self.install_listener(listener)
        elif isinstance(response, int) and not isinstance(response, bool):
            if response < 1:
                raise ValueError(f"Response size must be >= 1, got {response}")

            def on_complete(data: bytes) -> None:
                self.release_listener(assembler.feed)
                finish(data)

            assembler = self.collect(response, on_complete)
            listener = assembler.feed
        else:
            raise TypeError(f"Unsupported response specification: {response!r}")

        try:
            self.write_raw(frame)
            return pending.wait(self.timeout if timeout is None else timeout, what=f"reply to {label}")
        except AllSkyError:
            self.release_listener(listener)
            raise
