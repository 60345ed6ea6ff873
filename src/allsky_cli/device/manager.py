import logging
import time
from typing import Callable, Optional

from ..config import CameraConfig
from ..exceptions import AllSkyError, CameraTestError, TransportError
from ..protocol.commands import (
    Command,
    FIRMWARE_RESPONSE_SIZE,
    SERIAL_RESPONSE_SIZE,
    TEST_RESPONSE_SIZE,
    build_command,
    build_define_subframe,
    build_switch,
)
from ..streams.events import EVENT_DISCONNECT, EVENT_ERROR
from ..streams.streams import Stream
from ..transport.exposure import ExposureController
from ..transport.image import TransferState
from .channel import CommandChannel
from .params import AcquisitionParams, AcquisitionResult, SubframeParams

# Time the shutter motor stays energized after a move
SHUTTER_SETTLE_TIME = 0.1  # seconds

ProgressCallback = Callable[[object], None]


class AllSkyCamera:
    """
    Command API of an AllSky 340 camera on an already created Stream.

    Every public method is blocking and runs as one exchange on the command
    channel; a second call made while one is in progress fails with
    ChannelBusyError (after `busy_timeout`). abort() is the exception: it
    may be called from any thread while get_image() is running.
    """

    def __init__(self, stream: Stream, config: Optional[CameraConfig] = None):
        self.log = logging.getLogger("AllSkyCamera")
        if stream is None:
            raise ValueError("AllSkyCamera requires a Stream object.")
        self.config = config or CameraConfig()
        self.stream = stream
        self.channel = CommandChannel(
            stream,
            strict_checksum=self.config.strict_checksum,
            timeout=self.config.timeout,
            busy_timeout=self.config.busy_timeout,
        )
        self.state = TransferState()
        self._active: Optional[ExposureController] = None
        self._subscribed = False

    # --- Connection ---

    def open(self) -> None:
        """Open the underlying stream and watch it for link failures. Raises TransportError."""
        if not self._subscribed:
            self.stream.events.subscribe(EVENT_DISCONNECT, self._on_disconnect)
            self.stream.events.subscribe(EVENT_ERROR, self._on_error)
            self._subscribed = True
        self.stream.open()

    def close(self) -> None:
        """Close the underlying stream."""
        try:
            self.stream.close()
        finally:
            if self._subscribed:
                self.stream.events.unsubscribe(EVENT_DISCONNECT, self._on_disconnect)
                self.stream.events.unsubscribe(EVENT_ERROR, self._on_error)
                self._subscribed = False
            self.state.reset()

    def _on_disconnect(self, _payload) -> None:
        self._fail_active(TransportError("Camera link disconnected"))

    def _on_error(self, error) -> None:
        self.log.error(f"Transport error: {error}")
        self._fail_active(error if isinstance(error, AllSkyError) else TransportError(str(error)))

    def _fail_active(self, error: AllSkyError) -> None:
        active = self._active
        if active is not None and active.pending.fail(error):
            self.log.error(f"Acquisition failed: {error}")

    # --- Simple commands ---

    def send_test(self) -> str:
        """
        Run the camera's communication test.

        Raises:
            CameraTestError: The camera did not answer 'O'.
        """
        with self.channel.exchange("send_test"):
            data = self.channel.send(build_command(Command.TEST), TEST_RESPONSE_SIZE)
        if data != b'O':
            self.log.error(f"Test didn't pass! Answer should be 'O', received data: {data!r}")
            raise CameraTestError(f"Test didn't pass! Answer should be 'O', received data: {data!r}")
        self.log.debug("Got test answer")
        return "Test passed."

    def get_firmware_version(self) -> int:
        with self.channel.exchange("get_firmware_version"):
            data = self.channel.send(build_command(Command.FIRMWARE_VERSION), FIRMWARE_RESPONSE_SIZE)
        return int.from_bytes(data[:2], 'little', signed=True)

    def get_serial_number(self) -> str:
        with self.channel.exchange("get_serial_number"):
            data = self.channel.send(build_command(Command.SERIAL_NUMBER), SERIAL_RESPONSE_SIZE)
        return data.decode('ascii', errors='replace')

    def _switch(self, command: Command, enabled: bool) -> bytes:
        with self.channel.exchange(command.label):
            return self.channel.send(build_switch(command, enabled))

    def heater_on(self) -> bytes:
        return self._switch(Command.HEATER, True)

    def heater_off(self) -> bytes:
        return self._switch(Command.HEATER, False)

    def chop_on(self) -> bytes:
        return self._switch(Command.CHOPPER, True)

    def chop_off(self) -> bytes:
        return self._switch(Command.CHOPPER, False)

    # --- Shutter ---

    def _move_shutter(self, command: Command) -> bytes:
        """Move the shutter, let it settle, then de-energize the motor."""
        with self.channel.exchange(command.label):
            self.channel.send(build_command(command))
            self.log.info("Shutter open" if command is Command.OPEN_SHUTTER else "Shutter closed")
            time.sleep(SHUTTER_SETTLE_TIME)
            return self.channel.send(build_command(Command.DE_ENERGIZE))

    def open_shutter(self) -> bytes:
        return self._move_shutter(Command.OPEN_SHUTTER)

    def close_shutter(self) -> bytes:
        return self._move_shutter(Command.CLOSE_SHUTTER)

    # --- Sub-frame ---

    def define_subframe(self, params: SubframeParams) -> bytes:
        """
        Define the location and size of the sub-frame used by 'custom' frames.

        The maximum sub-frame size is 127 pixels. Returns the reply payload.
        """
        command = build_define_subframe(params.x_start, params.y_start, params.size)
        with self.channel.exchange("define_subframe"):
            return self.channel.send(command)

    # --- Acquisition ---

    def get_image(self, params: AcquisitionParams,
                  progress_callback: Optional[ProgressCallback] = None) -> AcquisitionResult:
        """
        Expose and read out one image.

        Args:
            params: What to acquire.
            progress_callback: Called on the transport's reader thread with an
                ExposureProgress for every exposure marker and a
                TransferProgress after every block.

        Returns:
            AcquisitionResult; its outcome is CANCELLED if abort() was called.

        Raises:
            InvalidParameterError: Bad params.
            TransportError: The link failed.
            ResponseTimeoutError: The link went silent for `idle_timeout`.
            ChecksumMismatchError: Only with strict checksum checking.
        """
        acquisition = params.resolve()
        with self.channel.exchange("get_image"):
            self.state.reset()
            controller = ExposureController(self.channel, self.state, acquisition, progress_callback)
            self._active = controller
            try:
                controller.start()
                result = controller.wait(self.config.idle_timeout or None)
                result.params = params
                return result
            finally:
                self._active = None
                self.state.reset()

    acquire = get_image

    def abort(self) -> None:
        """
        Abort the current exposure or image transfer.

        While an image is being transferred the abort takes effect at the
        next block boundary. Otherwise 'A' is sent right away and a running
        exposure finishes as cancelled.
        """
        if not self.state.request_abort():
            self.log.info("Abort requested, transfer will stop at the next block")
            return

        self.channel.send(build_command(Command.ABORT), None)
        active = self._active
        if active is None:
            self.state.reset()
            return
        # `aborting` stays set until get_image() finishes, so a transfer
        # racing with this abort cannot begin
        active.cancel()
