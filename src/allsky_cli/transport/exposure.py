"""
Exposure phase of an image acquisition.

After the 'T' command the camera echoes the command checksum, then sends an
'E' roughly every 160 ms while the shutter is open and a single 'D' once the
exposure is complete. The 'D' hands over to ImageTransfer.
"""

import logging
from typing import Callable, Optional

from ..device.channel import CommandChannel, PendingReply
from ..device.params import (
    AcquisitionOutcome,
    AcquisitionResult,
    EXPOSURE_MARKER_PERIOD_MS,
    ExposureProgress,
    ResolvedAcquisition,
)
from ..protocol.checksum import checksum
from ..protocol.commands import MARKER_DONE, MARKER_EXPOSING, build_take_image
from .image import ImageTransfer, TransferState

ProgressCallback = Callable[[object], None]


class ExposureController:
    """Runs one acquisition from the 'T' command to a terminal AcquisitionResult."""

    def __init__(self, channel: CommandChannel, state: TransferState,
                 acquisition: ResolvedAcquisition,
                 progress_callback: Optional[ProgressCallback] = None):
        self.log = logging.getLogger("ExposureController")
        self.channel = channel
        self.state = state
        self.acquisition = acquisition
        self.progress_callback = progress_callback
        self.pending = PendingReply()
        self.transfer: Optional[ImageTransfer] = None

        self.command = build_take_image(
            acquisition.exposure_units, acquisition.frame_code, acquisition.image_code
        )
        self.command_checksum = checksum(self.command)
        self.exposure_time = acquisition.exposure_ms_rounded
        # First 'E' reports 0 ms elapsed
        self.elapsed_time = -EXPOSURE_MARKER_PERIOD_MS
        self._acknowledged = False
        self._exposing = False

    @property
    def exposing(self) -> bool:
        """True between sending 'T' and receiving 'D'."""
        return self._exposing

    def start(self) -> None:
        """Send the 'T' command with this controller as the data listener."""
        a = self.acquisition
        self.log.info(
            f"Starting {a.exposure_seconds:g}s {a.image_kind} exposure, {a.frame_kind} frame "
            f"({a.width}x{a.height}, {a.exposure_units} ticks)"
        )
        self._exposing = True
        try:
            self.channel.send(self.command, self._on_data)
        except Exception:
            self._exposing = False
            raise

    def wait(self, idle_timeout: Optional[float]) -> AcquisitionResult:
        """Block until the acquisition completes, is cancelled or fails."""
        return self.pending.wait(idle_timeout, idle=True, what="camera data")

    def cancel(self) -> bool:
        """
        Finish the acquisition as cancelled (abort during the exposure phase).

        Returns False if it had already finished.
        """
        self._exposing = False
        self.channel.release_listener(self._on_data)
        cancelled = self.pending.resolve(AcquisitionResult(
            outcome=AcquisitionOutcome.CANCELLED,
            acquisition=self.acquisition,
        ))
        if cancelled:
            self.log.info("Exposure aborted")
        return cancelled

    def _on_data(self, data: bytes) -> None:
        if self.pending.done:
            return
        self.pending.touch()
        try:
            for index, byte in enumerate(data):
                if not self._acknowledged:
                    self._acknowledged = True
                    self.channel.verify("Take image acknowledgment", self.command_checksum, byte)
                elif byte == MARKER_EXPOSING:
                    self._on_exposing()
                    if self.pending.done:
                        # aborted from the progress callback
                        return
                elif byte == MARKER_DONE:
                    if index + 1 < len(data):
                        self.log.warning(f"Ignoring {len(data) - index - 1} bytes received with 'D'")
                    self._on_done()
                    return
                else:
                    self.log.warning(f"Unexpected byte 0x{byte:02X} during exposure")
        except Exception as e:
            self.log.error(f"Acquisition failed: {e}")
            self._exposing = False
            self.state.reset()
            self.channel.release_listener(self._on_data)
            self.pending.fail(e)

    def _on_exposing(self) -> None:
        self.elapsed_time += EXPOSURE_MARKER_PERIOD_MS
        self.log.debug(f"Exposing: {self.elapsed_time}/{self.exposure_time} ms")
        if self.progress_callback is not None:
            self.progress_callback(ExposureProgress(
                exposure_time=self.exposure_time,
                elapsed_time=self.elapsed_time,
                percent=self.elapsed_time / self.exposure_time * 100,
            ))

    def _on_done(self) -> None:
        self._exposing = False
        self.channel.release_listener(self._on_data)
        if self.progress_callback is not None:
            self.progress_callback(ExposureProgress(
                exposure_time=self.exposure_time,
                elapsed_time=max(self.elapsed_time, 0),
                percent=100.0,
            ))

        if self.pending.done:
            # aborted from the progress callback
            return
        self.transfer = ImageTransfer(
            self.channel, self.state, self.acquisition, self.pending, self.progress_callback
        )
        if not self.transfer.start():
            self.pending.resolve(AcquisitionResult(
                outcome=AcquisitionOutcome.CANCELLED,
                acquisition=self.acquisition,
            ))
