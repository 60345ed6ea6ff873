import logging
import threading
from typing import Callable, Optional

from ..device.assembler import ResponseAssembler
from ..device.channel import CommandChannel, PendingReply
from ..device.params import (
    AcquisitionOutcome,
    AcquisitionResult,
    ResolvedAcquisition,
    TransferProgress,
)
from ..protocol.checksum import block_checksum
from ..protocol.commands import BLOCK_ACK, Command, build_command

ProgressCallback = Callable[[object], None]


class TransferState:
    """
    Abort/transfer flags of one camera.

    `transferring` is only true while the block loop runs. An abort request
    made while it is false acts immediately; one made while it is true is
    picked up at the next block boundary.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.aborting = False
        self.transferring = False

    def reset(self) -> None:
        with self._lock:
            self.aborting = False
            self.transferring = False

    def begin_transfer(self) -> bool:
        """Enter the transfer phase. Returns False if an abort got there first."""
        with self._lock:
            if self.aborting:
                return False
            self.transferring = True
            return True

    def end_transfer(self) -> None:
        with self._lock:
            self.transferring = False

    def request_abort(self) -> bool:
        """Flag an abort. Returns True if the caller must act on it now (not transferring)."""
        with self._lock:
            self.aborting = True
            return not self.transferring

    def stop_at_block_boundary(self) -> bool:
        """Called between blocks: True (and leaves the transfer phase) if an abort is pending."""
        with self._lock:
            if not self.aborting:
                return False
            self.transferring = False
            return True


class ImageTransfer:
    """
    Block-by-block image readout after the camera reported 'D'.

    Each block is `2 * block_count` pixel bytes followed by one XOR checksum
    byte. Every block is acknowledged with a raw 'K' except when an abort is
    pending, in which case a stop-transfer command is sent instead.
    """

    def __init__(self, channel: CommandChannel, state: TransferState,
                 acquisition: ResolvedAcquisition, pending: PendingReply,
                 progress_callback: Optional[ProgressCallback] = None):
        self.log = logging.getLogger("ImageTransfer")
        self.channel = channel
        self.state = state
        self.acquisition = acquisition
        self.pending = pending
        self.progress_callback = progress_callback

        self.block_bytes = acquisition.block_bytes
        self.total_bytes = acquisition.total_bytes
        self.image = bytearray(self.total_bytes)
        self.received_bytes = 0
        self.assembler: Optional[ResponseAssembler] = None

    @property
    def blocks_received(self) -> int:
        return self.assembler.completed_count if self.assembler is not None else 0

    def start(self) -> bool:
        """
        Install the block collector and send 'X'.

        Returns False (and sends nothing) if an abort was requested before
        the transfer phase could begin.
        """
        if not self.state.begin_transfer():
            self.log.info("Abort pending, image transfer not started")
            return False

        self.log.info(
            f"Exposure complete! Transferring image: {self.acquisition.blocks_expected} blocks "
            f"of {self.block_bytes} bytes to read"
        )
        # The first byte after 'X' is the camera's echo of the command checksum
        self.assembler = self.channel.collect(self.block_bytes + 1, self._on_block, skip_leading_byte=True)
        self.channel.send(build_command(Command.TRANSFER_IMAGE), None)
        return True

    def _on_block(self, block: bytes) -> None:
        if self.pending.done:
            return
        self.pending.touch()
        try:
            self._store_block(block)
        except Exception as e:
            self.log.error(f"Image transfer failed after {self.blocks_received} blocks: {e}")
            self.state.reset()
            self.channel.release_listener(self.assembler.feed)
            self.pending.fail(e)

    def _store_block(self, block: bytes) -> None:
        payload = block[:self.block_bytes]
        self.channel.verify(
            f"Block {self.blocks_received}/{self.acquisition.blocks_expected}",
            block_checksum(payload),
            block[self.block_bytes],
        )

        self.image[self.received_bytes:self.received_bytes + self.block_bytes] = payload
        self.received_bytes += self.block_bytes

        if self.progress_callback is not None:
            self.progress_callback(TransferProgress(
                received_bytes=self.received_bytes,
                total_bytes=self.total_bytes,
                percent=self.received_bytes / self.total_bytes * 100,
            ))

        if self.received_bytes == self.total_bytes:
            self.state.end_transfer()
            self.channel.write_raw(BLOCK_ACK)
            self.channel.release_listener(self.assembler.feed)
            self.log.info(f"Received all data! {self.received_bytes} bytes in {self.blocks_received} blocks")
            self.pending.resolve(AcquisitionResult(
                outcome=AcquisitionOutcome.COMPLETED,
                acquisition=self.acquisition,
                image=bytes(self.image),
            ))
        elif self.state.stop_at_block_boundary():
            self.log.info("Abort detected! Sending stop transfer command")
            self.channel.release_listener(self.assembler.feed)
            self.channel.send(build_command(Command.STOP_TRANSFER), None)
            self.state.reset()
            self.log.info(f"Transfer aborted after {self.blocks_received} blocks")
            self.pending.resolve(AcquisitionResult(
                outcome=AcquisitionOutcome.CANCELLED,
                acquisition=self.acquisition,
            ))
        else:
            self.channel.write_raw(BLOCK_ACK)
