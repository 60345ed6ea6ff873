import unittest

from ..device.channel import CommandChannel
from ..device.params import AcquisitionParams
from ..exceptions import ChecksumMismatchError
from ..protocol.checksum import append_checksum
from ..streams.dummy import DummyStream
from .exposure import ExposureController
from .image import TransferState


class TestExposureController(unittest.TestCase):

    def setUp(self):
        self.stream = DummyStream(address="test_dummy")
        self.stream.open()
        self.channel = CommandChannel(self.stream, timeout=1.0)
        self.state = TransferState()
        self.progress = []

    def tearDown(self):
        self.stream.close()

    def start(self, params=None):
        acquisition = (params or AcquisitionParams('light', 'full', 1.0)).resolve()
        controller = ExposureController(self.channel, self.state, acquisition, self.progress.append)
        controller.start()
        return controller

    def deliver(self, *chunks):
        self.stream.feed(*chunks)
        self.assertTrue(self.stream.wait_delivered())

    def test_take_image_frame(self):
        controller = self.start(AcquisitionParams('dark', 'crop', 2.5))
        self.assertEqual(self.stream.get_sent_data(), [append_checksum(b'T\x00\x61\xa8\x01\x00')])
        self.assertTrue(controller.exposing)

    def test_exposure_progress(self):
        controller = self.start()
        ack = bytes([controller.command_checksum])
        self.deliver(ack, b'E', b'E', b'E')

        self.assertEqual([p.elapsed_time for p in self.progress], [0, 160, 320])
        self.assertTrue(all(p.exposure_time == 1120 for p in self.progress))
        self.assertAlmostEqual(self.progress[1].percent, 160 / 1120 * 100)
        self.assertTrue(controller.exposing)

    def test_coalesced_markers(self):
        """Ack and markers may arrive in a single delivery."""
        controller = self.start()
        self.deliver(bytes([controller.command_checksum]) + b'EE')
        self.assertEqual([p.elapsed_time for p in self.progress], [0, 160])

    def test_done_starts_transfer(self):
        controller = self.start()
        self.deliver(bytes([controller.command_checksum]), b'E', b'D')

        self.assertFalse(controller.exposing)
        self.assertEqual(self.progress[-1].percent, 100.0)
        self.assertEqual(self.progress[-1].kind, 'exposure')
        self.assertEqual(self.stream.get_sent_data()[-1], append_checksum(b'X'))
        self.assertTrue(self.state.transferring)
        self.assertIsNotNone(controller.transfer)

    def test_cancel_from_final_progress_skips_transfer(self):
        acquisition = AcquisitionParams('light', 'full', 1.0).resolve()
        controller = ExposureController(self.channel, self.state, acquisition)

        def on_progress(event):
            if event.percent == 100.0:
                controller.cancel()

        controller.progress_callback = on_progress
        controller.start()
        self.deliver(bytes([controller.command_checksum]), b'D')

        self.assertTrue(controller.wait(1.0).cancelled)
        self.assertIsNone(controller.transfer)
        self.assertFalse(self.state.transferring)
        self.assertNotIn(append_checksum(b'X'), self.stream.get_sent_data())

    def test_done_after_abort_request_cancels(self):
        controller = self.start()
        self.state.request_abort()
        self.deliver(bytes([controller.command_checksum]), b'D')

        result = controller.wait(1.0)
        self.assertTrue(result.cancelled)
        self.assertNotIn(append_checksum(b'X'), self.stream.get_sent_data())

    def test_unexpected_byte_ignored(self):
        controller = self.start()
        with self.assertLogs("ExposureController", level="WARNING"):
            self.deliver(bytes([controller.command_checksum]), b'Z', b'E')
        self.assertEqual(len(self.progress), 1)

    def test_bad_ack_lenient(self):
        self.start()
        with self.assertLogs("CommandChannel", level="WARNING"):
            self.deliver(b'\x00', b'E')
        self.assertEqual(len(self.progress), 1)

    def test_bad_ack_strict(self):
        self.channel.strict_checksum = True
        controller = self.start()
        self.deliver(b'\x00')
        with self.assertRaises(ChecksumMismatchError):
            controller.wait(1.0)
        self.assertIsNone(self.stream.events.data_listener)

    def test_cancel(self):
        controller = self.start()
        self.assertTrue(controller.cancel())
        self.assertFalse(controller.cancel())
        self.assertTrue(controller.wait(1.0).cancelled)
        self.assertIsNone(self.stream.events.data_listener)


if __name__ == '__main__':
    unittest.main()
