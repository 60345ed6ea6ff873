import threading
import time
import unittest

from ..exceptions import (
    ChannelBusyError,
    ChecksumMismatchError,
    ResponseTimeoutError,
    TransportError,
)
from ..protocol.checksum import checksum
from ..streams.dummy import DummyStream
from .channel import CommandChannel, PendingReply


class TestPendingReply(unittest.TestCase):

    def test_first_resolution_wins(self):
        pending = PendingReply()
        self.assertTrue(pending.resolve("first"))
        self.assertFalse(pending.resolve("second"))
        self.assertFalse(pending.fail(RuntimeError("late")))
        self.assertEqual(pending.wait(0.1), "first")

    def test_failure_raised_on_waiter(self):
        pending = PendingReply()
        pending.fail(TransportError("gone"))
        with self.assertRaises(TransportError):
            pending.wait(0.1)

    def test_timeout(self):
        with self.assertRaises(ResponseTimeoutError):
            PendingReply().wait(0.05)

    def test_idle_timeout_reset_by_activity(self):
        pending = PendingReply()
        stop = threading.Event()

        def chatter():
            # Keep the link "active" for longer than the idle timeout
            for _ in range(6):
                if stop.wait(0.05):
                    return
                pending.touch()
            pending.resolve("done")

        thread = threading.Thread(target=chatter)
        thread.start()
        try:
            self.assertEqual(pending.wait(0.2, idle=True), "done")
        finally:
            stop.set()
            thread.join()

    def test_idle_timeout_when_silent(self):
        with self.assertRaises(ResponseTimeoutError):
            PendingReply().wait(0.1, idle=True)


class TestCommandChannel(unittest.TestCase):

    def setUp(self):
        self.stream = DummyStream(address="test_dummy")
        self.stream.open()
        self.channel = CommandChannel(self.stream, timeout=1.0)

    def tearDown(self):
        self.stream.close()

    def test_send_writes_framed_command(self):
        self.stream.responder = lambda data: [bytes([data[-1]])]
        self.channel.send(b'E')
        self.assertEqual(self.stream.get_sent_data(), [b'E' + bytes([checksum(b'E')])])

    def test_one_shot_returns_payload(self):
        self.stream.responder = lambda data: [bytes([data[-1]]) + b'ok']
        self.assertEqual(self.channel.send(b'g\x01'), b'ok')
        self.assertIsNone(self.stream.events.data_listener)

    def test_fixed_size_response_from_fragments(self):
        self.stream.responder = lambda data: [bytes([data[-1]]), b'1', b'2345', b'6789A']
        self.assertEqual(self.channel.send(b'r', 11), b'123456789A')
        self.assertIsNone(self.stream.events.data_listener)

    def test_checksum_mismatch_is_lenient_by_default(self):
        self.stream.responder = lambda data: [b'\x00O']
        with self.assertLogs("CommandChannel", level="WARNING"):
            self.assertEqual(self.channel.send(b'E', 2), b'O')

    def test_checksum_mismatch_strict(self):
        self.channel.strict_checksum = True
        self.stream.responder = lambda data: [b'\x00O']
        with self.assertRaises(ChecksumMismatchError) as ctx:
            self.channel.send(b'E', 2)
        self.assertEqual(ctx.exception.expected, checksum(b'E'))
        self.assertEqual(ctx.exception.received, 0)

    def test_timeout_releases_listener(self):
        with self.assertRaises(ResponseTimeoutError):
            self.channel.send(b'V', 3, timeout=0.1)
        self.assertIsNone(self.stream.events.data_listener)

    def test_fire_and_forget(self):
        self.assertIsNone(self.channel.send(b'A', None))
        self.assertIsNone(self.stream.events.data_listener)
        self.assertEqual(self.stream.get_sent_data(), [b'A' + bytes([checksum(b'A')])])

    def test_callable_response_installed_as_listener(self):
        received = []
        self.assertIsNone(self.channel.send(b'T', received.append))
        self.stream.feed(b'E')
        self.assertTrue(self.stream.wait_delivered())
        self.assertEqual(received, [b'E'])

    def test_write_failure_is_transport_error(self):
        self.stream.write_error = OSError("cable pulled")
        with self.assertRaises(TransportError):
            self.channel.send(b'E', 2)
        self.assertIsNone(self.stream.events.data_listener)

    def test_drain_failure_is_transport_error(self):
        self.stream.drain_error = OSError("buffer stuck")
        with self.assertRaises(TransportError):
            self.channel.write_raw(b'K')

    def test_write_raw_has_no_checksum(self):
        self.channel.write_raw(b'K')
        self.assertEqual(self.stream.get_sent_data(), [b'K'])

    def test_invalid_response_size(self):
        with self.assertRaises(ValueError):
            self.channel.send(b'E', 0)

    def test_exchange_is_exclusive(self):
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with self.channel.exchange("holder"):
                entered.set()
                release.wait(2.0)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            self.assertTrue(entered.wait(1.0))
            self.assertTrue(self.channel.busy)
            with self.assertRaises(ChannelBusyError):
                with self.channel.exchange("intruder"):
                    pass
        finally:
            release.set()
            thread.join()
        self.assertFalse(self.channel.busy)

    def test_busy_timeout_waits_for_slot(self):
        self.channel.busy_timeout = 1.0

        def holder():
            with self.channel.exchange("holder"):
                time.sleep(0.1)

        thread = threading.Thread(target=holder)
        thread.start()
        time.sleep(0.02)
        with self.channel.exchange("waiter"):
            pass
        thread.join()

    def test_collect_installs_assembler(self):
        buffers = []
        self.channel.collect(3, buffers.append, skip_leading_byte=True)
        self.stream.feed(b'\x27a', b'bc', b'def')
        self.assertTrue(self.stream.wait_delivered())
        self.assertEqual(buffers, [b'abc', b'def'])

    def test_exchange_clears_listener(self):
        with self.channel.exchange("test"):
            self.channel.install_listener(lambda data: None)
        self.assertIsNone(self.stream.events.data_listener)


if __name__ == '__main__':
    unittest.main()
