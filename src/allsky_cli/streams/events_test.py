import unittest

from .events import EventBus, EVENT_CLOSE, EVENT_DATA, EVENT_ERROR


class TestEventBus(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.calls = []

    def test_handlers_run_in_registration_order(self):
        self.bus.subscribe(EVENT_CLOSE, lambda p: self.calls.append(('first', p)))
        self.bus.subscribe(EVENT_CLOSE, lambda p: self.calls.append(('second', p)))
        self.bus.emit(EVENT_CLOSE, "port")
        self.assertEqual(self.calls, [('first', "port"), ('second', "port")])

    def test_unknown_event_rejected(self):
        with self.assertRaises(ValueError):
            self.bus.subscribe('bogus', print)
        with self.assertRaises(ValueError):
            self.bus.unsubscribe('bogus', print)

    def test_unsubscribe(self):
        handler = self.calls.append
        self.bus.subscribe(EVENT_ERROR, handler)
        self.bus.unsubscribe(EVENT_ERROR, handler)
        self.bus.emit(EVENT_ERROR, "boom")
        self.assertEqual(self.calls, [])

    def test_data_listener_served_before_subscribers(self):
        self.bus.subscribe(EVENT_DATA, lambda p: self.calls.append(('subscriber', p)))
        self.bus.set_data_listener(lambda p: self.calls.append(('listener', p)))
        self.bus.emit(EVENT_DATA, b'\x01')
        self.assertEqual(self.calls, [('listener', b'\x01'), ('subscriber', b'\x01')])

    def test_clear_data_listener_only_if_owner(self):
        def first(data):
            pass

        def second(data):
            pass

        self.bus.set_data_listener(second)
        self.bus.clear_data_listener(first)
        self.assertIs(self.bus.data_listener, second)
        self.bus.clear_data_listener(second)
        self.assertIsNone(self.bus.data_listener)

    def test_clear_data_listener_with_bound_method(self):
        """A bound method fetched twice still matches the installed listener."""
        self.bus.set_data_listener(self.calls.append)
        self.bus.clear_data_listener(self.calls.append)
        self.assertIsNone(self.bus.data_listener)

    def test_failing_handler_does_not_stop_delivery(self):
        def broken(payload):
            raise RuntimeError("handler bug")

        self.bus.subscribe(EVENT_CLOSE, broken)
        self.bus.subscribe(EVENT_CLOSE, self.calls.append)
        with self.assertLogs("EventBus", level="ERROR"):
            self.bus.emit(EVENT_CLOSE, "port")
        self.assertEqual(self.calls, ["port"])

    def test_unsolicited_data_is_dropped(self):
        self.bus.emit(EVENT_DATA, b'\x00\x01')
        self.assertIsNone(self.bus.data_listener)


if __name__ == '__main__':
    unittest.main()
