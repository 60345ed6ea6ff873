import logging
import threading
from typing import Callable, Dict, List, Optional

# Lifecycle events a stream can emit
EVENT_OPEN = 'open'
EVENT_CLOSE = 'close'
EVENT_DISCONNECT = 'disconnect'
EVENT_ERROR = 'error'
EVENT_DATA = 'data'

EVENTS = (EVENT_OPEN, EVENT_CLOSE, EVENT_DISCONNECT, EVENT_ERROR, EVENT_DATA)

DataListener = Callable[[bytes], None]


class EventBus:
    """
    Routes stream lifecycle events to subscribers.

    Handlers run synchronously, in registration order, on whatever thread
    emits the event (for USBStream that is the reader thread). The 'data'
    event has one extra "current data listener" slot that is served before
    the generic subscribers; only CommandChannel sets or clears it.
    """

    def __init__(self):
        self.log = logging.getLogger("EventBus")
        self._handlers: Dict[str, List[Callable]] = {name: [] for name in EVENTS}
        self._data_listener: Optional[DataListener] = None
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Callable) -> None:
        """Register `handler` for `event`. Several handlers per event are allowed."""
        if event not in self._handlers:
            raise ValueError(f"Unknown event '{event}'. Valid: {list(EVENTS)}")
        with self._lock:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Callable) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown event '{event}'. Valid: {list(EVENTS)}")
        with self._lock:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

    @property
    def data_listener(self) -> Optional[DataListener]:
        return self._data_listener

    def set_data_listener(self, listener: Optional[DataListener]) -> None:
        self._data_listener = listener

    def clear_data_listener(self, listener: Optional[DataListener] = None) -> None:
        """
        Clear the current data listener.

        If `listener` is given the slot is only cleared while it still holds
        that listener, so a finished exchange cannot evict its successor.
        """
        # == rather than `is`: bound methods are re-created on every access
        if listener is None or self._data_listener == listener:
            self._data_listener = None

    def emit(self, event: str, payload=None) -> None:
        """Deliver `payload` to the handlers of `event`."""
        if event == EVENT_DATA:
            listener = self._data_listener
            if listener is not None:
                self._call(listener, event, payload)
            elif payload:
                self.log.debug(f"Unsolicited data ({len(payload)} bytes): {bytes(payload[:16]).hex(' ')}")

        with self._lock:
            handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            self._call(handler, event, payload)

    def _call(self, handler: Callable, event: str, payload) -> None:
        try:
            handler(payload)
        except Exception as e:
            # A failing subscriber must not take the reader thread down
            self.log.error(f"Handler {handler!r} for '{event}' raised: {e}", exc_info=True)
