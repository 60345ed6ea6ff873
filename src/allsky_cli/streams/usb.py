import logging
import threading
from typing import Dict, List, Optional

import serial
import serial.tools.list_ports

from ..exceptions import NotConnectedError, TransportError
from .events import (
    EventBus,
    EVENT_CLOSE,
    EVENT_DATA,
    EVENT_DISCONNECT,
    EVENT_ERROR,
    EVENT_OPEN,
)
from .streams import Stream

# Constants
SERIAL_TIMEOUT = 0.1  # seconds, also the reader thread's shutdown poll interval
DEFAULT_BAUDRATE = 115200
SUPPORTED_BAUDRATES = (115200, 230400, 460800)
READ_CHUNK = 4096


class USBStream(Stream):
    """
    USB serial link to the camera.

    A daemon reader thread performs blocking reads and emits every chunk it
    receives as a 'data' event on `events`, so all protocol handling runs on
    that thread.
    """

    def __init__(self, address: str, baudrate: int = DEFAULT_BAUDRATE):
        if baudrate not in SUPPORTED_BAUDRATES:
            raise ValueError(f"Unsupported baud rate {baudrate}. Valid: {list(SUPPORTED_BAUDRATES)}")
        self.address = address
        self.baudrate = baudrate
        self.events = EventBus()
        self.serial: Optional[serial.Serial] = None
        self.log = logging.getLogger("USBStream")
        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return self.serial is not None and self.serial.is_open

    def open(self) -> None:
        """Open the serial port and start the reader thread."""
        if self.is_open:
            self.log.debug(f"{self.address} already open")
            return

        self.log.debug(f"Opening {self.address} at {self.baudrate} baud...")
        try:
            self.serial = serial.Serial(
                port=self.address,
                baudrate=self.baudrate,
                timeout=SERIAL_TIMEOUT,
            )
            self.serial.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            self.log.error(f"Serial connection error: {e}")
            self.serial = None
            raise TransportError(f"Failed to open {self.address}: {e}") from e

        self._running = True
        self._thread = threading.Thread(
            target=self._read_loop,
            name=f"USBStream({self.address})",
            daemon=True,
        )
        self._thread.start()
        self.log.info(f"Serial port opened: {self.address} ({self.baudrate} baud)")
        self.events.emit(EVENT_OPEN, self.address)

    def close(self) -> None:
        """Stop the reader thread and close the serial port."""
        if self.serial is None:
            self.log.debug("Close called but port is not open.")
            return

        self._running = False
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=SERIAL_TIMEOUT * 5)
            if self._thread.is_alive():
                self.log.warning("Reader thread did not stop cleanly")
        self._thread = None

        try:
            self.serial.close()
        except (serial.SerialException, OSError) as e:
            self.log.error(f"Error closing serial port: {e}")
            raise TransportError(f"Failed to close {self.address}: {e}") from e
        finally:
            self.serial = None
        self.log.info(f"Serial port closed: {self.address}")
        self.events.emit(EVENT_CLOSE, self.address)

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise NotConnectedError(f"{self.address} is not open")
        try:
            written = self.serial.write(data)
        except (serial.SerialException, OSError) as e:
            self.log.error(f"Error during serial write: {e}")
            raise TransportError(f"Write to {self.address} failed: {e}") from e
        return written or 0

    def drain(self) -> None:
        if not self.is_open:
            raise NotConnectedError(f"{self.address} is not open")
        try:
            self.serial.flush()
        except (serial.SerialException, OSError) as e:
            self.log.error(f"Error draining serial output: {e}")
            raise TransportError(f"Drain on {self.address} failed: {e}") from e

    def _read_loop(self) -> None:
        """Reader thread: emit everything the port delivers as 'data' events."""
        self.log.debug("Reader thread starting")
        port = self.serial
        while self._running:
            try:
                data = port.read(max(1, min(port.in_waiting, READ_CHUNK)))
            except (serial.SerialException, OSError, TypeError, AttributeError) as e:
                # TypeError/AttributeError: pyserial internals after a concurrent close
                if not self._running:
                    break
                self.log.error(f"Error reading from {self.address}: {e}")
                self._running = False
                self.events.emit(EVENT_ERROR, TransportError(f"Read from {self.address} failed: {e}"))
                self.events.emit(EVENT_DISCONNECT, self.address)
                break
            if data:
                self.events.emit(EVENT_DATA, data)
        self.log.debug("Reader thread exiting")

    @staticmethod
    def list_ports() -> List[Dict[str, str]]:
        """List available serial ports."""
        ports = []
        for port in serial.tools.list_ports.comports():
            ports.append({
                'port': port.device,
                'description': port.description,
                'hwid': port.hwid,
            })
        return ports
