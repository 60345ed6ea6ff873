"""
Command catalogue and frame builders for the AllSky 340.

Every command is an ASCII opcode byte, an optional fixed-size payload and a
trailing checksum byte. The builders here return the command body (opcode +
payload); CommandChannel appends the checksum when the frame is sent.
"""

from enum import Enum

from ..exceptions import InvalidParameterError

# Single raw byte sent after every transfer block ("block accepted").
# Unlike Command.DE_ENERGIZE it is written without a checksum.
BLOCK_ACK = b'K'

# Markers received during the exposure phase
MARKER_EXPOSING = ord('E')  # roughly every 160 ms
MARKER_DONE = ord('D')      # exposure complete, image ready for transfer

# Fixed response lengths (checksum echo byte included)
TEST_RESPONSE_SIZE = 2
FIRMWARE_RESPONSE_SIZE = 3
SERIAL_RESPONSE_SIZE = 11

MAX_EXPOSURE_UNITS = 0x63FFFF  # 100 us ticks, ~655.36 s
MAX_SUBFRAME_SIZE = 127


class Command(Enum):
    """
    Commands understood by the camera.

    STOP_TRANSFER and DEFINE_SUBFRAME share the wire byte 'S' but are
    unrelated commands, so they are separate members.
    """

    TEST = ("test", b'E')
    FIRMWARE_VERSION = ("firmware_version", b'V')
    SERIAL_NUMBER = ("serial_number", b'r')
    HEATER = ("heater", b'g')
    CHOPPER = ("chopper", b'U')
    OPEN_SHUTTER = ("open_shutter", b'O')
    CLOSE_SHUTTER = ("close_shutter", b'C')
    DE_ENERGIZE = ("de_energize", b'K')
    ABORT = ("abort", b'A')
    DEFINE_SUBFRAME = ("define_subframe", b'S')
    STOP_TRANSFER = ("stop_transfer", b'S')
    TAKE_IMAGE = ("take_image", b'T')
    TRANSFER_IMAGE = ("transfer_image", b'X')

    def __init__(self, label: str, opcode: bytes):
        self.label = label
        self.opcode = opcode


def build_command(command: Command, payload: bytes = b'') -> bytes:
    """Build the body (opcode + payload) of a command."""
    return command.opcode + payload


def build_switch(command: Command, enabled: bool) -> bytes:
    """Build a heater or chopper on/off command."""
    if command not in (Command.HEATER, Command.CHOPPER):
        raise InvalidParameterError(f"{command.label} is not an on/off command")
    return build_command(command, b'\x01' if enabled else b'\x00')


def build_take_image(exposure_units: int, frame_code: int, image_code: int) -> bytes:
    """
    Build the 'T' (start exposure) command.

    Layout: 'T', exposure ticks as 3 bytes big-endian, frame code, image code.
    Exposure ticks above MAX_EXPOSURE_UNITS are clamped.
    """
    if exposure_units < 0:
        raise InvalidParameterError(f"Exposure units must be >= 0, got {exposure_units}")
    exposure_units = min(exposure_units, MAX_EXPOSURE_UNITS)
    payload = exposure_units.to_bytes(3, 'big') + bytes([frame_code & 0xFF, image_code & 0xFF])
    return build_command(Command.TAKE_IMAGE, payload)


def _low_word(value: int) -> bytes:
    """Low 16 bits of a 32-bit signed integer, high byte first."""
    return (value & 0xFFFF).to_bytes(2, 'big')


def build_define_subframe(x_start: int, y_start: int, size: int) -> bytes:
    """
    Build the 'S' (define sub-frame) command.

    Layout: 'S', x high, x low, y high, y low, size low byte.
    """
    for name, value in (("x_start", x_start), ("y_start", y_start), ("size", size)):
        if not -2**31 <= value < 2**31:
            raise InvalidParameterError(f"{name} must fit in 32 bits, got {value}")
    return build_command(
        Command.DEFINE_SUBFRAME,
        _low_word(x_start) + _low_word(y_start) + bytes([size & 0xFF]),
    )
