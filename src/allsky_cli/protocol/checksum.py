"""
Checksum helpers for the AllSky 340 serial protocol.

Command checksum: each byte is complemented, bit 7 is cleared and the
result is XORed into an accumulator that starts at 0 for every frame.
The camera acknowledges a command by echoing this value.

Block checksum: plain XOR of the raw pixel bytes of one transfer block.
"""

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def checksum(data: Union[BytesLike, str]) -> int:
    """
    Calculate the command checksum of a byte or character sequence.

        >>> checksum(b'E')
        58
        >>> checksum('E') == checksum(b'E')
        True

    Args:
        data: Command bytes (opcode + payload), without the checksum slot.
              A str is treated as a sequence of character codes.

    Returns:
        The checksum byte value (0-127).
    """
    if isinstance(data, str):
        data = [ord(c) for c in data]
    cs = 0
    for byte in data:
        cs ^= ~byte & 0x7F
    return cs


def append_checksum(command: BytesLike) -> bytes:
    """Return the wire frame for `command`: the command bytes plus checksum."""
    return bytes(command) + bytes([checksum(command)])


def block_checksum(block: BytesLike) -> int:
    """XOR of all bytes of a transfer block (no complement, no mask)."""
    cs = 0
    for byte in block:
        cs ^= byte
    return cs
