"""Protocol layer: checksums, command catalogue and frame builders."""

from .checksum import checksum, append_checksum, block_checksum
from .commands import Command, build_command
