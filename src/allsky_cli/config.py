"""
Driver configuration.

Settings come from a JSON file laid out like

    {
        "camera": {
            "device": "/dev/ttyUSB0",
            "baudrate": 115200,
            "timeout": 5.0,
            "idle_timeout": 10.0,
            "busy_timeout": 0.0,
            "strict_checksum": false
        }
    }

Missing keys keep their defaults; command line flags override the file.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

from .exceptions import InvalidParameterError
from .streams.usb import DEFAULT_BAUDRATE, SUPPORTED_BAUDRATES

DEFAULT_CONFIG_PATH = os.path.join("~", ".config", "allsky", "config.json")


@dataclass(frozen=True)
class CameraConfig:
    device: Optional[str] = None
    baudrate: int = DEFAULT_BAUDRATE
    timeout: float = 5.0          # command reply timeout, seconds
    idle_timeout: float = 10.0    # max. silence during an acquisition, seconds
    busy_timeout: float = 0.0     # wait for a busy channel before failing, seconds
    strict_checksum: bool = False

    def __post_init__(self):
        if self.baudrate not in SUPPORTED_BAUDRATES:
            raise InvalidParameterError(
                f"Unsupported baud rate {self.baudrate}. Valid: {list(SUPPORTED_BAUDRATES)}"
            )
        for name in ('timeout', 'idle_timeout', 'busy_timeout'):
            if getattr(self, name) < 0:
                raise InvalidParameterError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraConfig":
        """Build a config from the "camera" section of a config file."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logging.getLogger("Config").warning(f"Ignoring unknown camera settings: {sorted(unknown)}")
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as e:
            raise InvalidParameterError(f"Invalid camera settings: {e}") from e

    def override(self, **values: Any) -> "CameraConfig":
        """Return a copy with every non-None value applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def load_config(path: Optional[str] = None) -> CameraConfig:
    """
    Load the camera configuration.

    Args:
        path: JSON file to read. When None, DEFAULT_CONFIG_PATH is used if it
              exists, otherwise the defaults are returned.

    Raises:
        InvalidParameterError: The file cannot be read or parsed, or holds
            invalid values.
    """
    log = logging.getLogger("Config")
    explicit = path is not None
    path = os.path.expanduser(path if explicit else DEFAULT_CONFIG_PATH)

    if not os.path.exists(path):
        if explicit:
            raise InvalidParameterError(f"Config file not found: {path}")
        log.debug(f"No config file at {path}, using defaults")
        return CameraConfig()

    try:
        with open(path, "r") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidParameterError(f"Cannot read config file {path}: {e}") from e

    section = document.get("camera", {}) if isinstance(document, dict) else None
    if not isinstance(section, dict):
        raise InvalidParameterError(f"Config file {path} must contain a \"camera\" object")

    log.debug(f"Loaded config from {path}")
    return CameraConfig.from_dict(section)
