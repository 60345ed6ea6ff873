"""
Acquisition parameters, progress events and results.

The geometry table follows the camera's documented readout modes; custom
sub-frames are square and transferred one row per block.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..exceptions import InvalidParameterError
from ..protocol.commands import MAX_EXPOSURE_UNITS, MAX_SUBFRAME_SIZE

EXPOSURE_TICKS_PER_SECOND = 10000  # 100 us units
EXPOSURE_MARKER_PERIOD_MS = 160    # 'E' marker interval while exposing

# image kind -> image code
IMAGE_CODES: Dict[str, int] = {
    'dark': 0,
    'light': 1,
    'auto': 2,  # light minus dark, binned only
}

# frame kind -> (width, height, block_count, frame code)
FRAME_GEOMETRY: Dict[str, Tuple[int, int, int, int]] = {
    'full': (640, 480, 4096, 0),
    'crop': (512, 480, 4096, 1),
    'binned': (320, 240, 1024, 2),
}
CUSTOM_FRAME_CODE = 255


@dataclass
class AcquisitionParams:
    """What the caller asks for."""

    image_kind: str = 'light'
    frame_kind: str = 'full'
    exposure_seconds: float = 1.0
    subframe_size: int = MAX_SUBFRAME_SIZE

    def resolve(self) -> "ResolvedAcquisition":
        """
        Validate the parameters and compute what the camera needs.

        Raises:
            InvalidParameterError: Unknown kind, size outside 1-127 or a
                negative exposure time.
        """
        if self.image_kind not in IMAGE_CODES:
            raise InvalidParameterError(
                f"Unknown image kind '{self.image_kind}'. Valid: {list(IMAGE_CODES)}"
            )
        frame_kind = 'binned' if self.image_kind == 'auto' else self.frame_kind

        if frame_kind == 'custom':
            if not 1 <= self.subframe_size <= MAX_SUBFRAME_SIZE:
                raise InvalidParameterError(
                    f"Sub-frame size must be 1-{MAX_SUBFRAME_SIZE}, got {self.subframe_size}"
                )
            size = self.subframe_size
            width, height, block_count, frame_code = size, size, size, CUSTOM_FRAME_CODE
        elif frame_kind in FRAME_GEOMETRY:
            width, height, block_count, frame_code = FRAME_GEOMETRY[frame_kind]
        else:
            raise InvalidParameterError(
                f"Unknown frame kind '{frame_kind}'. Valid: {list(FRAME_GEOMETRY) + ['custom']}"
            )

        exposure_seconds = float(self.exposure_seconds)
        if math.isnan(exposure_seconds) or exposure_seconds < 0:
            raise InvalidParameterError(f"Exposure time must be >= 0 s, got {self.exposure_seconds}")
        exposure_units = min(round(exposure_seconds * EXPOSURE_TICKS_PER_SECOND), MAX_EXPOSURE_UNITS)

        return ResolvedAcquisition(
            image_kind=self.image_kind,
            frame_kind=frame_kind,
            width=width,
            height=height,
            block_count=block_count,
            frame_code=frame_code,
            image_code=IMAGE_CODES[self.image_kind],
            exposure_seconds=exposure_seconds,
            exposure_units=exposure_units,
        )


@dataclass(frozen=True)
class ResolvedAcquisition:
    """Geometry and codes for one acquisition; also describes the pixel buffer."""

    image_kind: str
    frame_kind: str
    width: int
    height: int
    block_count: int
    frame_code: int
    image_code: int
    exposure_seconds: float
    exposure_units: int

    @property
    def block_bytes(self) -> int:
        """Pixel bytes per transfer block (2 bytes per pixel)."""
        return 2 * self.block_count

    @property
    def blocks_expected(self) -> int:
        return (self.width * self.height) // self.block_count

    @property
    def total_bytes(self) -> int:
        return self.blocks_expected * self.block_bytes

    @property
    def exposure_ms_rounded(self) -> int:
        """Exposure time rounded up to a whole number of marker periods (min. one)."""
        exposure_ms = self.exposure_seconds * 1000
        if exposure_ms > EXPOSURE_MARKER_PERIOD_MS:
            return math.ceil(exposure_ms / EXPOSURE_MARKER_PERIOD_MS) * EXPOSURE_MARKER_PERIOD_MS
        return EXPOSURE_MARKER_PERIOD_MS


@dataclass(frozen=True)
class SubframeParams:
    x_start: int
    y_start: int
    size: int = MAX_SUBFRAME_SIZE


@dataclass(frozen=True)
class ExposureProgress:
    """Exposure phase progress. Times are in milliseconds."""

    exposure_time: int
    elapsed_time: int
    percent: float
    kind: str = 'exposure'


@dataclass(frozen=True)
class TransferProgress:
    received_bytes: int
    total_bytes: int
    percent: float
    kind: str = 'transfer'


class AcquisitionOutcome(Enum):
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


@dataclass
class AcquisitionResult:
    """
    Terminal outcome of get_image().

    `image` holds the raw pixel bytes (2 bytes per pixel, in camera order)
    when the outcome is COMPLETED and is None when the acquisition was
    cancelled. `params` is the request the acquisition was resolved from.
    """

    outcome: AcquisitionOutcome
    acquisition: ResolvedAcquisition
    image: Optional[bytes] = None
    params: Optional[AcquisitionParams] = None

    @property
    def completed(self) -> bool:
        return self.outcome is AcquisitionOutcome.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.outcome is AcquisitionOutcome.CANCELLED
