"""Image acquisition: exposure phase and block transfer."""

from .exposure import ExposureController
from .image import ImageTransfer, TransferState
from .utils import acquisition_timer, format_rate
