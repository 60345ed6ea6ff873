"""Camera facade, command channel and acquisition models."""

from .manager import AllSkyCamera
from .channel import CommandChannel, PendingReply, ONE_SHOT
from .assembler import ResponseAssembler
from .params import (
    AcquisitionParams,
    AcquisitionResult,
    AcquisitionOutcome,
    ResolvedAcquisition,
    SubframeParams,
    ExposureProgress,
    TransferProgress,
)
