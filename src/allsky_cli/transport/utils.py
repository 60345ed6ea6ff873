import contextlib
import logging
import sys
import time
from typing import Iterator, Optional


def format_rate(size: int, elapsed: float) -> str:
    """Human readable transfer rate for `size` bytes moved in `elapsed` seconds."""
    if elapsed <= 0:
        return "n/a"
    bytes_per_second = size / elapsed
    if bytes_per_second >= 1024 * 1024:
        return f"{bytes_per_second / (1024 * 1024):.2f} MiB/s"
    return f"{bytes_per_second / 1024:.2f} KiB/s"


@contextlib.contextmanager
def acquisition_timer(logger: logging.Logger, operation_name: str = "Acquisition",
                      data_size: Optional[int] = None,
                      log_level: int = logging.INFO,
                      cleanup_progress: bool = False) -> Iterator[None]:
    """
    Context manager timing an acquisition and logging its duration.

    Args:
        logger: Logger instance to use for output
        operation_name: Name of the operation being timed
        data_size: Expected number of image bytes; adds the average rate
        log_level: Logging level to use for the timing message
        cleanup_progress: If True, ends the single-line progress display first

    Example:
        with acquisition_timer(log, "Image", acquisition.total_bytes, cleanup_progress=True):
            result = camera.get_image(params, progress_callback=show_progress)
    """
    start_time = time.monotonic()
    try:
        yield
    finally:
        elapsed_time = time.monotonic() - start_time

        if cleanup_progress:
            sys.stdout.write("\n")
            sys.stdout.flush()

        message = f"{operation_name} finished in {elapsed_time:.2f} seconds"
        if data_size:
            message += f" ({format_rate(data_size, elapsed_time)} average)"
        logger.log(log_level, message)
