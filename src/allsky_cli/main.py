"""
AllSky CLI Tool

A command-line tool for driving SBIG AllSky 340 cameras over a serial link.
"""

import sys
import argparse
import logging
import threading
from typing import Optional

from allsky_cli.config import load_config
from allsky_cli.device.manager import AllSkyCamera
from allsky_cli.device.params import (
    AcquisitionParams,
    ExposureProgress,
    SubframeParams,
    TransferProgress,
)
from allsky_cli.exceptions import AllSkyError
from allsky_cli.protocol.commands import MAX_SUBFRAME_SIZE
from allsky_cli.streams import USBStream
from allsky_cli.transport.utils import acquisition_timer

# Ports whose description matches one of these are tried first
CAMERA_PORT_HINTS = ('ftdi', 'usb-serial', 'usb serial', 'ft232')


def progress_callback(event) -> None:
    """
    Single-line progress display for image acquisition

    Args:
        event: ExposureProgress or TransferProgress
    """
    if isinstance(event, ExposureProgress):
        progress_str = (f"\rExposing: {min(event.percent, 100.0):5.1f}% "
                        f"({event.elapsed_time}/{event.exposure_time} ms)   ")
    elif isinstance(event, TransferProgress):
        progress_str = (f"\rTransferring: {event.percent:5.1f}% "
                        f"({event.received_bytes}/{event.total_bytes} bytes)   ")
    else:
        return
    sys.stdout.write(progress_str)
    sys.stdout.flush()


def detect_port() -> Optional[str]:
    """Pick the most likely camera port, or None when no serial port exists."""
    ports = USBStream.list_ports()
    if not ports:
        return None
    camera_ports = [p for p in ports if any(h in p['description'].lower() for h in CAMERA_PORT_HINTS)]
    return (camera_ports[0] if camera_ports else ports[0])['port']


def run_expose(camera: AllSkyCamera, params: AcquisitionParams, show_progress: bool) -> int:
    """
    Acquire one image, turning Ctrl-C into an abort.

    get_image() runs on a worker thread so the main thread stays free to
    receive KeyboardInterrupt; after an abort the worker is joined so the
    camera is left in a clean state.
    """
    log = logging.getLogger("main")
    acquisition = params.resolve()
    outcome = {}

    def worker():
        try:
            outcome['result'] = camera.get_image(params, progress_callback if show_progress else None)
        except AllSkyError as e:
            outcome['error'] = e

    thread = threading.Thread(target=worker, name="get_image", daemon=True)
    with acquisition_timer(log, "Acquisition", acquisition.total_bytes, cleanup_progress=show_progress):
        thread.start()
        try:
            while thread.is_alive():
                thread.join(0.2)
        except KeyboardInterrupt:
            log.warning("Interrupted, aborting acquisition...")
            camera.abort()
            thread.join()

    if 'error' in outcome:
        log.error(f"Acquisition failed: {outcome['error']}")
        return 1

    result = outcome['result']
    if result.cancelled:
        log.warning("Acquisition cancelled")
        return 1

    image = result.image
    a = result.acquisition
    print(f"Image: {a.width}x{a.height} {a.image_kind} ({a.frame_kind}), {len(image)} bytes")
    pixels = [int.from_bytes(image[i:i + 2], 'little') for i in range(0, len(image), 2)]
    if pixels:
        print(f"Pixel values: min {min(pixels)}, max {max(pixels)}, mean {sum(pixels) / len(pixels):.1f}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description='AllSky CLI Tool',
        epilog="""A tool for driving SBIG AllSky 340 cameras."""
    )

    # Global options (apply to all subcommands)
    parser.add_argument('--device', '-d', default=None,
                        help='Serial port of the camera (default: from config, else auto-detect)')
    parser.add_argument('--baudrate', '-b', type=int, default=None,
                        help='Serial baud rate: 115200, 230400 or 460800 (default: 115200)')
    parser.add_argument('--config', '-c', default=None,
                        help='Path to a JSON config file (default: ~/.config/allsky/config.json)')
    parser.add_argument('--timeout', type=float, default=None,
                        help='Timeout in seconds for command replies (default: 5)')
    parser.add_argument('--idle-timeout', type=float, default=None,
                        help='Max. seconds without camera data during an acquisition (default: 10)')
    parser.add_argument('--strict-checksum', action='store_true', default=None,
                        help='Fail on checksum mismatches instead of logging them')
    # Logging / Output options (Mutually Exclusive)
    log_level_group = parser.add_mutually_exclusive_group()
    log_level_group.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose DEBUG level logging')
    log_level_group.add_argument('--quiet', '-q', action='store_true',
                        help='Suppress INFO level logging, show only WARNINGs and ERRORs')

    # Subparsers for different actions
    subparsers = parser.add_subparsers(dest='action', title='Actions',
                                     description='Choose an action to perform', required=True)

    subparsers.add_parser('test', help='Run the camera communication test')
    subparsers.add_parser('version', help='Show the camera firmware version')
    subparsers.add_parser('serial', help='Show the camera serial number')
    subparsers.add_parser('ports', help='List serial ports and exit')

    parser_heater = subparsers.add_parser('heater', help='Switch the heater on or off')
    parser_heater.add_argument('state', choices=['on', 'off'])

    parser_chop = subparsers.add_parser('chop', help='Switch the chopper on or off')
    parser_chop.add_argument('state', choices=['on', 'off'])

    parser_shutter = subparsers.add_parser('shutter', help='Open or close the shutter')
    parser_shutter.add_argument('state', choices=['open', 'close'])

    parser_subframe = subparsers.add_parser('subframe', help='Define the sub-frame used by custom frames')
    parser_subframe.add_argument('x_start', type=int, help='Left edge in pixels')
    parser_subframe.add_argument('y_start', type=int, help='Top edge in pixels')
    parser_subframe.add_argument('size', type=int, help=f'Edge length in pixels (max. {MAX_SUBFRAME_SIZE})')

    # --- Expose Subcommand ---
    parser_expose = subparsers.add_parser('expose', help='Expose and read out one image')
    expose_group = parser_expose.add_argument_group('Exposure Options')
    expose_group.add_argument('--image-type', default='light', choices=['dark', 'light', 'auto'],
                        help='Image type (auto = light minus dark, forces binned frame)')
    expose_group.add_argument('--frame-type', default='full', choices=['full', 'crop', 'binned', 'custom'],
                        help='Readout mode (default: full)')
    expose_group.add_argument('--size', type=int, default=MAX_SUBFRAME_SIZE,
                        help=f'Sub-frame size for custom frames (default: {MAX_SUBFRAME_SIZE})')
    expose_group.add_argument('--exptime', type=float, default=1.0,
                        help='Exposure time in seconds (default: 1)')

    # Parse arguments
    args = parser.parse_args()

    # Set up logging level based on flags
    log_level = logging.INFO # Default
    if args.verbose:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.WARNING

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    log = logging.getLogger("main")

    # Handle ports separately as it doesn't need a connection
    if args.action == 'ports':
        ports = USBStream.list_ports()
        if not ports:
            log.info("No serial ports found")
        for port in ports:
            print(f"{port['port']}\t{port['description']}\t{port['hwid']}")
        return 0

    try:
        config = load_config(args.config).override(
            device=args.device,
            baudrate=args.baudrate,
            timeout=args.timeout,
            idle_timeout=args.idle_timeout,
            strict_checksum=args.strict_checksum,
        )
    except AllSkyError as e:
        log.error(f"Configuration error: {e}")
        return 1

    address = config.device
    if address is None:
        log.info("No device specified, attempting auto-detect...")
        address = detect_port()
        if address is None:
            log.error("Error: No serial ports found. Use --device to specify one.")
            return 1
    log.info(f"Device: {address} ({config.baudrate} baud)")

    camera = AllSkyCamera(USBStream(address, config.baudrate), config)

    exit_code = 1 # Default to error
    try:
        camera.open()

        # --- Action Execution based on Subcommand ---
        if args.action == 'test':
            print(camera.send_test())
            exit_code = 0

        elif args.action == 'version':
            print(f"Firmware version: {camera.get_firmware_version()}")
            exit_code = 0

        elif args.action == 'serial':
            print(f"Serial number: {camera.get_serial_number()}")
            exit_code = 0

        elif args.action == 'heater':
            camera.heater_on() if args.state == 'on' else camera.heater_off()
            log.info(f"Heater {args.state}")
            exit_code = 0

        elif args.action == 'chop':
            camera.chop_on() if args.state == 'on' else camera.chop_off()
            log.info(f"Chopper {args.state}")
            exit_code = 0

        elif args.action == 'shutter':
            camera.open_shutter() if args.state == 'open' else camera.close_shutter()
            exit_code = 0

        elif args.action == 'subframe':
            camera.define_subframe(SubframeParams(args.x_start, args.y_start, args.size))
            log.info(f"Sub-frame defined: x={args.x_start} y={args.y_start} size={args.size}")
            exit_code = 0

        elif args.action == 'expose':
            params = AcquisitionParams(
                image_kind=args.image_type,
                frame_kind=args.frame_type,
                exposure_seconds=args.exptime,
                subframe_size=args.size,
            )
            exit_code = run_expose(camera, params, show_progress=not args.quiet)

    except KeyboardInterrupt:
        log.warning("Operation cancelled by user")
        exit_code = 1
    except AllSkyError as e:
        log.error(f"{type(e).__name__}: {e}")
        exit_code = 1
    except Exception as e:
        log.error(f"An unexpected error occurred: {str(e)}")
        log.exception("Exception details:")
        exit_code = 1
    finally:
        try:
            camera.close()
        except AllSkyError as e:
            log.error(f"Error closing device: {e}")

    return exit_code

if __name__ == "__main__":
    sys.exit(main())
