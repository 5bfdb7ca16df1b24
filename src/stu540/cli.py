#!/usr/bin/env python3
"""
stu540 - Command Line Interface

Entry point for the stu540 package.
"""

import argparse
import logging
import sys
import threading

from stu540.__version__ import __version__
from stu540.conf import Settings
from stu540.device_hid import BACKENDS, find_tablets
from stu540.errors import StuError
from stu540.models import Color, PenEvent, Rect
from stu540.session import TabletSession


def _setup_logging(verbose: int) -> None:
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('usb').setLevel(logging.WARNING)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stu540",
        description="Wacom STU-540 pen display driver",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    stu540 detect                 List connected tablets
    stu540 info                   Show negotiated configuration
    stu540 backlight 2            Set backlight intensity
    stu540 background ffffff      White background
    stu540 pen 000080 2           Navy pen, width 2
    stu540 area 0 0 10800 6480    Restrict the writing area
    stu540 upload screen.bgr      Upload a raw 800x480 BGR24 bitmap
    stu540 monitor --count 50     Print pen events
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--backend", choices=BACKENDS, help="USB backend (default: auto)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("detect", help="List connected tablets")
    subparsers.add_parser("info", help="Show negotiated device configuration")
    subparsers.add_parser("clear", help="Clear the screen")

    backlight_parser = subparsers.add_parser("backlight", help="Set backlight intensity")
    backlight_parser.add_argument("intensity", type=int, help="Intensity (0-255)")

    background_parser = subparsers.add_parser("background", help="Set background color")
    background_parser.add_argument("hex", help="Hex color (e.g. ffffff)")

    pen_parser = subparsers.add_parser("pen", help="Set ink color and width")
    pen_parser.add_argument("hex", help="Hex color (e.g. 000000)")
    pen_parser.add_argument("width", type=int, help="Pen width (0-255)")

    area_parser = subparsers.add_parser("area", help="Set writing area (device units)")
    for name in ("x1", "y1", "x2", "y2"):
        area_parser.add_argument(name, type=int)

    mode_parser = subparsers.add_parser("mode", help="Set writing mode")
    mode_parser.add_argument("mode", type=int, help="Mode byte (0-255)")

    inking_parser = subparsers.add_parser("inking", help="Enable/disable on-screen inking")
    inking_parser.add_argument("state", choices=("on", "off"))

    upload_parser = subparsers.add_parser("upload", help="Upload a raw BGR24 bitmap")
    upload_parser.add_argument("file", help="Raw BGR24 file, width*height*3 bytes")

    monitor_parser = subparsers.add_parser("monitor", help="Print pen events")
    monitor_parser.add_argument("--count", "-n", type=int, default=0,
                                help="Stop after N events (default: until Ctrl-C)")
    monitor_parser.add_argument("--all", "-a", action="store_true",
                                help="Include hover events (tip not pressed)")

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(args.verbose)

    try:
        if args.command == "detect":
            return detect(backend=args.backend)

        session = make_session(timeout=args.timeout, backend=args.backend)
        if args.command == "info":
            return show_info(session)
        elif args.command == "clear":
            return run_command(session, lambda t: t.clear_screen())
        elif args.command == "backlight":
            return run_command(session, lambda t: t.set_backlight(args.intensity))
        elif args.command == "background":
            color = Color.from_hex(args.hex)
            return run_command(session, lambda t: t.set_background_color(color))
        elif args.command == "pen":
            color = Color.from_hex(args.hex)
            return run_command(session, lambda t: t.set_pen_color_and_width(color, args.width))
        elif args.command == "area":
            rect = Rect(args.x1, args.y1, args.x2, args.y2)
            return run_command(session, lambda t: t.set_writing_area(rect))
        elif args.command == "mode":
            return run_command(session, lambda t: t.set_writing_mode(args.mode))
        elif args.command == "inking":
            return run_command(session, lambda t: t.set_inking(args.state == "on"))
        elif args.command == "upload":
            return upload(session, args.file)
        elif args.command == "monitor":
            return monitor(session, count=args.count, include_hover=args.all)
    except (StuError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def make_session(timeout=None, backend=None) -> TabletSession:
    """Build a session from saved settings, CLI flags taking precedence."""
    settings = Settings()
    return TabletSession(
        settings.vid, settings.pid,
        timeout=timeout if timeout is not None else settings.timeout_s,
        chunk_size=settings.chunk_size,
        backend=backend if backend is not None else settings.backend,
    )


def detect(backend=None):
    """List connected tablets."""
    settings = Settings()
    handles = find_tablets(settings.vid, settings.pid,
                           backend=backend if backend is not None else settings.backend)
    if not handles:
        print("No STU-540 tablet detected.")
        return 1
    for i, handle in enumerate(handles, 1):
        serial = f" serial {handle.serial}" if handle.serial else ""
        print(f"[{i}] {handle.product or 'STU-540'} [{handle.vid:04x}:{handle.pid:04x}]"
              f" {handle.path} ({handle.backend}){serial}")
    return 0


def show_info(session: TabletSession):
    """Connect and print the negotiated configuration."""
    with session:
        config = session.get_config()
    print(f"Device:        {config.device_name}")
    print(f"Firmware:      {config.firmware}")
    print(f"eSerial:       {config.e_serial}")
    print(f"Screen:        {config.width}x{config.height}")
    print(f"Tablet:        {config.tablet_width}x{config.tablet_height}")
    print(f"Scale factor:  {config.scale_factor:.3f}")
    print(f"Pressure max:  {config.pressure_factor}")
    print(f"Refresh rate:  {config.refresh_rate}")
    return 0


def run_command(session: TabletSession, action):
    """Connect, run one command, disconnect."""
    with session as tablet:
        changed = action(tablet)
    if changed is False:
        print("Already set, nothing sent.")
    return 0


def upload(session: TabletSession, path):
    """Upload a raw BGR24 file."""
    with open(path, 'rb') as f:
        data = f.read()
    with session as tablet:
        tablet.set_image(data)
    print(f"Uploaded {len(data)} bytes.")
    return 0


def format_event(event: PenEvent) -> str:
    line = (f"{'SW ' if event.sw else '   '}{'RDY' if event.rdy else '   '} "
            f"screen=({event.cx:4d},{event.cy:4d}) raw=({event.x:5d},{event.y:5d}) "
            f"press={event.press:.3f}")
    if event.seq is not None:
        line += f" seq={event.seq} t={event.time}"
    return line


def monitor(session: TabletSession, count=0, include_hover=False):
    """Print pen events until *count* are seen or Ctrl-C."""
    done = threading.Event()
    seen = 0

    def on_pen(event: PenEvent):
        nonlocal seen
        if not event.sw and not include_hover:
            return
        print(format_event(event), flush=True)
        seen += 1
        if count and seen >= count:
            done.set()

    with session as tablet:
        tablet.on_pen_data = on_pen
        print("Monitoring pen events (Ctrl-C to stop)...")
        try:
            while not done.wait(0.5):
                if not tablet.is_connected:
                    print("Tablet disconnected.", file=sys.stderr)
                    return 1
        except KeyboardInterrupt:
            pass
        finally:
            tablet.on_pen_data = None
    return 0


if __name__ == "__main__":
    sys.exit(main())
