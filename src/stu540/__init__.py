"""
stu540 - Wacom STU-540 pen display driver

Talks to the tablet over USB HID feature reports:

- Capability negotiation (screen/tablet geometry, firmware, serial)
- Pen events decoded from input reports and pushed to a callback
- Control commands: pen color/width, backlight, background, writing
  area and mode, inking, clear
- Chunked upload of raw BGR24 bitmaps

Usage:
    from stu540 import TabletSession, Color

    with TabletSession() as tablet:
        tablet.on_pen_data = lambda ev: print(ev.cx, ev.cy, ev.press)
        tablet.set_background_color(Color.from_hex('#ffffff'))
        tablet.set_image(bgr_bytes)

    # Command line
    stu540 detect
    stu540 monitor
"""

from stu540.__version__ import __version__
from stu540.constants import STU_PID, STU_VID, CommandId
from stu540.device_hid import (
    HidApiTransport,
    PyUsbTransport,
    TabletTransport,
    find_tablets,
    open_tablet,
)
from stu540.errors import (
    DeviceBusyError,
    DeviceNotFoundError,
    MalformedReportError,
    NotConnectedError,
    OperationCancelledError,
    RequestTimeoutError,
    StuError,
    TransportIOError,
)
from stu540.models import (
    Color,
    ConnectionState,
    DeviceConfig,
    DeviceHandle,
    PenEvent,
    Rect,
)
from stu540.session import TabletSession

__all__ = [
    '__version__',
    'STU_VID', 'STU_PID', 'CommandId',
    'TabletSession', 'TabletTransport', 'PyUsbTransport', 'HidApiTransport',
    'find_tablets', 'open_tablet',
    'Color', 'ConnectionState', 'DeviceConfig', 'DeviceHandle', 'PenEvent', 'Rect',
    'StuError', 'NotConnectedError', 'DeviceNotFoundError', 'DeviceBusyError',
    'TransportIOError', 'MalformedReportError', 'RequestTimeoutError',
    'OperationCancelledError',
]
