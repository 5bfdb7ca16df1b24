"""Shared constants for the STU-540 protocol.

Report ids, device identity, fixed report layouts and transfer limits.
Byte offsets for inbound feature reports count the leading report id byte
(offset 0), matching what the device returns on GET_REPORT.
"""

from enum import IntEnum

# =========================================================================
# Device identity
# =========================================================================

STU_VID = 0x056A  # 1386
STU_PID = 0x00A8  # 168


# =========================================================================
# Report ids
# =========================================================================

class CommandId(IntEnum):
    """Feature / input report identifiers understood by the tablet."""
    PEN_DATA = 0x01
    INFORMATION = 0x08
    CAPABILITY = 0x09
    WRITING_MODE = 0x0E
    E_SERIAL = 0x0F
    CLEAR_SCREEN = 0x20
    INK_MODE = 0x21
    WRITE_IMAGE_START = 0x25
    WRITE_IMAGE_DATA = 0x26
    WRITE_IMAGE_END = 0x27
    WRITING_AREA = 0x2A
    BRIGHTNESS = 0x2B
    PEN_COLOR_AND_WIDTH = 0x2D
    BACKGROUND_COLOR = 0x2E
    PEN_DATA_TIMING = 0x34


# Input reports that carry pen samples
PEN_REPORT_IDS = frozenset({CommandId.PEN_DATA, CommandId.PEN_DATA_TIMING})


# =========================================================================
# Report layouts (minimum lengths, report id byte included for reads)
# =========================================================================

CAPABILITY_MIN_SIZE = 12      # id + 5 x u16 + u8 refresh rate
INFORMATION_MIN_SIZE = 12     # id + 7 ASCII name + 4 firmware bytes
E_SERIAL_MIN_SIZE = 1         # id, serial may be empty
BRIGHTNESS_MIN_SIZE = 2       # id + intensity
BACKGROUND_MIN_SIZE = 4       # id + r, g, b

PEN_DATA_MIN_SIZE = 6         # flags/pressure (2) + x (2) + y (2)
PEN_DATA_TIMING_MIN_SIZE = 10  # + time (2) + seq (2)

PEN_FLAG_RDY = 0x01
PEN_FLAG_SW = 0x02
PEN_PRESSURE_HIGH_MASK = 0x0F

# Buffer size requested on feature reads (backends return the actual length)
FEATURE_READ_SIZE = 256
# Input report buffer for the push channel
INPUT_REPORT_SIZE = 64


# =========================================================================
# Image upload
# =========================================================================

DEFAULT_CHUNK_SIZE = 253
MAX_CHUNK_SIZE = 255          # chunk length travels in one byte
IMAGE_FORMAT_24BGR = 0x04
BYTES_PER_PIXEL_24BGR = 3


# =========================================================================
# Static DeviceConfig defaults (used until the first negotiation commits)
# =========================================================================

DEFAULT_WIDTH = 800
DEFAULT_HEIGHT = 480
DEFAULT_TABLET_WIDTH = 10800   # 800 * 13.5
DEFAULT_TABLET_HEIGHT = 6480   # 480 * 13.5
DEFAULT_PRESSURE_FACTOR = 1023
DEFAULT_REFRESH_RATE = 0


# =========================================================================
# Timing
# =========================================================================

DEFAULT_TIMEOUT_S = 5.0        # per request/response call
CANCEL_POLL_S = 0.05           # slice used while waiting so cancel() is seen
READER_POLL_MS = 100           # input-report read timeout per loop iteration
DEFAULT_USB_TIMEOUT_MS = 1000  # pyusb control transfer timeout


# =========================================================================
# USB / HID class request values (HID 1.11 section 7.2)
# =========================================================================

USB_INTERFACE = 0
HID_REQ_TYPE_OUT = 0x21        # host-to-device | class | interface
HID_REQ_TYPE_IN = 0xA1         # device-to-host | class | interface
HID_GET_REPORT = 0x01
HID_SET_REPORT = 0x09
HID_REPORT_TYPE_FEATURE = 0x03
