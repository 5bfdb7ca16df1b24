"""stu540 version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Feature-report session over hidapi: capability negotiation, pen
#         callbacks, backlight/background/pen color commands
# 0.2.0 - pyusb backend (HID class control transfers), chunked image upload
#         with strictly sequential writes, writing area/mode, inking, clear
# 0.3.0 - Explicit connection state machine, per-call timeouts and cancel,
#         atomic DeviceConfig commit, typed errors, stu540 CLI, JSON settings
