"""
STU-540 models - plain data classes shared by the protocol layers.

No I/O here.  ``DeviceConfig`` is immutable: a session replaces the whole
object once negotiation succeeds, so readers on other threads (the pen
decoder) always see a consistent snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .constants import (
    BYTES_PER_PIXEL_24BGR,
    DEFAULT_HEIGHT,
    DEFAULT_PRESSURE_FACTOR,
    DEFAULT_REFRESH_RATE,
    DEFAULT_TABLET_HEIGHT,
    DEFAULT_TABLET_WIDTH,
    DEFAULT_WIDTH,
)


def _check_range(name: str, value: int, upper: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} out of range 0..{upper}: {value}")
    return value


def check_u8(name: str, value: int) -> int:
    return _check_range(name, value, 0xFF)


def check_u16(name: str, value: int) -> int:
    return _check_range(name, value, 0xFFFF)


# =============================================================================
# Connection
# =============================================================================

class ConnectionState(Enum):
    """Session lifecycle.  Any I/O failure drops straight to DISCONNECTED."""
    DISCONNECTED = auto()
    CONNECTING = auto()     # discovering / opening the device
    NEGOTIATING = auto()    # reading capability, information, eSerial
    READY = auto()


@dataclass(frozen=True)
class DeviceHandle:
    """A discovered tablet, enough to open it with the matching backend."""
    vid: int
    pid: int
    backend: str                 # 'pyusb' or 'hidapi'
    path: str = ""               # hidapi path or 'bus:address' for pyusb
    serial: str = ""
    product: str = ""


# =============================================================================
# Device configuration
# =============================================================================

@dataclass(frozen=True)
class DeviceConfig:
    """Negotiated tablet geometry and identity.

    Attributes:
        tablet_width: Device-space X extent (pen coordinates).
        tablet_height: Device-space Y extent.
        width: Screen width in pixels.
        height: Screen height in pixels.
        pressure_factor: Divisor normalizing raw pressure to 0..1.
        refresh_rate: Pen report rate reported by the device.
        device_name: 7-character model string (e.g. 'STU-540').
        firmware: Dotted 4-part firmware version.
        e_serial: Electronic serial number.
    """
    tablet_width: int = DEFAULT_TABLET_WIDTH
    tablet_height: int = DEFAULT_TABLET_HEIGHT
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    pressure_factor: int = DEFAULT_PRESSURE_FACTOR
    refresh_rate: int = DEFAULT_REFRESH_RATE
    device_name: str = ""
    firmware: str = ""
    e_serial: str = ""

    @property
    def scale_factor(self) -> float:
        """Device units per screen pixel (always tablet_width / width)."""
        return self.tablet_width / self.width

    @property
    def image_size(self) -> int:
        """Bytes in a full-screen BGR24 bitmap."""
        return self.width * self.height * BYTES_PER_PIXEL_24BGR

    def to_dict(self) -> dict:
        return {
            'tablet_width': self.tablet_width,
            'tablet_height': self.tablet_height,
            'width': self.width,
            'height': self.height,
            'pressure_factor': self.pressure_factor,
            'scale_factor': self.scale_factor,
            'refresh_rate': self.refresh_rate,
            'device_name': self.device_name,
            'firmware': self.firmware,
            'e_serial': self.e_serial,
        }


# =============================================================================
# Pen / drawing primitives
# =============================================================================

@dataclass(frozen=True)
class PenEvent:
    """One decoded pen sample.  Never queued; handed straight to the callback."""
    rdy: bool
    sw: bool
    cx: int
    cy: int
    x: int
    y: int
    press: float
    seq: Optional[int] = None
    time: Optional[int] = None


@dataclass(frozen=True)
class Rect:
    """Writing area bounds in device units."""
    x1: int
    y1: int
    x2: int
    y2: int

    def __post_init__(self):
        for name in ('x1', 'y1', 'x2', 'y2'):
            check_u16(name, getattr(self, name))


@dataclass(frozen=True)
class Color:
    """24-bit RGB color."""
    r: int
    g: int
    b: int

    def __post_init__(self):
        for name in ('r', 'g', 'b'):
            check_u8(name, getattr(self, name))

    @classmethod
    def from_hex(cls, value: str) -> Color:
        """Parse '#rrggbb' or 'rrggbb'."""
        text = value.strip().lstrip('#')
        if len(text) != 6:
            raise ValueError(f"Expected 6 hex digits, got {value!r}")
        try:
            return cls(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
        except ValueError:
            raise ValueError(f"Invalid hex color: {value!r}") from None

    def to_hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def as_bytes(self) -> bytes:
        return bytes((self.r, self.g, self.b))

