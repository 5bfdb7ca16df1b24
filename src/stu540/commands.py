"""
Outbound control commands (feature-report writes).

``CommandPacketBuilder`` holds the byte layouts; ``CommandCodec`` issues
them through a session's report link.  Payload layouts (report id not
included)::

    PEN_COLOR_AND_WIDTH   [r, g, b, width]
    BRIGHTNESS            [intensity, 0]
    BACKGROUND_COLOR      [r, g, b]
    WRITING_AREA          <HHHH  x1, y1, x2, y2   (little-endian!)
    WRITING_MODE          [mode]
    INK_MODE              [1 | 0]
    CLEAR_SCREEN          [0]

Reads are big-endian like every other inbound report; the writing area is
the one outbound packet the firmware wants little-endian.

Backlight and background writes are debounced: the current value is read
first and the write is skipped when nothing changes.  Read and write happen
under one hold of the link's transaction lock.
"""

from __future__ import annotations

import logging
import struct

from .constants import BACKGROUND_MIN_SIZE, BRIGHTNESS_MIN_SIZE, CommandId
from .models import Color, Rect, check_u8

log = logging.getLogger(__name__)

_WRITING_AREA = struct.Struct('<HHHH')


# =========================================================================
# Packet builder
# =========================================================================

class CommandPacketBuilder:
    """Fixed-layout payloads for every control command."""

    @staticmethod
    def pen_color_and_width(color: Color, width: int) -> bytes:
        return color.as_bytes() + bytes([check_u8('width', width)])

    @staticmethod
    def backlight(intensity: int) -> bytes:
        return bytes([check_u8('intensity', intensity), 0])

    @staticmethod
    def background_color(color: Color) -> bytes:
        return color.as_bytes()

    @staticmethod
    def writing_area(rect: Rect) -> bytes:
        return _WRITING_AREA.pack(rect.x1, rect.y1, rect.x2, rect.y2)

    @staticmethod
    def parse_writing_area(payload: bytes) -> Rect:
        """Inverse of writing_area() (same little-endian layout)."""
        return Rect(*_WRITING_AREA.unpack_from(payload, 0))

    @staticmethod
    def writing_mode(mode: int) -> bytes:
        return bytes([check_u8('mode', mode)])

    @staticmethod
    def inking(enabled: bool) -> bytes:
        return bytes([1 if enabled else 0])

    @staticmethod
    def clear_screen() -> bytes:
        return bytes([0])


# =========================================================================
# Codec
# =========================================================================

class CommandCodec:
    """Issues control commands over a session link.

    The link must provide ``ensure_ready(operation)``, ``transaction()``,
    ``write_report(report_id, payload)`` and
    ``read_report(report_id, min_size)``; ``TabletSession`` is the one
    implementation.
    """

    def __init__(self, link):
        self._link = link

    def _send(self, operation: str, report_id: CommandId, payload: bytes) -> None:
        self._link.ensure_ready(operation)
        log.debug("%s -> 0x%02x %s", operation, report_id, payload.hex())
        self._link.write_report(report_id, payload)

    def set_pen_color_and_width(self, color: Color, width: int) -> None:
        payload = CommandPacketBuilder.pen_color_and_width(color, width)
        self._send('set_pen_color_and_width', CommandId.PEN_COLOR_AND_WIDTH, payload)

    def set_backlight(self, intensity: int) -> bool:
        """Set backlight intensity.  Returns False if it was already set."""
        payload = CommandPacketBuilder.backlight(intensity)
        self._link.ensure_ready('set_backlight')
        with self._link.transaction():
            current = self._link.read_report(CommandId.BRIGHTNESS, BRIGHTNESS_MIN_SIZE)
            if current[1] == intensity:
                log.debug("Backlight already %d, skipping write", intensity)
                return False
            self._send('set_backlight', CommandId.BRIGHTNESS, payload)
        return True

    def set_background_color(self, color: Color) -> bool:
        """Set the screen background.  Returns False if it was already set."""
        payload = CommandPacketBuilder.background_color(color)
        self._link.ensure_ready('set_background_color')
        with self._link.transaction():
            current = self._link.read_report(
                CommandId.BACKGROUND_COLOR, BACKGROUND_MIN_SIZE)
            if bytes(current[1:4]) == payload:
                log.debug("Background already %s, skipping write", color.to_hex())
                return False
            self._send('set_background_color', CommandId.BACKGROUND_COLOR, payload)
        return True

    def set_writing_area(self, rect: Rect) -> None:
        self._send('set_writing_area', CommandId.WRITING_AREA,
                   CommandPacketBuilder.writing_area(rect))

    def set_writing_mode(self, mode: int) -> None:
        self._send('set_writing_mode', CommandId.WRITING_MODE,
                   CommandPacketBuilder.writing_mode(mode))

    def set_inking(self, enabled: bool) -> None:
        self._send('set_inking', CommandId.INK_MODE,
                   CommandPacketBuilder.inking(enabled))

    def clear_screen(self) -> None:
        self._send('clear_screen', CommandId.CLEAR_SCREEN,
                   CommandPacketBuilder.clear_screen())
