"""
Pen input report decoding.

Report layout (big-endian, report id already stripped)::

    byte 0      bit0 = rdy (pen in range), bit1 = sw (tip switch),
                low nibble = pressure bits 8..11
    byte 1      pressure bits 0..7
    bytes 2-3   x (device units)
    bytes 4-5   y (device units)
    bytes 6-7   time   (PEN_DATA_TIMING only)
    bytes 8-9   seq    (PEN_DATA_TIMING only)

Decoded events are dispatched inline on the transport's reader thread.
There is no queue: a callback that blocks holds up every report behind it.
"""

from __future__ import annotations

import logging
import math
import struct
from typing import Callable, Optional

from .constants import (
    PEN_DATA_MIN_SIZE,
    PEN_DATA_TIMING_MIN_SIZE,
    PEN_FLAG_RDY,
    PEN_FLAG_SW,
    PEN_PRESSURE_HIGH_MASK,
    PEN_REPORT_IDS,
    CommandId,
)
from .errors import MalformedReportError, require_length
from .models import DeviceConfig, PenEvent

log = logging.getLogger(__name__)

PenCallback = Callable[[PenEvent], None]

_XY = struct.Struct('>HH')
_TIMING = struct.Struct('>HH')


def decode_pen_report(report_id: int, data: bytes, config: DeviceConfig) -> PenEvent:
    """Decode one pen report against *config*.

    Raises:
        MalformedReportError: Report shorter than its layout.
        ValueError: *report_id* is not a pen report.
    """
    if report_id == CommandId.PEN_DATA_TIMING:
        require_length(report_id, data, PEN_DATA_TIMING_MIN_SIZE)
    elif report_id == CommandId.PEN_DATA:
        require_length(report_id, data, PEN_DATA_MIN_SIZE)
    else:
        raise ValueError(f"Not a pen report: 0x{report_id:02x}")

    flags = data[0]
    x, y = _XY.unpack_from(data, 2)
    raw_pressure = ((flags & PEN_PRESSURE_HIGH_MASK) << 8) | data[1]
    scale = config.scale_factor

    seq = time = None
    if report_id == CommandId.PEN_DATA_TIMING:
        time, seq = _TIMING.unpack_from(data, 6)

    return PenEvent(
        rdy=bool(flags & PEN_FLAG_RDY),
        sw=bool(flags & PEN_FLAG_SW),
        cx=math.floor(x / scale),
        cy=math.floor(y / scale),
        x=x,
        y=y,
        press=raw_pressure / config.pressure_factor,
        seq=seq,
        time=time,
    )


class PenDecoder:
    """Turns input reports into PenEvents and calls the registered callback.

    *config_source* returns the current DeviceConfig snapshot.  The decoder
    never touches the request/response lock, so pen delivery keeps flowing
    while a feature transaction is in progress.
    """

    def __init__(self, config_source: Callable[[], DeviceConfig],
                 callback: Optional[PenCallback] = None):
        self._config_source = config_source
        self.callback = callback
        self.dropped = 0

    def handle_report(self, report_id: int, data: bytes) -> None:
        """Input-report handler installed on the transport."""
        if report_id not in PEN_REPORT_IDS:
            log.debug("Ignoring input report 0x%02x (%d bytes)", report_id, len(data))
            return
        callback = self.callback
        if callback is None:
            return
        try:
            event = decode_pen_report(report_id, data, self._config_source())
        except MalformedReportError as e:
            self.dropped += 1
            log.warning("Dropping pen report: %s", e)
            return
        callback(event)
