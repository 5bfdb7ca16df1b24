"""
Exceptions raised by the STU-540 driver.

Everything derives from ``StuError`` so callers can catch the whole family.
Backend failures (pyusb, hidapi) are wrapped in ``TransportIOError`` at the
transport boundary with the original exception chained.
"""

from typing import Optional


class StuError(RuntimeError):
    """Base for all driver errors."""


class NotConnectedError(StuError):
    """Operation needs a negotiated session but none is ready."""

    def __init__(self, operation: str = ""):
        msg = "Tablet not connected"
        if operation:
            msg = f"{msg} (during {operation})"
        super().__init__(msg)
        self.operation = operation


class DeviceNotFoundError(StuError):
    """No device matching the requested VID/PID was found."""

    def __init__(self, vid: int, pid: int):
        super().__init__(f"Tablet not found: VID={vid:#06x} PID={pid:#06x}")
        self.vid = vid
        self.pid = pid


class DeviceBusyError(StuError):
    """Device is already opened (by this process or another one)."""


class TransportIOError(StuError):
    """A feature-report or input-report transfer failed."""


class MalformedReportError(StuError):
    """Report shorter than its fixed layout requires, or carrying an
    impossible value (e.g. a zero divisor)."""

    def __init__(self, report_id: int, expected: int, actual: int,
                 reason: Optional[str] = None):
        super().__init__(
            f"Malformed report {report_id:#04x}: "
            + (reason or f"need {expected} bytes, got {actual}")
        )
        self.report_id = report_id
        self.expected = expected
        self.actual = actual


class RequestTimeoutError(StuError):
    """A request/response call (or the whole connect) ran out of time."""

    def __init__(self, operation: str, timeout: Optional[float]):
        super().__init__(f"{operation} timed out after {timeout:.2f}s"
                         if timeout is not None else f"{operation} timed out")
        self.operation = operation
        self.timeout = timeout


class OperationCancelledError(StuError):
    """A pending call was aborted through ``TabletSession.cancel()``."""


def require_length(report_id: int, data: bytes, expected: int) -> None:
    """Raise MalformedReportError if *data* is shorter than *expected*."""
    if len(data) < expected:
        raise MalformedReportError(report_id, expected, len(data))
