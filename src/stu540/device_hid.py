#!/usr/bin/env python3
"""
HID transport layer for the STU-540 pen display.

The tablet speaks plain USB HID: numbered feature reports for every
command and query, numbered input reports on the interrupt-IN endpoint for
pen samples.

The ``TabletTransport`` ABC abstracts the raw HID I/O so that:
  • Tests can inject a fake transport (no real hardware needed).
  • ``PyUsbTransport`` provides real USB via pyusb (HID class control
    transfers, libusb backend).
  • ``HidApiTransport`` provides an alternative via HIDAPI (OS HID driver).

Buffer conventions shared by both backends:
  • ``write_feature(report_id, payload)`` : *payload* excludes the id byte.
  • ``read_feature(report_id)`` : returned buffer starts with the id byte.
  • input handler gets ``(report_id, payload)`` with the id stripped.

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1, ``apt install libusb-1.0-0``)
  • hid:    ``pip install hid``    (needs libhidapi, ``apt install libhidapi-hidraw0``)
"""

import errno
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

import usb.core
import usb.util

from .constants import (
    DEFAULT_USB_TIMEOUT_MS,
    FEATURE_READ_SIZE,
    HID_GET_REPORT,
    HID_REPORT_TYPE_FEATURE,
    HID_REQ_TYPE_IN,
    HID_REQ_TYPE_OUT,
    HID_SET_REPORT,
    INPUT_REPORT_SIZE,
    READER_POLL_MS,
    STU_PID,
    STU_VID,
    USB_INTERFACE,
)
from .errors import DeviceBusyError, DeviceNotFoundError, TransportIOError
from .models import DeviceHandle

# hid is optional ([hid] extra)
try:
    import hid as hidapi
    HIDAPI_AVAILABLE = True
except ImportError:
    HIDAPI_AVAILABLE = False

log = logging.getLogger(__name__)

# pyusb is a hard dep
PYUSB_AVAILABLE = True

BACKEND_PYUSB = 'pyusb'
BACKEND_HIDAPI = 'hidapi'
BACKENDS = (BACKEND_PYUSB, BACKEND_HIDAPI)

InputHandler = Callable[[int, bytes], None]


# =========================================================================
# Abstract HID transport
# =========================================================================

class TabletTransport(ABC):
    """Abstract feature-report transport with an input-report push channel.

    Subclasses provide the four raw primitives; this base runs the reader
    thread that pulls input reports and hands them to the installed
    handler.  The handler runs on the reader thread, inline, so a slow
    handler delays the next report.
    """

    def __init__(self) -> None:
        self._handler: Optional[InputHandler] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # -- Raw primitives -------------------------------------------------

    @abstractmethod
    def _open_device(self) -> None:
        """Open the device exclusively."""

    @abstractmethod
    def _close_device(self) -> None:
        """Release the device."""

    @abstractmethod
    def write_feature(self, report_id: int, payload: bytes) -> None:
        """SET_REPORT (feature).  Blocks until the device accepted it."""

    @abstractmethod
    def read_feature(self, report_id: int) -> bytes:
        """GET_REPORT (feature).  Returned buffer starts with *report_id*."""

    @abstractmethod
    def _read_input(self, timeout_ms: int) -> bytes:
        """One input report (id byte first), or b'' on poll timeout."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    # -- Lifecycle --------------------------------------------------------

    def open(self) -> None:
        """Open the device and start delivering input reports."""
        if self.is_open:
            raise DeviceBusyError(f"{type(self).__name__} already open")
        self._open_device()
        self._stop.clear()
        self._reader = threading.Thread(
            target=self._reader_loop,
            name=f"{type(self).__name__}-reader",
            daemon=True,
        )
        self._reader.start()

    def close(self) -> None:
        """Stop the reader thread and release the device.  Safe to repeat."""
        self._stop.set()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=(READER_POLL_MS / 1000.0) * 5)
        self._close_device()

    def set_input_handler(self, handler: Optional[InputHandler]) -> None:
        """Install the callback for unsolicited input reports (None drops them)."""
        self._handler = handler

    # -- Input reports ------------------------------------------------------

    def _reader_loop(self) -> None:
        while not self._stop.is_set():
            try:
                raw = self._read_input(READER_POLL_MS)
            except TransportIOError as e:
                if not self._stop.is_set():
                    log.warning("Input report reader stopped: %s", e)
                return
            if raw:
                self._dispatch_input(raw)

    def _dispatch_input(self, raw: bytes) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            handler(raw[0], bytes(raw[1:]))
        except Exception:
            log.exception("Input handler failed for report 0x%02x", raw[0])

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================
# HID class requests on the control endpoint (HID 1.11, 7.2.1 / 7.2.2):
#   GET_REPORT  bmRequestType=0xA1 bRequest=0x01 wValue=(type<<8)|id
#   SET_REPORT  bmRequestType=0x21 bRequest=0x09 wValue=(type<<8)|id
# Input reports arrive on the interface's interrupt-IN endpoint.

class PyUsbTransport(TabletTransport):
    """Real USB transport using pyusb (libusb backend).

    Detaches usbhid from the interface, claims it, and talks HID over
    control transfers.  Needs udev access to the raw USB device.

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, vid: int = STU_VID, pid: int = STU_PID,
                 serial: Optional[str] = None,
                 timeout_ms: int = DEFAULT_USB_TIMEOUT_MS):
        super().__init__()
        self._vid = vid
        self._pid = pid
        self._serial = serial
        self._timeout_ms = timeout_ms
        self._device: Any = None
        self._ep_in: Optional[int] = None
        self._detached = False
        self._is_open = False

    def _open_device(self) -> None:
        kwargs: dict[str, Any] = {'idVendor': self._vid, 'idProduct': self._pid}
        if self._serial:
            kwargs['serial_number'] = self._serial

        try:
            device = usb.core.find(**kwargs)
        except usb.core.USBError as e:
            raise TransportIOError(f"USB enumeration failed: {e}") from e
        if device is None:
            raise DeviceNotFoundError(self._vid, self._pid)

        try:
            if device.is_kernel_driver_active(USB_INTERFACE):
                device.detach_kernel_driver(USB_INTERFACE)
                self._detached = True
                log.debug("Detached kernel driver from interface %d", USB_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            usb.util.claim_interface(device, USB_INTERFACE)
        except usb.core.USBError as e:
            if e.errno == errno.EBUSY:
                raise DeviceBusyError(
                    f"USB device {self._vid:04x}:{self._pid:04x} is in use"
                ) from e
            raise TransportIOError(f"Claim interface failed: {e}") from e

        self._device = device
        self._ep_in = self._find_interrupt_in()
        self._is_open = True

    def _find_interrupt_in(self) -> Optional[int]:
        """Interrupt-IN endpoint address of the HID interface, or None."""
        try:
            cfg = self._device.get_active_configuration()
            intf = cfg[(USB_INTERFACE, 0)]
        except (usb.core.USBError, KeyError, IndexError) as e:
            log.debug("Endpoint lookup failed: %s", e)
            return None
        ep = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: (
                usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_IN
                and usb.util.endpoint_type(e.bmAttributes) == usb.util.ENDPOINT_TYPE_INTR
            ),
        )
        if ep is None:
            log.warning("No interrupt-IN endpoint; pen reports unavailable")
            return None
        log.debug("Interrupt-IN endpoint: 0x%02x", ep.bEndpointAddress)
        return ep.bEndpointAddress

    def _close_device(self) -> None:
        device, self._device = self._device, None
        self._is_open = False
        if device is None:
            return
        try:
            usb.util.release_interface(device, USB_INTERFACE)
        except usb.core.USBError as e:
            log.debug("Release interface: %s", e)
        if self._detached:
            try:
                device.attach_kernel_driver(USB_INTERFACE)
            except (usb.core.USBError, NotImplementedError) as e:
                log.debug("Kernel driver reattach: %s", e)
            self._detached = False
        usb.util.dispose_resources(device)

    def _require_device(self) -> Any:
        device = self._device
        if not self._is_open or device is None:
            raise TransportIOError("Transport not open")
        return device

    def write_feature(self, report_id: int, payload: bytes) -> None:
        device = self._require_device()
        data = bytes([report_id]) + bytes(payload)
        try:
            device.ctrl_transfer(
                HID_REQ_TYPE_OUT, HID_SET_REPORT,
                (HID_REPORT_TYPE_FEATURE << 8) | report_id,
                USB_INTERFACE, data, self._timeout_ms,
            )
        except usb.core.USBError as e:
            raise TransportIOError(
                f"SET_REPORT 0x{report_id:02x} failed: {e}") from e

    def read_feature(self, report_id: int) -> bytes:
        device = self._require_device()
        try:
            data = device.ctrl_transfer(
                HID_REQ_TYPE_IN, HID_GET_REPORT,
                (HID_REPORT_TYPE_FEATURE << 8) | report_id,
                USB_INTERFACE, FEATURE_READ_SIZE, self._timeout_ms,
            )
        except usb.core.USBError as e:
            raise TransportIOError(
                f"GET_REPORT 0x{report_id:02x} failed: {e}") from e
        return bytes(data)

    def _read_input(self, timeout_ms: int) -> bytes:
        device = self._device
        if device is None or self._ep_in is None:
            self._stop.wait(timeout_ms / 1000.0)
            return b''
        try:
            return bytes(device.read(self._ep_in, INPUT_REPORT_SIZE, timeout=timeout_ms))
        except usb.core.USBTimeoutError:
            return b''
        except usb.core.USBError as e:
            raise TransportIOError(f"Interrupt read failed: {e}") from e

    @property
    def is_open(self) -> bool:
        return self._is_open


# =========================================================================
# Real transport: HIDAPI
# =========================================================================
# Goes through the OS HID driver (hidraw on Linux), so no kernel driver
# detach and usually no root once a udev rule grants access.

class HidApiTransport(TabletTransport):
    """HID transport using HIDAPI (``hid`` package).

    Requires: ``pip install hid`` + ``apt install libhidapi-hidraw0``
    """

    def __init__(self, vid: int = STU_VID, pid: int = STU_PID,
                 serial: Optional[str] = None, path: Optional[bytes] = None):
        if not HIDAPI_AVAILABLE:
            raise ImportError(
                "hid is not installed. Install with: pip install hid\n"
                "Also need libhidapi: apt install libhidapi-hidraw0 (Debian/Ubuntu) "
                "or dnf install hidapi (Fedora)"
            )
        super().__init__()
        self._vid = vid
        self._pid = pid
        self._serial = serial
        self._path = path
        self._device: Any = None
        self._is_open = False

    def _open_device(self) -> None:
        kwargs: dict[str, Any] = {}
        if self._path:
            kwargs['path'] = self._path
        else:
            kwargs['vid'] = self._vid
            kwargs['pid'] = self._pid
            if self._serial:
                kwargs['serial'] = self._serial
        try:
            self._device = hidapi.Device(**kwargs)
        except hidapi.HIDException as e:
            if not hidapi.enumerate(self._vid, self._pid):
                raise DeviceNotFoundError(self._vid, self._pid) from e
            raise DeviceBusyError(f"Cannot open HID device: {e}") from e
        self._is_open = True

    def _close_device(self) -> None:
        device, self._device = self._device, None
        self._is_open = False
        if device is not None:
            device.close()

    def _require_device(self) -> Any:
        device = self._device
        if not self._is_open or device is None:
            raise TransportIOError("Transport not open")
        return device

    def write_feature(self, report_id: int, payload: bytes) -> None:
        device = self._require_device()
        try:
            device.send_feature_report(bytes([report_id]) + bytes(payload))
        except (hidapi.HIDException, OSError, ValueError) as e:
            raise TransportIOError(
                f"send_feature_report 0x{report_id:02x} failed: {e}") from e

    def read_feature(self, report_id: int) -> bytes:
        device = self._require_device()
        try:
            return bytes(device.get_feature_report(report_id, FEATURE_READ_SIZE))
        except (hidapi.HIDException, OSError, ValueError) as e:
            raise TransportIOError(
                f"get_feature_report 0x{report_id:02x} failed: {e}") from e

    def _read_input(self, timeout_ms: int) -> bytes:
        device = self._device
        if device is None:
            return b''
        try:
            data = device.read(INPUT_REPORT_SIZE, timeout_ms)
        except (hidapi.HIDException, OSError, ValueError) as e:
            raise TransportIOError(f"HID read failed: {e}") from e
        return bytes(data) if data else b''

    @property
    def is_open(self) -> bool:
        return self._is_open


# =========================================================================
# Device discovery
# =========================================================================

def _find_pyusb(vid: int, pid: int) -> List[DeviceHandle]:
    handles = []
    try:
        found = usb.core.find(find_all=True, idVendor=vid, idProduct=pid)
    except usb.core.USBError as e:
        log.debug("pyusb enumeration failed: %s", e)
        return handles
    for dev in found or []:
        serial = ""
        serial_idx = getattr(dev, 'iSerialNumber', 0)
        if serial_idx:
            try:
                serial = usb.util.get_string(dev, serial_idx) or ""
            except (usb.core.USBError, ValueError) as e:
                log.debug("Serial string unreadable: %s", e)
        handles.append(DeviceHandle(
            vid=vid, pid=pid, backend=BACKEND_PYUSB,
            path=f"{dev.bus}:{dev.address}", serial=serial,
        ))
    return handles


def _find_hidapi(vid: int, pid: int) -> List[DeviceHandle]:
    handles = []
    for info in hidapi.enumerate(vid, pid):
        path = info.get('path') or b''
        handles.append(DeviceHandle(
            vid=vid, pid=pid, backend=BACKEND_HIDAPI,
            path=path.decode(errors='replace') if isinstance(path, bytes) else str(path),
            serial=info.get('serial_number') or "",
            product=info.get('product_string') or "",
        ))
    return handles


def find_tablets(vid: int = STU_VID, pid: int = STU_PID,
                 backend: Optional[str] = None) -> List[DeviceHandle]:
    """Scan for tablets.

    Tries pyusb first, falls back to hidapi enumeration, unless *backend*
    pins one of them.
    """
    if backend is not None and backend not in BACKENDS:
        raise ValueError(f"Unknown backend {backend!r}, expected one of {BACKENDS}")

    if backend in (None, BACKEND_PYUSB) and PYUSB_AVAILABLE:
        handles = _find_pyusb(vid, pid)
        if handles or backend == BACKEND_PYUSB:
            return handles
    if backend in (None, BACKEND_HIDAPI) and HIDAPI_AVAILABLE:
        return _find_hidapi(vid, pid)
    return []


def open_tablet(handle: DeviceHandle) -> TabletTransport:
    """Build the backend transport for *handle* and open it."""
    transport: TabletTransport
    if handle.backend == BACKEND_HIDAPI:
        transport = HidApiTransport(
            handle.vid, handle.pid,
            path=handle.path.encode() if handle.path else None,
        )
    elif handle.backend == BACKEND_PYUSB:
        transport = PyUsbTransport(handle.vid, handle.pid, serial=handle.serial or None)
    else:
        raise ValueError(f"Unknown backend {handle.backend!r}")
    transport.open()
    return transport
