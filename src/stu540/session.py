"""
Tablet session: connection lifecycle, negotiation, and the report link.

``TabletSession`` owns everything tied to one open device: the transport,
the negotiated ``DeviceConfig``, the cached upload, and the lock that keeps
feature-report transactions one at a time.  Command encoding lives in
``commands``, pen decoding in ``pen_decoder``, chunked upload in
``image_upload``; the session exposes all of them as one API::

    with TabletSession() as tablet:
        tablet.on_pen_data = print
        tablet.set_backlight(2)
        tablet.set_image(bgr_bytes)

State machine::

    DISCONNECTED -> CONNECTING -> NEGOTIATING -> READY
         ^______________|______________|___________|   (any I/O failure)

Every request/response call runs on a single I/O worker thread and is
awaited with a timeout.  ``cancel()`` aborts the wait from another thread.
A timed-out or cancelled call leaves the device in an unknown state, so the
session closes the transport and drops to DISCONNECTED.
"""

from __future__ import annotations

import contextlib
import functools
import logging
import struct
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterator, List, Optional

from .commands import CommandCodec
from .constants import (
    CANCEL_POLL_S,
    CAPABILITY_MIN_SIZE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_TIMEOUT_S,
    E_SERIAL_MIN_SIZE,
    INFORMATION_MIN_SIZE,
    STU_PID,
    STU_VID,
    CommandId,
)
from .device_hid import TabletTransport, find_tablets, open_tablet
from .errors import (
    DeviceNotFoundError,
    MalformedReportError,
    NotConnectedError,
    OperationCancelledError,
    RequestTimeoutError,
    StuError,
    TransportIOError,
    require_length,
)
from .image_upload import ImageUploader
from .models import Color, ConnectionState, DeviceConfig, DeviceHandle, Rect
from .pen_decoder import PenCallback, PenDecoder

log = logging.getLogger(__name__)

_CAPABILITY = struct.Struct('>HHHHHB')


# =========================================================================
# Negotiation report parsing (big-endian, offsets include the id byte)
# =========================================================================

def _ascii(data: bytes) -> str:
    return bytes(data).decode('ascii', errors='replace').rstrip('\x00')


def parse_capability(data: bytes) -> dict:
    """Capability report -> geometry fields.

    Layout::

        1:u16 tablet_width   3:u16 tablet_height   5:u16 pressure_factor
        7:u16 width          9:u16 height          11:u8 refresh_rate
    """
    require_length(CommandId.CAPABILITY, data, CAPABILITY_MIN_SIZE)
    (tablet_width, tablet_height, pressure_factor,
     width, height, refresh_rate) = _CAPABILITY.unpack_from(data, 1)
    if width == 0 or pressure_factor == 0:
        raise MalformedReportError(
            CommandId.CAPABILITY, CAPABILITY_MIN_SIZE, len(data),
            reason=f"zero divisor (width={width}, pressure_factor={pressure_factor})",
        )
    return {
        'tablet_width': tablet_width,
        'tablet_height': tablet_height,
        'pressure_factor': pressure_factor,
        'width': width,
        'height': height,
        'refresh_rate': refresh_rate,
    }


def parse_information(data: bytes) -> dict:
    """Information report -> device name (bytes 1..7) and firmware (8..11)."""
    require_length(CommandId.INFORMATION, data, INFORMATION_MIN_SIZE)
    return {
        'device_name': _ascii(data[1:8]),
        'firmware': "%d.%d.%d.%d" % tuple(data[8:12]),
    }


def parse_e_serial(data: bytes) -> dict:
    """eSerial report -> ASCII serial (bytes 1..end)."""
    require_length(CommandId.E_SERIAL, data, E_SERIAL_MIN_SIZE)
    return {'e_serial': _ascii(data[1:])}


# =========================================================================
# Session
# =========================================================================

class TabletSession:
    """One STU-540 connection.

    Args:
        vid, pid: Device identity to look for.
        timeout: Seconds allowed per request/response call.
        chunk_size: Image upload chunk size (1..255).
        backend: 'pyusb', 'hidapi' or None (auto).
        finder: ``finder(vid, pid, backend) -> [DeviceHandle]``.
        opener: ``opener(handle) -> TabletTransport`` (already open).
    """

    def __init__(
        self,
        vid: int = STU_VID,
        pid: int = STU_PID,
        *,
        timeout: float = DEFAULT_TIMEOUT_S,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        backend: Optional[str] = None,
        finder: Callable[..., List[DeviceHandle]] = find_tablets,
        opener: Callable[[DeviceHandle], TabletTransport] = open_tablet,
    ):
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")
        self.vid = vid
        self.pid = pid
        self.timeout = timeout
        self.backend = backend
        self._finder = finder
        self._opener = opener

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._connect_lock = threading.Lock()
        self._txn_lock = threading.RLock()
        self._cancel = threading.Event()
        self._pending = 0
        self._executor: Optional[ThreadPoolExecutor] = None
        self._transport: Optional[TabletTransport] = None
        self._handle: Optional[DeviceHandle] = None
        self._config = DeviceConfig()

        self.on_state_changed: Optional[Callable[[ConnectionState], None]] = None
        self.decoder = PenDecoder(lambda: self._config)
        self.commands = CommandCodec(self)
        self.uploader = ImageUploader(self, chunk_size)

    # -- State --------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def handle(self) -> Optional[DeviceHandle]:
        return self._handle

    @property
    def config(self) -> DeviceConfig:
        """Current DeviceConfig snapshot (static defaults before connect)."""
        return self._config

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            if self._state is state:
                return
            log.debug("State %s -> %s", self._state.name, state.name)
            self._state = state
        callback = self.on_state_changed
        if callback is not None:
            callback(state)

    def ensure_ready(self, operation: str = "") -> None:
        if self._state is not ConnectionState.READY:
            raise NotConnectedError(operation)

    # -- Pen events -----------------------------------------------------------

    @property
    def on_pen_data(self) -> Optional[PenCallback]:
        return self.decoder.callback

    @on_pen_data.setter
    def on_pen_data(self, callback: Optional[PenCallback]) -> None:
        self.decoder.callback = callback

    # -- Lifecycle ------------------------------------------------------------

    def check_available(self) -> bool:
        """True if connected, or a matching device is enumerable."""
        if self.is_connected:
            return True
        handles = self._call('discover', functools.partial(
            self._finder, self.vid, self.pid, self.backend))
        return bool(handles)

    def connect(self, timeout: Optional[float] = None) -> bool:
        """Open the tablet and negotiate its configuration.

        Idempotent: when already READY this returns True without any I/O.
        *timeout* bounds the whole sequence on top of the per-call timeout.

        Raises:
            DeviceNotFoundError: No matching device.
            DeviceBusyError: Device already open elsewhere.
            TransportIOError: A transfer failed.
            MalformedReportError: A negotiation report was too short.
            RequestTimeoutError / OperationCancelledError.
        """
        with self._connect_lock:
            if self._state is ConnectionState.READY:
                log.debug("connect(): already connected to %s", self._config.device_name)
                return True

            self._cancel.clear()
            deadline = time.monotonic() + timeout if timeout is not None else None
            self._set_state(ConnectionState.CONNECTING)
            try:
                handles = self._call('discover', functools.partial(
                    self._finder, self.vid, self.pid, self.backend), deadline=deadline)
                if not handles:
                    raise DeviceNotFoundError(self.vid, self.pid)
                handle = handles[0]
                transport = self._call('open', functools.partial(
                    self._opener, handle), deadline=deadline,
                    discard=self._close_orphan)
                self._transport = transport
                self._handle = handle
                # Listener goes in before the first response read.
                transport.set_input_handler(self.decoder.handle_report)

                self._set_state(ConnectionState.NEGOTIATING)
                fields = {}
                with self.transaction():
                    fields.update(parse_capability(
                        self.read_report(CommandId.CAPABILITY, deadline=deadline)))
                    fields.update(parse_information(
                        self.read_report(CommandId.INFORMATION, deadline=deadline)))
                    fields.update(parse_e_serial(
                        self.read_report(CommandId.E_SERIAL, deadline=deadline)))
            except Exception as e:
                log.warning("Connect failed: %s", e)
                self._teardown()
                raise

            self._config = DeviceConfig(**fields)
            self._set_state(ConnectionState.READY)
            log.info("Connected to %s (fw %s, serial %s) %dx%d, scale %.2f, via %s",
                     self._config.device_name, self._config.firmware,
                     self._config.e_serial, self._config.width, self._config.height,
                     self._config.scale_factor, handle.backend)
            return True

    def disconnect(self) -> None:
        """Close the transport.  The cached image survives for a later refresh."""
        if self._transport is not None:
            log.info("Disconnecting from %s", self._config.device_name or "tablet")
        self._teardown()

    def cancel(self) -> bool:
        """Abort the pending request/response wait, if any.

        Returns True if something was in flight.  The aborted call raises
        OperationCancelledError and the session drops to DISCONNECTED.
        """
        with self._state_lock:
            busy = self._pending > 0 or self._state in (
                ConnectionState.CONNECTING, ConnectionState.NEGOTIATING)
            if busy:
                self._cancel.set()
        return busy

    def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        self._handle = None
        if transport is not None:
            transport.set_input_handler(None)
            try:
                transport.close()
            except StuError as e:
                log.debug("Transport close: %s", e)
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        self._set_state(ConnectionState.DISCONNECTED)
        self._cancel.clear()

    def get_config(self) -> DeviceConfig:
        """Negotiated configuration.  Raises NotConnectedError if not READY."""
        self.ensure_ready('get_config')
        return self._config

    # -- Report link (used by CommandCodec / ImageUploader) ---------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the request/response lock across several calls."""
        with self._txn_lock:
            yield

    def _require_transport(self, operation: str) -> TabletTransport:
        transport = self._transport
        if transport is None:
            raise NotConnectedError(operation)
        return transport

    def write_report(self, report_id: int, payload: bytes,
                     deadline: Optional[float] = None) -> None:
        operation = f"write 0x{report_id:02x}"
        with self._txn_lock:
            transport = self._require_transport(operation)
            self._guarded(operation, functools.partial(
                transport.write_feature, report_id, payload), deadline)

    def read_report(self, report_id: int, min_size: int = 1,
                    deadline: Optional[float] = None) -> bytes:
        operation = f"read 0x{report_id:02x}"
        with self._txn_lock:
            transport = self._require_transport(operation)
            data = self._guarded(operation, functools.partial(
                transport.read_feature, report_id), deadline)
        log.debug("%s <- %s", operation, bytes(data).hex())
        require_length(report_id, data, min_size)
        return data

    def _guarded(self, operation: str, fn: Callable[[], Any],
                 deadline: Optional[float]) -> Any:
        try:
            return self._call(operation, fn, deadline=deadline)
        except (TransportIOError, RequestTimeoutError, OperationCancelledError) as e:
            if self._state is ConnectionState.READY:
                log.warning("%s failed, dropping session: %s", operation, e)
                self._teardown()
            raise

    def _call(self, operation: str, fn: Callable[[], Any],
              deadline: Optional[float] = None,
              discard: Optional[Callable[[Any], None]] = None) -> Any:
        """Run *fn* on the I/O worker, waiting at most the call timeout.

        If the wait is abandoned (timeout or cancel) while *fn* is still
        running, *discard* is applied to whatever *fn* returns later.
        """
        limit = self.timeout
        if deadline is not None:
            limit = min(limit, deadline - time.monotonic())
            if limit <= 0:
                raise RequestTimeoutError(operation, 0.0)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1,
                                                thread_name_prefix='stu540-io')
        with self._state_lock:
            if self._cancel.is_set():
                if self._state in (ConnectionState.CONNECTING,
                                   ConnectionState.NEGOTIATING):
                    raise OperationCancelledError(f"{operation} cancelled")
                # Left over from a call that finished before seeing it.
                self._cancel.clear()
            self._pending += 1
        try:
            future = self._executor.submit(fn)
            end = time.monotonic() + limit
            while True:
                remaining = end - time.monotonic()
                if remaining <= 0:
                    self._abandon(future, discard)
                    raise RequestTimeoutError(operation, limit)
                done, _ = wait((future,), timeout=min(remaining, CANCEL_POLL_S))
                if done:
                    break
                if self._cancel.is_set():
                    self._abandon(future, discard)
                    raise OperationCancelledError(f"{operation} cancelled")
        finally:
            with self._state_lock:
                self._pending -= 1

        try:
            return future.result()
        except StuError:
            raise
        except Exception as e:
            raise TransportIOError(f"{operation} failed: {e}") from e

    @staticmethod
    def _abandon(future: Future, discard: Optional[Callable[[Any], None]]) -> None:
        if future.cancel() or discard is None:
            return

        def on_done(f: Future) -> None:
            if f.cancelled() or f.exception() is not None:
                return
            log.debug("Discarding result of abandoned call")
            discard(f.result())

        future.add_done_callback(on_done)

    @staticmethod
    def _close_orphan(transport: TabletTransport) -> None:
        """Close a transport whose open() finished after connect gave up."""
        try:
            transport.close()
        except StuError as e:
            log.debug("Orphaned transport close: %s", e)
        log.info("Closed transport opened after connect was abandoned")

    # -- Commands -------------------------------------------------------------

    def set_pen_color_and_width(self, color: Color, width: int) -> None:
        self.commands.set_pen_color_and_width(color, width)

    def set_backlight(self, intensity: int) -> bool:
        return self.commands.set_backlight(intensity)

    def set_background_color(self, color: Color) -> bool:
        return self.commands.set_background_color(color)

    def set_writing_area(self, rect: Rect) -> None:
        self.commands.set_writing_area(rect)

    def set_writing_mode(self, mode: int) -> None:
        self.commands.set_writing_mode(mode)

    def set_inking(self, enabled: bool) -> None:
        self.commands.set_inking(enabled)

    def clear_screen(self) -> None:
        self.commands.clear_screen()

    def set_image(self, image: Optional[bytes]) -> bool:
        return self.uploader.set_image(image)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.disconnect()
