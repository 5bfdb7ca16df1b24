"""Shared fixtures: an in-memory tablet transport and session builders."""

import struct
import threading

import pytest

from stu540.device_hid import TabletTransport
from stu540.models import DeviceHandle
from stu540.session import TabletSession

# Capability report from a real STU-540: 21600x13500, pressure 1023,
# 800x480, 60 Hz.
CAPABILITY_REPORT = bytes([0x09, 0x54, 0x60, 0x34, 0xBC, 0x03, 0xFF,
                           0x03, 0x20, 0x01, 0xE0, 0x3C])
INFORMATION_REPORT = bytes([0x08]) + b'STU-540' + bytes([1, 2, 3, 4])
E_SERIAL_REPORT = bytes([0x0F]) + b'0A1B2C3D4E'

HANDLE = DeviceHandle(vid=0x056A, pid=0x00A8, backend='fake', path='1:7')


def make_capability(tablet_width=21600, tablet_height=13500, pressure_factor=1023,
                    width=800, height=480, refresh_rate=60) -> bytes:
    return bytes([0x09]) + struct.pack('>HHHHHB', tablet_width, tablet_height,
                                       pressure_factor, width, height, refresh_rate)


class FakeTransport(TabletTransport):
    """Scriptable transport.

    ``features`` maps report id -> buffer returned by read_feature (id byte
    first).  ``errors`` maps report id -> exception raised on read/write.
    Report ids in ``blocking`` make the call hang until ``release`` is set.
    Every call is recorded in ``calls``; ``max_active`` tracks how many
    transactions ever overlapped.
    """

    def __init__(self, features=None):
        super().__init__()
        self.features = {
            0x09: CAPABILITY_REPORT,
            0x08: INFORMATION_REPORT,
            0x0F: E_SERIAL_REPORT,
            0x2B: bytes([0x2B, 50]),
            0x2E: bytes([0x2E, 0xFF, 0xFF, 0xFF]),
        }
        if features:
            self.features.update(features)
        self.errors = {}
        self.blocking = set()
        self.release = threading.Event()
        self.entered = threading.Event()
        self.calls = []
        self.handler_seen_on_read = []
        self.open_count = 0
        self.close_count = 0
        self._is_open = False
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _open_device(self):
        self.open_count += 1
        self._is_open = True

    def _close_device(self):
        if self._is_open:
            self.close_count += 1
        self._is_open = False

    def _enter(self, report_id):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if report_id in self.blocking:
                self.entered.set()
                self.release.wait(5)
            if report_id in self.errors:
                raise self.errors[report_id]
        except BaseException:
            self._leave()
            raise

    def _leave(self):
        with self._lock:
            self._active -= 1

    def write_feature(self, report_id, payload):
        self._enter(report_id)
        try:
            self.calls.append(('write', report_id, bytes(payload)))
        finally:
            self._leave()

    def read_feature(self, report_id):
        self._enter(report_id)
        try:
            self.calls.append(('read', report_id))
            self.handler_seen_on_read.append(self._handler is not None)
            return self.features[report_id]
        finally:
            self._leave()

    def _read_input(self, timeout_ms):
        self._stop.wait(timeout_ms / 1000.0)
        return b''

    @property
    def is_open(self):
        return self._is_open

    # -- Test helpers ------------------------------------------------------

    def push(self, report_id, payload):
        """Deliver an input report as the reader thread would."""
        self._dispatch_input(bytes([report_id]) + bytes(payload))

    @property
    def writes(self):
        return [(c[1], c[2]) for c in self.calls if c[0] == 'write']

    @property
    def reads(self):
        return [c[1] for c in self.calls if c[0] == 'read']


class FakeBackend:
    """finder/opener pair handing out one FakeTransport."""

    def __init__(self, transport, handles=(HANDLE,)):
        self.transport = transport
        self.handles = list(handles)
        self.find_calls = 0
        self.open_calls = 0

    def find(self, vid, pid, backend=None):
        self.find_calls += 1
        return list(self.handles)

    def open(self, handle):
        self.open_calls += 1
        self.transport.open()
        return self.transport


@pytest.fixture
def transport():
    t = FakeTransport()
    yield t
    t.release.set()
    t.close()


@pytest.fixture
def backend(transport):
    return FakeBackend(transport)


@pytest.fixture
def make_session(backend):
    sessions = []

    def _make(**kwargs):
        kwargs.setdefault('timeout', 2.0)
        session = TabletSession(finder=backend.find, opener=backend.open, **kwargs)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.disconnect()


@pytest.fixture
def session(make_session):
    """A READY session over the fake transport."""
    s = make_session()
    s.connect()
    return s
