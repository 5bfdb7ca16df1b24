"""
Tests for pen input report decoding and inline dispatch.
"""

import threading

import pytest

from conftest import make_capability
from stu540.constants import CommandId
from stu540.errors import MalformedReportError
from stu540.models import DeviceConfig, PenEvent
from stu540.pen_decoder import PenDecoder, decode_pen_report

# 800x480 screen, 21600 device units wide -> scale 27.0
CONFIG = DeviceConfig(tablet_width=21600, tablet_height=13500, width=800,
                      height=480, pressure_factor=1023)


class TestDecode:

    def test_reference_report(self):
        event = decode_pen_report(
            CommandId.PEN_DATA,
            bytes([0x03, 0xFF, 0x01, 0x40, 0x00, 0xF0, 0, 0, 0, 0]),
            CONFIG,
        )
        assert event == PenEvent(rdy=True, sw=True, cx=11, cy=8, x=320, y=240,
                                 press=1.0, seq=None, time=None)

    def test_flags_cleared_before_pressure(self):
        # 0xF3: high nibble garbage, flags set, pressure high bits 0x3
        event = decode_pen_report(CommandId.PEN_DATA,
                                  bytes([0xF3, 0xFF, 0, 0, 0, 0]), CONFIG)
        assert event.press == 1.0

    def test_pen_up_hovering(self):
        event = decode_pen_report(CommandId.PEN_DATA,
                                  bytes([0x01, 0x00, 0x00, 0x00, 0x00, 0x00]), CONFIG)
        assert event.rdy is True
        assert event.sw is False
        # rdy shares bit 0 with pressure bit 8
        assert event.press == pytest.approx(256 / 1023)

    def test_zero_pressure(self):
        event = decode_pen_report(CommandId.PEN_DATA, bytes(6), CONFIG)
        assert event.rdy is False
        assert event.press == 0.0

    def test_pressure_scaled_by_factor(self):
        event = decode_pen_report(CommandId.PEN_DATA,
                                  bytes([0x02, 0x00, 0, 0, 0, 0]), CONFIG)
        assert event.press == pytest.approx(512 / 1023)

    def test_screen_coordinates_floor(self):
        # 27 * 100 + 26 -> still pixel 100
        event = decode_pen_report(CommandId.PEN_DATA,
                                  bytes([0, 0]) + (2726).to_bytes(2, 'big') + bytes(2),
                                  CONFIG)
        assert event.cx == 100
        assert event.cy == 0

    def test_timing_report(self):
        event = decode_pen_report(
            CommandId.PEN_DATA_TIMING,
            bytes([0x01, 0x10, 0x01, 0x40, 0x00, 0xF0, 0x12, 0x34, 0x00, 0x07]),
            CONFIG,
        )
        assert event.time == 0x1234
        assert event.seq == 7
        assert event.press == pytest.approx(0x110 / 1023)

    def test_short_pen_report(self):
        with pytest.raises(MalformedReportError):
            decode_pen_report(CommandId.PEN_DATA, bytes(5), CONFIG)

    def test_short_timing_report(self):
        with pytest.raises(MalformedReportError):
            decode_pen_report(CommandId.PEN_DATA_TIMING, bytes(8), CONFIG)

    def test_non_pen_report(self):
        with pytest.raises(ValueError):
            decode_pen_report(CommandId.CAPABILITY, bytes(12), CONFIG)


class TestDispatch:

    def test_callback_receives_event(self):
        events = []
        decoder = PenDecoder(lambda: CONFIG, events.append)
        decoder.handle_report(CommandId.PEN_DATA, bytes([0x03, 0xFF, 0x01, 0x40, 0x00, 0xF0]))
        assert len(events) == 1
        assert events[0].cx == 11

    def test_no_callback_drops(self):
        decoder = PenDecoder(lambda: CONFIG)
        decoder.handle_report(CommandId.PEN_DATA, bytes(6))
        assert decoder.dropped == 0

    def test_other_reports_ignored(self):
        events = []
        decoder = PenDecoder(lambda: CONFIG, events.append)
        decoder.handle_report(0x50, bytes(12))
        assert events == []

    def test_malformed_dropped_and_counted(self):
        events = []
        decoder = PenDecoder(lambda: CONFIG, events.append)
        decoder.handle_report(CommandId.PEN_DATA, bytes(3))
        assert events == []
        assert decoder.dropped == 1

    def test_uses_current_config(self):
        configs = [DeviceConfig()]
        events = []
        decoder = PenDecoder(lambda: configs[0], events.append)
        report = bytes([0x03, 0xFF]) + (2700).to_bytes(2, 'big') + bytes(2)
        decoder.handle_report(CommandId.PEN_DATA, report)
        configs[0] = CONFIG
        decoder.handle_report(CommandId.PEN_DATA, report)
        assert [e.cx for e in events] == [200, 100]


class TestSessionDelivery:

    def test_events_through_session(self, session, transport):
        events = []
        session.on_pen_data = events.append
        transport.push(CommandId.PEN_DATA, bytes([0x03, 0xFF, 0x01, 0x40, 0x00, 0xF0]))
        assert events[0].x == 320
        assert events[0].cx == 11

    def test_negotiated_scale_used(self, make_session, transport):
        transport.features[CommandId.CAPABILITY] = make_capability(tablet_width=8000, width=800)
        s = make_session()
        s.connect()
        events = []
        s.on_pen_data = events.append
        transport.push(CommandId.PEN_DATA, bytes([0, 0]) + (1000).to_bytes(2, 'big') + bytes(2))
        assert events[0].cx == 100

    def test_delivery_not_blocked_by_transaction(self, session, transport):
        """Pen reports flow while another thread holds the request lock."""
        events = []
        session.on_pen_data = events.append
        holding = threading.Event()
        done = threading.Event()

        def hold():
            with session.transaction():
                holding.set()
                done.wait(2)

        holder = threading.Thread(target=hold)
        holder.start()
        assert holding.wait(2)
        transport.push(CommandId.PEN_DATA, bytes(6))
        done.set()
        holder.join(2)
        assert len(events) == 1

    def test_callback_error_does_not_escape(self, session, transport):
        def boom(event):
            raise RuntimeError("consumer bug")

        session.on_pen_data = boom
        transport.push(CommandId.PEN_DATA, bytes(6))
        assert session.is_connected
