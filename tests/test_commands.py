"""
Tests for command encoding and the debounced backlight/background writes.
"""

import threading

import pytest

from stu540.commands import CommandPacketBuilder
from stu540.constants import CommandId
from stu540.errors import MalformedReportError, NotConnectedError
from stu540.models import Color, ConnectionState, Rect


# =========================================================================
# Packet layouts
# =========================================================================

class TestPacketBuilder:

    def test_pen_color_and_width(self):
        assert CommandPacketBuilder.pen_color_and_width(Color(0x12, 0x34, 0x56), 3) \
            == bytes([0x12, 0x34, 0x56, 3])

    def test_backlight(self):
        assert CommandPacketBuilder.backlight(80) == bytes([80, 0])

    def test_background_color(self):
        assert CommandPacketBuilder.background_color(Color(1, 2, 3)) == bytes([1, 2, 3])

    def test_writing_area_little_endian(self):
        payload = CommandPacketBuilder.writing_area(Rect(10, 20, 500, 300))
        assert payload == bytes([10, 0, 20, 0, 0xF4, 0x01, 0x2C, 0x01])
        assert len(payload) == 8

    def test_writing_area_round_trip(self):
        rect = Rect(x1=10, y1=20, x2=500, y2=300)
        payload = CommandPacketBuilder.writing_area(rect)
        assert CommandPacketBuilder.parse_writing_area(payload) == rect

    def test_writing_mode(self):
        assert CommandPacketBuilder.writing_mode(1) == bytes([1])

    def test_inking(self):
        assert CommandPacketBuilder.inking(True) == bytes([1])
        assert CommandPacketBuilder.inking(False) == bytes([0])

    def test_clear_screen(self):
        assert CommandPacketBuilder.clear_screen() == bytes([0])

    @pytest.mark.parametrize("value", [-1, 256])
    def test_u8_range_checked(self, value):
        with pytest.raises(ValueError):
            CommandPacketBuilder.backlight(value)
        with pytest.raises(ValueError):
            CommandPacketBuilder.writing_mode(value)
        with pytest.raises(ValueError):
            CommandPacketBuilder.pen_color_and_width(Color(0, 0, 0), value)


# =========================================================================
# Operations over a session
# =========================================================================

class TestSimpleCommands:

    def test_pen_color_and_width(self, session, transport):
        session.set_pen_color_and_width(Color.from_hex('#000080'), 2)
        assert transport.writes == [(CommandId.PEN_COLOR_AND_WIDTH, bytes([0, 0, 0x80, 2]))]

    def test_writing_area(self, session, transport):
        session.set_writing_area(Rect(10, 20, 500, 300))
        assert transport.writes == [
            (CommandId.WRITING_AREA, bytes([10, 0, 20, 0, 0xF4, 0x01, 0x2C, 0x01]))]

    def test_writing_mode(self, session, transport):
        session.set_writing_mode(1)
        assert transport.writes == [(CommandId.WRITING_MODE, bytes([1]))]

    def test_inking(self, session, transport):
        session.set_inking(True)
        session.set_inking(False)
        assert transport.writes == [(CommandId.INK_MODE, bytes([1])),
                                    (CommandId.INK_MODE, bytes([0]))]

    def test_clear_screen(self, session, transport):
        session.clear_screen()
        assert transport.writes == [(CommandId.CLEAR_SCREEN, bytes([0]))]

    def test_invalid_value_sends_nothing(self, session, transport):
        with pytest.raises(ValueError):
            session.set_writing_mode(300)
        assert transport.writes == []


class TestNotConnected:

    @pytest.mark.parametrize("call", [
        lambda t: t.set_pen_color_and_width(Color(0, 0, 0), 1),
        lambda t: t.set_backlight(1),
        lambda t: t.set_background_color(Color(0, 0, 0)),
        lambda t: t.set_writing_area(Rect(0, 0, 1, 1)),
        lambda t: t.set_writing_mode(0),
        lambda t: t.set_inking(True),
        lambda t: t.clear_screen(),
    ])
    def test_raises_before_connect(self, make_session, transport, call):
        with pytest.raises(NotConnectedError):
            call(make_session())
        assert transport.calls == []

    def test_raises_after_disconnect(self, session, transport):
        session.disconnect()
        with pytest.raises(NotConnectedError):
            session.clear_screen()


# =========================================================================
# Debounce
# =========================================================================

class TestBacklightDebounce:

    def test_same_value_skips_write(self, session, transport):
        transport.calls.clear()
        assert session.set_backlight(50) is False
        assert transport.reads == [CommandId.BRIGHTNESS]
        assert transport.writes == []

    def test_new_value_writes_once(self, session, transport):
        transport.calls.clear()
        assert session.set_backlight(80) is True
        assert transport.writes == [(CommandId.BRIGHTNESS, bytes([80, 0]))]

    def test_read_precedes_write(self, session, transport):
        transport.calls.clear()
        session.set_backlight(80)
        assert [c[0] for c in transport.calls] == ['read', 'write']

    def test_short_brightness_report(self, session, transport):
        transport.features[CommandId.BRIGHTNESS] = bytes([0x2B])
        with pytest.raises(MalformedReportError):
            session.set_backlight(80)
        assert transport.writes == []
        assert session.state is ConnectionState.READY


class TestBackgroundDebounce:

    def test_same_color_skips_write(self, session, transport):
        assert session.set_background_color(Color(255, 255, 255)) is False
        assert transport.writes == []

    def test_one_channel_differs(self, session, transport):
        assert session.set_background_color(Color(255, 255, 254)) is True
        assert transport.writes == [(CommandId.BACKGROUND_COLOR, bytes([255, 255, 254]))]

    def test_short_background_report(self, session, transport):
        transport.features[CommandId.BACKGROUND_COLOR] = bytes([0x2E, 1, 2])
        with pytest.raises(MalformedReportError):
            session.set_background_color(Color(0, 0, 0))


class TestSerialization:

    def test_commands_from_threads_never_overlap(self, session, transport):
        def worker(i):
            for _ in range(10):
                session.set_backlight(i)
                session.clear_screen()

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert transport.max_active == 1
