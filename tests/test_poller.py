"""Tests for touchkio/poller.py."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest
from touchkio.events import EventBus, KioskEvent
from touchkio.executor import CommandResult
from touchkio.hardware import Hardware
from touchkio.poller import StatePoller, apply_reading


def test_apply_reading():
    cache: dict[str, str] = {}
    assert apply_reading(cache, "power", "On") is True
    assert apply_reading(cache, "power", "On") is False
    assert apply_reading(cache, "power", "Off") is True
    assert apply_reading(cache, "power", "") is False
    assert cache["power"] == ""
    assert apply_reading(cache, "power", None) is False
    assert "power" not in cache


@pytest.fixture
def poller_setup(make_probe_result):
    events = EventBus()
    hardware = Hardware(make_probe_result(), events)
    handler = Mock()
    events.on(KioskEvent.UPDATE_DISPLAY, handler)
    poller = StatePoller(hardware, events, interval=0.01, logger=Mock())
    return poller, hardware, handler


def _patched_reads():
    return patch(
        "touchkio.hardware.executor.run_async",
        AsyncMock(return_value=CommandResult(ok=True, output="HDMI-A-1 on")),
    )


class TestStatePoller:
    @pytest.mark.anyio
    async def test_first_tick_reports_change(self, poller_setup):
        poller, hardware, handler = poller_setup
        with _patched_reads():
            assert await poller.tick() is True
        # One event for the status readings and one for brightness
        assert handler.call_count == 2
        assert hardware.probe.display_status.cached_values == {"power": "On", "connection": "connected"}
        assert hardware.probe.display_brightness.cached_values == {"brightness": "128"}

    @pytest.mark.anyio
    async def test_unchanged_values_raise_no_event(self, poller_setup):
        poller, _hardware, handler = poller_setup
        with _patched_reads():
            await poller.tick()
            handler.reset_mock()
            assert await poller.tick() is False
        handler.assert_not_called()

    @pytest.mark.anyio
    async def test_brightness_change_raises_one_event(self, poller_setup, fake_sysfs):
        poller, _hardware, handler = poller_setup
        with _patched_reads():
            await poller.tick()
            handler.reset_mock()
            (fake_sysfs / "class" / "backlight" / "10-0045" / "brightness").write_text("200\n", encoding="utf-8")
            assert await poller.tick() is True
        handler.assert_called_once_with()

    @pytest.mark.anyio
    async def test_empty_value_is_not_a_change(self, poller_setup, fake_sysfs):
        poller, _hardware, handler = poller_setup
        with _patched_reads():
            await poller.tick()
            handler.reset_mock()
            (fake_sysfs / "class" / "drm" / "card1-HDMI-A-1" / "dpms").write_text("", encoding="utf-8")
            assert await poller.tick() is False
        handler.assert_not_called()

    @pytest.mark.anyio
    async def test_ddc_brightness_polls_cache_file(self, make_probe_result):
        probe = make_probe_result(brightness_command="ddcutil")
        poller = StatePoller(Hardware(probe, EventBus()), EventBus())
        readings = poller.brightness_readings()
        assert [reading.path for reading in readings] == [probe.brightness_cache]

    @pytest.mark.anyio
    async def test_unsupported_capabilities_are_not_polled(self, make_probe_result):
        hardware = Hardware(make_probe_result(display_status=False, display_brightness=False), EventBus())
        poller = StatePoller(hardware, EventBus())
        assert poller.status_readings() == []
        assert poller.brightness_readings() == []
        assert await poller.tick() is False

    @pytest.mark.anyio
    async def test_start_and_stop(self, poller_setup):
        poller, _hardware, _handler = poller_setup
        with _patched_reads():
            poller.start()
            assert poller.running
            await poller.stop()
        assert not poller.running
