"""Tests for the Home Assistant bridge (touchkio/integration.py)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from unittest.mock import AsyncMock, Mock, patch

import pytest
from touchkio.device import DeviceIdentity
from touchkio.events import EventBus, KioskEvent
from touchkio.executor import CommandResult
from touchkio.hardware import Hardware
from touchkio.integration import (
    Command,
    CommandKind,
    DiscoveryBridge,
    format_heartbeat,
    parse_command,
    truncate_summary,
)
from touchkio.kiosk import PointerActivityTracker
from touchkio.mqtt import KioskMqtt
from touchkio.probe import CapabilityMatrix
from touchkio.releases import ReleaseInfo
from touchkio.window import WindowStatus, WindowStatusMachine

NODE = "rpi_B2C3D4"
ROOT = f"touchkio/{NODE}"
OK = CommandResult(ok=True)


class FakeView:
    """In-memory kiosk view."""

    def __init__(self, urls=("http://ha.local/a",)):
        self.tracker = PointerActivityTracker(last_move=0.0)
        self.urls = list(urls)
        self._active_page = 1
        self.zoom = 125
        self.theme = "dark"
        self.url = urls[0]
        self.screenshot = None
        self.set_theme = AsyncMock()
        self.load_url = AsyncMock(return_value=True)

    @property
    def page_count(self):
        return len(self.urls)

    @property
    def active_page(self):
        return self._active_page

    def select_page(self, number):
        if not 1 <= number <= len(self.urls):
            return False
        self._active_page = number
        return True

    def get_zoom(self):
        return self.zoom

    def set_zoom(self, percent):
        self.zoom = percent
        return True

    def get_theme(self):
        return self.theme

    def get_active_url(self):
        return self.url


def _matrix(**overrides):
    flags = dict(
        battery_level=True,
        display_status=True,
        display_brightness=True,
        keyboard_visibility=True,
        audio_volume=True,
        sudo_rights=True,
        app_update=True,
    )
    flags.update(overrides)
    return CapabilityMatrix(**flags)


def _hardware(matrix):
    hardware = Mock(spec=Hardware)
    hardware.support = matrix
    hardware.set_display_status = AsyncMock(return_value=OK)
    hardware.set_display_brightness = AsyncMock(return_value=OK)
    hardware.set_audio_volume = AsyncMock(return_value=OK)
    hardware.set_keyboard_visibility = AsyncMock(return_value=OK)
    hardware.shutdown_system = AsyncMock(return_value=OK)
    hardware.reboot_system = AsyncMock(return_value=OK)
    hardware.install_update = AsyncMock(return_value=0)
    hardware.get_display_status = AsyncMock(return_value="ON")
    hardware.get_display_brightness = AsyncMock(return_value=80)
    hardware.get_audio_volume = AsyncMock(return_value=40)
    hardware.get_keyboard_visibility = Mock(return_value="OFF")
    hardware.get_battery_level = Mock(return_value=87.0)
    return hardware


@pytest.fixture
def bridge_factory(make_kiosk_config, mock_logger):
    def _create(urls=("http://ha.local/a",), history=None, **overrides):
        config = make_kiosk_config(urls=urls)
        identity = DeviceIdentity(
            model="Raspberry Pi 5 Model B Rev 1.0",
            vendor="Raspberry Pi Ltd",
            serial_number="10000000a1b2c3d4",
            machine_id="0123456789abcdef",
            host_name="kiosk",
        )
        mqtt_client = Mock(spec=KioskMqtt)
        mqtt_client.publish.return_value = True
        window = Mock(spec=WindowStatusMachine)
        window.status = WindowStatus.FULLSCREEN
        window.set_status = AsyncMock(return_value=WindowStatus.MAXIMIZED)
        events = EventBus()
        bridge = DiscoveryBridge(
            config,
            identity,
            _hardware(_matrix(**overrides)),
            window,
            FakeView(urls),
            events,
            history=history,
            mqtt_client=mqtt_client,
            logger=mock_logger,
        )
        return bridge

    return _create


@pytest.fixture
def fake_device():
    with patch("touchkio.integration.device") as device:
        device.network_addresses.return_value = {"eth0": {"ipv4": ["192.168.1.20"], "ipv6": []}}
        device.primary_network_address.return_value = "192.168.1.20"
        device.up_time_minutes.return_value = 125.0
        device.memory_size_gib.return_value = 7.87
        device.memory_usage_percent.return_value = 23.4
        device.processor_usage_percent.return_value = 5.0
        device.processor_temperature.return_value = 48.3
        device.check_package_upgrades.return_value = []
        device.parse_package_upgrades.return_value = []
        yield device


def _published(bridge):
    return {call.args[0]: call.args[1] for call in bridge.mqtt.publish.call_args_list}


async def _register(bridge):
    with patch("touchkio.integration.fetch_latest_release", AsyncMock(return_value=None)):
        await bridge.register()


class TestParseCommand:
    @pytest.mark.parametrize(
        "kind,payload,expected",
        [
            (CommandKind.VOLUME, "40", 40),
            (CommandKind.DISPLAY_BRIGHTNESS, "79.6", 80),
            (CommandKind.THEME, "Dark", "dark"),
            (CommandKind.KIOSK_STATUS, "Maximized", "Maximized"),
            (CommandKind.PAGE_URL, " http://ha.local/b ", "http://ha.local/b"),
        ],
    )
    def test_valid_payloads(self, kind, payload, expected):
        assert parse_command(kind, payload) == Command(kind, expected)

    @pytest.mark.parametrize(
        "kind,payload",
        [
            (CommandKind.VOLUME, "loud"),
            (CommandKind.THEME, "sepia"),
            (CommandKind.PAGE_URL, "   "),
        ],
    )
    def test_invalid_payloads(self, kind, payload):
        assert parse_command(kind, payload) is None

    def test_install_payload_must_match_configured_mode(self):
        assert parse_command(CommandKind.INSTALL_APP, "update") == Command(CommandKind.INSTALL_APP, "update")
        assert parse_command(CommandKind.INSTALL_APP, "update early", "update early") == Command(
            CommandKind.INSTALL_APP, "update early"
        )
        assert parse_command(CommandKind.INSTALL_APP, "update early") is None
        assert parse_command(CommandKind.INSTALL_APP, "update; touch /tmp/x") is None
        assert parse_command(CommandKind.INSTALL_APP, "$(reboot)", "update early") is None


def test_format_heartbeat_drops_fractions():
    assert format_heartbeat(datetime(2025, 3, 4, 5, 6, 7, 891011)) == "2025-03-04T05:06:07"


def test_truncate_summary():
    assert truncate_summary("short") == "short"
    long = "x" * 300
    assert truncate_summary(long) == "x" * 250 + "..."


class TestRegistration:
    @pytest.mark.anyio
    async def test_unsupported_capabilities_are_retracted(self, bridge_factory, fake_device):
        bridge = bridge_factory(audio_volume=False, keyboard_visibility=False, battery_level=False)

        await _register(bridge)
        published = _published(bridge)

        assert published["homeassistant/number/rpi_B2C3D4/volume/config"] == ""
        assert published["homeassistant/switch/rpi_B2C3D4/keyboard/config"] == ""
        assert published["homeassistant/sensor/rpi_B2C3D4/battery_level/config"] == ""
        # Single web url: no page selector
        assert published["homeassistant/number/rpi_B2C3D4/page_number/config"] == ""
        light = json.loads(published["homeassistant/light/rpi_B2C3D4/display/config"])
        assert light["brightness_command_topic"] == f"{ROOT}/display/brightness/set"
        assert light["device"]["identifiers"]

    @pytest.mark.anyio
    async def test_retracted_entities_have_no_routes(self, bridge_factory, fake_device):
        bridge = bridge_factory(audio_volume=False, display_brightness=False)

        await _register(bridge)

        subscribed = [call.args[0] for call in bridge.mqtt.subscribe.call_args_list]
        assert f"{ROOT}/volume/set" not in subscribed
        assert f"{ROOT}/display/brightness/set" not in subscribed
        assert f"{ROOT}/display/power/set" in subscribed
        assert bridge.resolve(f"{ROOT}/volume/set", "40") is None
        light = json.loads(_published(bridge)["homeassistant/light/rpi_B2C3D4/display/config"])
        assert light["supported_color_modes"] == ["onoff"]

    @pytest.mark.anyio
    async def test_reconnect_does_not_resubscribe(self, bridge_factory, fake_device):
        bridge = bridge_factory()

        await _register(bridge)
        first = bridge.mqtt.subscribe.call_count
        await _register(bridge)

        assert first > 0
        assert bridge.mqtt.subscribe.call_count == first
        assert bridge.initialized

    @pytest.mark.anyio
    async def test_initial_states_are_published(self, bridge_factory, fake_device):
        bridge = bridge_factory(urls=("http://ha.local/a", "http://ha.local/b"))

        await _register(bridge)
        published = _published(bridge)

        assert published[f"{ROOT}/kiosk/state"] == "Fullscreen"
        assert published[f"{ROOT}/theme/state"] == "Dark"
        assert published[f"{ROOT}/display/power/state"] == "ON"
        assert published[f"{ROOT}/display/brightness/state"] == "80"
        assert published[f"{ROOT}/volume/state"] == "40"
        assert published[f"{ROOT}/page_number/state"] == "1"
        assert published[f"{ROOT}/page_zoom/state"] == "125"
        assert published[f"{ROOT}/network_address/state"] == "192.168.1.20"
        assert published[f"{ROOT}/motion/state"] == "OFF"
        assert published[f"{ROOT}/version/state"] == "1.4.0"
        assert json.loads(published[f"{ROOT}/model/attributes"])["displayStatus"] is True
        # Nothing captured yet
        assert f"{ROOT}/screenshot/state" not in published


class TestDispatch:
    @pytest.mark.anyio
    async def test_exact_topic_routes_to_one_mutator(self, bridge_factory, fake_device):
        bridge = bridge_factory()
        await _register(bridge)
        hardware = bridge.hardware

        command = bridge.resolve(f"{ROOT}/volume/set", "55")
        assert command == Command(CommandKind.VOLUME, 55)
        await bridge.dispatch(command)

        hardware.set_audio_volume.assert_awaited_once_with(55)
        hardware.set_display_status.assert_not_awaited()
        hardware.set_display_brightness.assert_not_awaited()
        hardware.set_keyboard_visibility.assert_not_awaited()

    @pytest.mark.anyio
    async def test_unknown_or_prefixed_topics_are_ignored(self, bridge_factory, fake_device):
        bridge = bridge_factory()
        await _register(bridge)

        assert bridge.resolve(f"{ROOT}/volume/set/extra", "55") is None
        assert bridge.resolve(f"{ROOT}/volume", "55") is None
        assert bridge.resolve("touchkio/rpi_OTHER/volume/set", "55") is None

    @pytest.mark.anyio
    async def test_install_accepts_only_configured_payload(self, bridge_factory, fake_device):
        bridge = bridge_factory()
        await _register(bridge)

        assert bridge.resolve(f"{ROOT}/app/install", "update") == Command(CommandKind.INSTALL_APP, "update")
        assert bridge.resolve(f"{ROOT}/app/install", "update; touch /tmp/x") is None
        assert bridge.resolve(f"{ROOT}/app/install", "update early") is None

    @pytest.mark.anyio
    async def test_handle_message_spawns_dispatch(self, bridge_factory, fake_device):
        bridge = bridge_factory()
        await _register(bridge)

        bridge.handle_message(f"{ROOT}/display/brightness/set", "30")
        await asyncio.gather(*bridge._tasks)

        bridge.hardware.set_display_brightness.assert_awaited_once_with(30)

    @pytest.mark.anyio
    async def test_failed_mutator_skips_state_refresh(self, bridge_factory, mock_logger):
        bridge = bridge_factory()
        bridge.hardware.set_audio_volume.return_value = CommandResult(ok=False, error="Invalid volume")

        await bridge.dispatch(Command(CommandKind.VOLUME, 150))

        bridge.hardware.get_audio_volume.assert_not_awaited()
        mock_logger.warning.assert_called_with("[integration] Command Failed: %s", "Invalid volume")

    @pytest.mark.anyio
    async def test_kiosk_status_turns_display_on_first(self, bridge_factory):
        bridge = bridge_factory()

        await bridge.dispatch(Command(CommandKind.KIOSK_STATUS, "Maximized"))

        bridge.hardware.set_display_status.assert_awaited_once_with("ON")
        bridge.window.set_status.assert_awaited_once_with("Maximized")

    @pytest.mark.anyio
    async def test_refresh_emits_reload(self, bridge_factory):
        bridge = bridge_factory()
        handler = Mock()
        bridge.events.on(KioskEvent.RELOAD_VIEW, handler)

        await bridge.dispatch(Command(CommandKind.REFRESH, "PRESS"))

        handler.assert_called_once_with()

    @pytest.mark.anyio
    async def test_page_number_updates_view(self, bridge_factory):
        bridge = bridge_factory(urls=("http://ha.local/a", "http://ha.local/b"))
        handler = Mock()
        bridge.events.on(KioskEvent.UPDATE_VIEW, handler)

        await bridge.dispatch(Command(CommandKind.PAGE_NUMBER, 2))
        await bridge.dispatch(Command(CommandKind.PAGE_NUMBER, 3))

        assert bridge.view.active_page == 2
        handler.assert_called_once_with()

    @pytest.mark.anyio
    async def test_install_reports_progress(self, bridge_factory):
        bridge = bridge_factory()
        progress = Mock()
        bridge.events.on(KioskEvent.UPDATE_APP, progress)

        async def _install(url, mode, on_progress):
            on_progress(50, None)
            return 0

        bridge.hardware.install_update.side_effect = _install
        await bridge.dispatch(Command(CommandKind.INSTALL_APP, "update"))

        progress.assert_called_once_with(50)
        assert bridge.hardware.install_update.await_args.args[:2] == (bridge.config.app.install_url, "update")


class TestStateUpdates:
    def test_null_values_are_not_published(self, bridge_factory):
        bridge = bridge_factory()

        assert bridge.publish_state("volume", None) is False
        assert bridge.publish_state(None, 40) is False
        assert bridge.publish_attributes("volume", None) is False
        bridge.mqtt.publish.assert_not_called()

    def test_long_page_url_is_not_published(self, bridge_factory):
        bridge = bridge_factory()
        bridge.view.url = "http://ha.local/" + "x" * 300

        bridge.update_page_url()

        bridge.mqtt.publish.assert_not_called()

    def test_single_page_has_no_page_number(self, bridge_factory):
        bridge = bridge_factory()
        bridge.update_page_number()
        bridge.mqtt.publish.assert_not_called()

    def test_update_app_truncates_summary(self, bridge_factory):
        bridge = bridge_factory()
        bridge.latest_release = ReleaseInfo(
            title="TouchKio", version="1.5.0", summary="y" * 400, url="https://example.invalid/r"
        )

        bridge.update_app(40)

        payload = json.loads(_published(bridge)[f"{ROOT}/app/version/state"])
        assert payload["latest_version"] == "1.5.0"
        assert payload["installed_version"] == "1.4.0"
        assert payload["release_summary"] == "y" * 250 + "..."
        assert payload["update_percentage"] == 40
        assert payload["in_progress"] is True

    def test_update_app_without_release_publishes_nothing(self, bridge_factory):
        bridge = bridge_factory()
        bridge.update_app()
        bridge.mqtt.publish.assert_not_called()

    def test_errors_sensor_reads_log_history(self, bridge_factory):
        history = Mock()
        history.error_count.return_value = 2
        history.history_by_minute.return_value = {"2025-01-01T10:00": [{"ERROR": "boom"}]}
        bridge = bridge_factory(history=history)

        bridge.update_errors()

        published = _published(bridge)
        assert published[f"{ROOT}/errors/state"] == "2"
        assert json.loads(published[f"{ROOT}/errors/attributes"]) == {"2025-01-01T10:00": [{"ERROR": "boom"}]}

    @pytest.mark.anyio
    async def test_motion_clears_after_quiet_period(self, bridge_factory):
        bridge = bridge_factory()
        motion_topic = f"{ROOT}/motion/state"

        with patch("touchkio.integration.MOTION_CLEAR_SECONDS", 0.01):
            bridge.update_motion(True)
            bridge.update_motion(True)
            await asyncio.sleep(0.05)

        states = [call.args[1] for call in bridge.mqtt.publish.call_args_list if call.args[0] == motion_topic]
        assert states == ["ON", "OFF"]


class TestLifecycle:
    def test_start_without_broker_is_a_noop(self, make_kiosk_config, bridge_factory):
        bridge = bridge_factory()
        bridge.config = make_kiosk_config(mqtt_host=None)

        assert bridge.start() is False
        bridge.mqtt.connect.assert_not_called()

    @pytest.mark.anyio
    async def test_start_and_stop(self, bridge_factory):
        bridge = bridge_factory()

        assert bridge.start() is True
        bridge.mqtt.connect.assert_called_once()
        await bridge.stop()

        bridge.mqtt.disconnect.assert_called_once_with()
        assert bridge._tier_tasks == []
