"""Shared test fixtures and configuration for the TouchKio test suite.

This module provides reusable fixtures for common test scenarios including:
- Fake sysfs trees for the capability probe and the poller
- Probe results with selectable capability matrices
- MQTT client mocking
- Kiosk configuration objects
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest
from touchkio.config import AppConfig, DevToolsConfig, KioskConfig, MqttConfig, WebConfig
from touchkio.probe import CapabilityMatrix, ControlPath, ProbeResult, SessionInfo

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Sysfs Fixtures
# ============================================================================


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def fake_sysfs(tmp_path):
    """Create a sysfs tree with a connected HDMI output, a backlight and a battery.

    Returns the root directory (the equivalent of ``/sys``).
    """
    root = tmp_path / "sys"
    classes = root / "class"
    _write(classes / "drm" / "card1" / "uevent", "")
    _write(classes / "drm" / "card1-HDMI-A-1" / "status", "connected\n")
    _write(classes / "drm" / "card1-HDMI-A-1" / "dpms", "On\n")
    _write(classes / "drm" / "card1-HDMI-A-2" / "status", "disconnected\n")
    _write(classes / "backlight" / "10-0045" / "brightness", "128\n")
    _write(classes / "backlight" / "10-0045" / "max_brightness", "255\n")
    _write(classes / "power_supply" / "BAT0" / "capacity", "87\n")
    _write(classes / "power_supply" / "AC" / "online", "1\n")
    _write(classes / "thermal" / "thermal_zone0" / "type", "cpu-thermal\n")
    _write(classes / "thermal" / "thermal_zone0" / "temp", "48312\n")
    return root


# ============================================================================
# Probe Fixtures
# ============================================================================


@pytest.fixture
def make_probe_result(tmp_path, fake_sysfs):
    """Factory fixture for probe results.

    Usage:
        probe = make_probe_result(display_status=True, audio_volume=False)

    Capabilities default to supported, backed by the ``fake_sysfs`` tree, with
    ``wlopm`` as the display status command.
    """

    def _create(**overrides: Any) -> ProbeResult:
        flags = {
            "battery_level": True,
            "display_status": True,
            "display_brightness": True,
            "keyboard_visibility": True,
            "audio_volume": True,
            "sudo_rights": True,
            "app_update": True,
        }
        brightness_command = overrides.pop("brightness_command", None)
        flags.update(overrides)
        classes = fake_sysfs / "class"
        return ProbeResult(
            session=SessionInfo(user="pi", type="wayland", desktop="labwc:wlroots"),
            matrix=CapabilityMatrix(**flags),
            battery=ControlPath("batteryLevel", backing_path=classes / "power_supply" / "BAT0"),
            display_status=ControlPath(
                "displayStatus",
                backing_path=classes / "drm" / "card1-HDMI-A-1",
                backing_command="wlopm",
            ),
            display_brightness=ControlPath(
                "displayBrightness",
                backing_path=None if brightness_command else classes / "backlight" / "10-0045",
                backing_command=brightness_command,
                max_value=255,
            ),
            audio_device="alsa_output.platform-bcm2835_audio.stereo-fallback",
            brightness_cache=tmp_path / "cache" / "Brightness.vcp",
        )

    return _create


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def make_kiosk_config(tmp_path):
    """Factory fixture for kiosk configurations with custom web urls."""

    def _create(
        urls: tuple[str, ...] = ("http://homeassistant.local:8123/dashboard",),
        early: bool = False,
        mqtt_host: str | None = "broker.local",
    ) -> KioskConfig:
        return KioskConfig(
            web=WebConfig(urls=urls, zoom=1.25, theme="dark", widget=True),
            mqtt=MqttConfig(
                url=f"mqtt://{mqtt_host}:1883" if mqtt_host else None,
                host=mqtt_host,
                port=1883,
                tls_enabled=False,
                username="kiosk",
                password="secret",
                discovery_prefix="homeassistant",
                verify_certificates=True,
            ),
            devtools=DevToolsConfig(discovery_url="http://localhost:9222/json", timeout=1.0),
            app=AppConfig(
                name="touchkio",
                title="TouchKio",
                version="1.4.0",
                homepage="https://github.com/leukipp/touchkio",
                releases_url="https://api.github.com/repos/leukipp/touchkio/releases",
                install_url="https://raw.githubusercontent.com/leukipp/touchkio/main/install.sh",
                config_dir=tmp_path / "config",
                cache_dir=tmp_path / "cache",
                debug=False,
                early=early,
                build={"id": "abc123", "maker": "deb"},
            ),
            log_level="INFO",
        )

    return _create


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client.

    Provides common MQTT client methods as mocks for testing
    MQTT interactions without a real broker.
    """
    client = Mock(spec=mqtt.Client)
    client.connect = Mock()
    client.disconnect = Mock()
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.message_callback_add = Mock()

    # Mock MQTTMessageInfo return value to match paho-mqtt's Client.publish() API
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)

    client.loop_start = Mock()
    client.loop_stop = Mock()
    client.is_connected = Mock(return_value=True)
    return client
