"""Tests for touchkio/device.py."""

from __future__ import annotations

from unittest.mock import patch

from touchkio import device
from touchkio.device import DeviceIdentity
from touchkio.executor import CommandResult


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_detect_raspberry_pi(tmp_path):
    sysfs = tmp_path / "sys"
    etc = tmp_path / "etc"
    base = sysfs / "firmware" / "devicetree" / "base"
    _write(base / "model", "Raspberry Pi 5 Model B Rev 1.0\0")
    _write(base / "serial-number", "10000000a1b2c3d4\0")
    _write(etc / "machine-id", "0123456789abcdef\n")

    with patch("touchkio.device.socket.gethostname", return_value="kiosk"):
        identity = DeviceIdentity.detect(sysfs, etc)

    assert identity.model == "Raspberry Pi 5 Model B Rev 1.0"
    assert identity.vendor == "Raspberry Pi Ltd"
    assert identity.serial_number == "10000000a1b2c3d4"
    assert identity.node_id == "rpi_B2C3D4"
    assert identity.device_name == "Kiosk"


def test_detect_generic_host_falls_back_to_machine_id(tmp_path):
    sysfs = tmp_path / "sys"
    etc = tmp_path / "etc"
    _write(sysfs / "class" / "dmi" / "id" / "product_name", "NUC11TNHi5\n")
    _write(sysfs / "class" / "dmi" / "id" / "board_vendor", "Intel Corporation\n")
    _write(etc / "machine-id", "0123456789abcdef\n")

    identity = DeviceIdentity.detect(sysfs, etc)

    assert identity.model == "NUC11TNHi5"
    assert identity.vendor == "Intel Corporation"
    assert identity.serial_number == "abcdef"
    assert identity.node_id == "rpi_ABCDEF"


def test_detect_without_any_sources(tmp_path):
    identity = DeviceIdentity.detect(tmp_path / "sys", tmp_path / "etc")
    assert identity.model == "Generic"
    assert identity.vendor == "Generic"
    assert identity.serial_number == "123456"


def test_device_block():
    identity = DeviceIdentity("Raspberry Pi 4", "Raspberry Pi Ltd", "abc123", "mid", "kiosk")
    block = identity.device_block("TouchKio", "touchkio", "1.4.0", "https://github.com/leukipp/touchkio")
    assert block == {
        "name": "TouchKio Kiosk",
        "model": "Raspberry Pi 4",
        "manufacturer": "Raspberry Pi Ltd",
        "serial_number": "abc123",
        "identifiers": ["rpi_ABC123"],
        "sw_version": "touchkio-v1.4.0",
        "configuration_url": "https://github.com/leukipp/touchkio",
    }


def test_primary_network_address():
    addresses = {"Eth0": {"IPv4": ["192.168.1.20"], "IPv6": ["fe80::1"]}, "Wlan0": {"IPv4": ["10.0.0.5"]}}
    assert device.primary_network_address(addresses) == "192.168.1.20"
    assert device.primary_network_address({}) is None


def test_processor_temperature_from_thermal_zone(fake_sysfs):
    assert device.processor_temperature(fake_sysfs / "class" / "thermal") == 48.312


def test_parse_package_upgrades():
    rows = [
        "chromium/stable 131.0.6778.85-1~deb12u1 arm64 [upgradable from: 130.0.6723.116-1~deb12u1]",
        "",
        "libssl3/stable-security 3.0.15-1~deb12u1 arm64 [upgradable from: 3.0.14-1~deb12u2]",
    ]
    assert device.parse_package_upgrades(rows) == [
        {"chromium/stable": "131.0.6778.85-1~deb12u1"},
        {"libssl3/stable-security": "3.0.15-1~deb12u1"},
    ]


def test_check_package_upgrades_drops_header():
    output = "Listing...\nchromium/stable 131.0 arm64 [upgradable from: 130.0]"
    with (
        patch("touchkio.device.executor.command_exists", return_value=True),
        patch("touchkio.device.executor.run_sync", return_value=CommandResult(ok=True, output=output)),
    ):
        assert device.check_package_upgrades() == ["chromium/stable 131.0 arm64 [upgradable from: 130.0]"]


def test_check_package_upgrades_without_apt():
    with patch("touchkio.device.executor.command_exists", return_value=False):
        assert device.check_package_upgrades() == []
