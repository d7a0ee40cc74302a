"""Device identity and system sensors."""

from __future__ import annotations

import logging
import re
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil

from touchkio import executor
from touchkio.utils import node_id_from_serial, strip_nul

LOGGER = logging.getLogger("touchkio.device")

FALLBACK_NAME = "Generic"
FALLBACK_SERIAL = "123456"
CPU_THERMAL_TYPES = ("cpu-thermal", "x86_pkg_temp", "k10temp", "acpitz", "cpu")
_BRACKETS_RE = re.compile(r"\s*\[.*?\]\s*")


def _read_first(paths: list[Path]) -> str | None:
    for path in paths:
        if path.exists():
            try:
                return strip_nul(path.read_text(encoding="utf-8", errors="ignore")) or None
            except OSError as exc:
                LOGGER.debug("[device] Read %s failed: %s", path, exc)
                return None
    return None


@dataclass(frozen=True)
class DeviceIdentity:
    model: str
    vendor: str
    serial_number: str
    machine_id: str
    host_name: str

    @property
    def node_id(self) -> str:
        return node_id_from_serial(self.serial_number)

    @property
    def device_name(self) -> str:
        return self.host_name[:1].upper() + self.host_name[1:]

    @classmethod
    def detect(cls, sysfs_root: Path = Path("/sys"), etc_root: Path = Path("/etc")) -> DeviceIdentity:
        model = _read_first(
            [
                sysfs_root / "firmware" / "devicetree" / "base" / "model",
                sysfs_root / "class" / "dmi" / "id" / "product_name",
            ]
        ) or FALLBACK_NAME
        vendor = _read_first([sysfs_root / "class" / "dmi" / "id" / "board_vendor"])
        if vendor is None:
            vendor = "Raspberry Pi Ltd" if "Raspberry Pi" in model else FALLBACK_NAME
        machine_id = _read_first([etc_root / "machine-id"]) or FALLBACK_SERIAL
        serial_number = _read_first([sysfs_root / "firmware" / "devicetree" / "base" / "serial-number"])
        return cls(
            model=model,
            vendor=vendor,
            serial_number=serial_number or machine_id[-6:],
            machine_id=machine_id,
            host_name=socket.gethostname(),
        )

    def device_block(self, title: str, app_name: str, version: str, homepage: str) -> dict[str, Any]:
        """Device metadata attached to every discovery config."""
        return {
            "name": f"{title} {self.device_name}",
            "model": self.model,
            "manufacturer": self.vendor,
            "serial_number": self.serial_number,
            "identifiers": [self.node_id],
            "sw_version": f"{app_name}-v{version}",
            "configuration_url": homepage,
        }


def network_addresses() -> dict[str, dict[str, list[str]]]:
    """Non-loopback addresses grouped by interface and family."""
    families = {socket.AF_INET: "IPv4", socket.AF_INET6: "IPv6"}
    addresses: dict[str, dict[str, list[str]]] = {}
    for name, entries in psutil.net_if_addrs().items():
        for entry in entries:
            family = families.get(entry.family)
            if family is None or not entry.address:
                continue
            if entry.address.startswith("127.") or entry.address == "::1":
                continue
            label = name[:1].upper() + name[1:]
            addresses.setdefault(label, {}).setdefault(family, []).append(entry.address)
    return addresses


def primary_network_address(addresses: dict[str, dict[str, list[str]]]) -> str | None:
    for families in addresses.values():
        for values in families.values():
            if values:
                return values[0]
        return None
    return None


def up_time_minutes() -> float:
    return (time.time() - psutil.boot_time()) / 60


def memory_size_gib() -> float:
    return psutil.virtual_memory().total / 1024**3


def memory_usage_percent() -> float:
    memory = psutil.virtual_memory()
    return (memory.total - memory.available) / memory.total * 100


def processor_usage_percent() -> float:
    """Five minute load average relative to the core count."""
    return psutil.getloadavg()[1] / (psutil.cpu_count() or 1) * 100


def processor_temperature(thermal_root: Path = Path("/sys/class/thermal")) -> float | None:
    try:
        zones = sorted(thermal_root.iterdir())
    except OSError:
        zones = []
    for zone in zones:
        zone_type = _read_first([zone / "type"])
        if zone_type not in CPU_THERMAL_TYPES:
            continue
        temp = _read_first([zone / "temp"])
        if temp:
            try:
                return float(temp) / 1000
            except ValueError:
                continue
    sensors = getattr(psutil, "sensors_temperatures", None)
    if sensors is None:
        return None
    try:
        readings = sensors()
    except OSError:
        return None
    for key in ("cpu_thermal", "coretemp", "k10temp", "soc_thermal"):
        entries = readings.get(key)
        if entries:
            return float(entries[0].current)
    return None


def parse_package_upgrades(lines: list[str]) -> list[dict[str, str]]:
    """Turn ``apt list --upgradable`` rows into ``[{name: version}]``."""
    packages: list[dict[str, str]] = []
    for line in lines:
        cleaned = _BRACKETS_RE.sub("", line).strip()
        if not cleaned:
            continue
        parts = cleaned.split(None, 1)
        name = parts[0]
        version = parts[1].split()[0] if len(parts) > 1 else ""
        packages.append({name: version})
    return packages


def check_package_upgrades() -> list[str]:
    """Raw upgradable package rows (header line removed)."""
    if not executor.command_exists("apt"):
        return []
    result = executor.run_sync("apt", ["list", "--upgradable"], stderr_fails=False, timeout=120)
    if not result.ok or not result.output:
        return []
    lines = result.output.splitlines()
    return [line for line in lines[1:] if line.strip()]
