"""One-shot hardware capability probe.

Runs once at startup in a fixed order: session detection, per-capability
path and command discovery, privilege check, then aggregation into an
immutable ``CapabilityMatrix``. A missing control silently degrades to
``False``; only an incompatible host (non-Linux, or missing sysfs classes)
is fatal.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path

from touchkio import executor
from touchkio.utils import parse_int, strip_nul

LOGGER = logging.getLogger("touchkio.probe")

REQUIRED_SYSFS_CLASSES = ("drm", "backlight", "power_supply", "thermal")
BRIGHTNESS_CACHE_FILENAME = "Brightness.vcp"
DDC_BRIGHTNESS_RE = re.compile(r"VCP 10 C (\d+) (\d+)")
DESKTOP_ENV_VARS = ("XDG_CURRENT_DESKTOP", "XDG_DESKTOP_SESSION", "DESKTOP_SESSION")
ANY_DESKTOP = "*"


class UnsupportedSystemError(RuntimeError):
    """Raised when the host lacks the basic sysfs layout the kiosk relies on."""


@dataclass(frozen=True)
class CommandCandidate:
    command: str
    desktops: tuple[str, ...]

    def applies_to(self, desktop: str) -> bool:
        return any(name == ANY_DESKTOP or name in desktop for name in self.desktops)


# Table order is the priority order: the first installed, applicable command wins.
DISPLAY_STATUS_COMMANDS: dict[str, tuple[CommandCandidate, ...]] = {
    "wayland": (
        CommandCandidate("wlopm", ("labwc", "wayfire", "unknown")),
        CommandCandidate("kscreen-doctor", ("kde", "plasma", "unknown")),
    ),
    "x11": (CommandCandidate("xset", (ANY_DESKTOP,)),),
}

DISPLAY_BRIGHTNESS_COMMANDS: dict[str, tuple[CommandCandidate, ...]] = {
    "wayland": (CommandCandidate("ddcutil", (ANY_DESKTOP,)),),
    "x11": (CommandCandidate("ddcutil", (ANY_DESKTOP,)),),
}


@dataclass(frozen=True)
class SessionInfo:
    user: str | None
    type: str | None
    desktop: str


@dataclass
class ControlPath:
    """Backing resources of one controllable capability.

    ``cached_values`` holds the last raw readings keyed by reading name
    (``"power"``, ``"connection"``, ``"brightness"``) and is written only by
    the poller.
    """

    capability: str
    backing_path: Path | None = None
    backing_command: str | None = None
    max_value: int | None = None
    cached_values: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CapabilityMatrix:
    battery_level: bool = False
    display_status: bool = False
    display_brightness: bool = False
    keyboard_visibility: bool = False
    audio_volume: bool = False
    sudo_rights: bool = False
    app_update: bool = False

    def as_dict(self) -> dict[str, bool]:
        """Return the matrix keyed by the published capability names."""
        return {_camel(key): value for key, value in asdict(self).items()}


@dataclass(frozen=True)
class ProbeResult:
    session: SessionInfo
    matrix: CapabilityMatrix
    battery: ControlPath
    display_status: ControlPath
    display_brightness: ControlPath
    audio_device: str | None
    brightness_cache: Path


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def session_desktop(env: Mapping[str, str]) -> str:
    names = [env[name] for name in DESKTOP_ENV_VARS if env.get(name)]
    return (":".join(names) or "unknown").lower()


def resolve_command(
    table: Mapping[str, tuple[CommandCandidate, ...]],
    session: SessionInfo,
) -> str | None:
    """Pick the first installed command applicable to the session, in table order."""
    for candidate in table.get(session.type or "", ()):
        if candidate.applies_to(session.desktop) and executor.command_exists(candidate.command):
            return candidate.command
    return None


class CapabilityProbe:
    def __init__(
        self,
        app_name: str,
        cache_dir: Path,
        *,
        release_build: bool = False,
        sysfs_root: Path = Path("/sys"),
        platform: str | None = None,
        env: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.app_name = app_name
        self.cache_dir = cache_dir
        self.release_build = release_build
        self.sysfs_root = sysfs_root
        self.platform = platform or sys.platform
        self.env = env if env is not None else os.environ
        self._logger = logger or LOGGER
        self._sudo: bool | None = None

    def _class_dir(self, name: str) -> Path:
        return self.sysfs_root / "class" / name

    def check_compatibility(self) -> None:
        if not self.platform.startswith("linux"):
            raise UnsupportedSystemError(f"Operating system '{self.platform}' is not supported")
        missing = [name for name in REQUIRED_SYSFS_CLASSES if not self._class_dir(name).is_dir()]
        if missing:
            paths = ", ".join(str(self._class_dir(name)) for name in missing)
            raise UnsupportedSystemError(f"Operating system is not supported, missing {paths}")

    def has_sudo(self) -> bool:
        if self._sudo is None:
            self._sudo = executor.sudo_rights()
        return self._sudo

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def detect_session(self) -> SessionInfo:
        try:
            user: str | None = getpass.getuser()
        except (KeyError, OSError):
            user = None
        return SessionInfo(user=user, type=self._session_type(user), desktop=session_desktop(self.env))

    def _session_type(self, user: str | None) -> str | None:
        if not user or not executor.command_exists("loginctl"):
            return None
        display = executor.run_sync("loginctl", ["show-user", user, "-p", "Display", "--value"])
        if not display.ok or not display.output:
            return None
        session_type = executor.run_sync("loginctl", ["show-session", display.output, "-p", "Type", "--value"])
        return session_type.value or None

    # ------------------------------------------------------------------
    # Sysfs scans
    # ------------------------------------------------------------------

    def _scan(self, class_name: str, marker: str) -> list[Path]:
        directory = self._class_dir(class_name)
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return []
        return [entry for entry in entries if (entry / marker).exists()]

    def find_battery_path(self) -> Path | None:
        found = self._scan("power_supply", "capacity")
        return found[0] if found else None

    def find_display_status_path(self) -> Path | None:
        for card in self._scan("drm", "status"):
            if _read_text(card / "status") == "connected":
                return card
        return None

    def find_backlight_path(self) -> Path | None:
        found = self._scan("backlight", "brightness")
        return found[0] if found else None

    # ------------------------------------------------------------------
    # Brightness
    # ------------------------------------------------------------------

    def _ddc_supported(self) -> bool:
        result = executor.run_sync("sudo", ["ddcutil", "capabilities"], stderr_fails=False)
        return result.ok and "Feature: 10" in result.output

    def find_brightness_command(self, session: SessionInfo, brightness_cache: Path) -> str | None:
        if not self.has_sudo():
            return None
        command = resolve_command(DISPLAY_BRIGHTNESS_COMMANDS, session)
        if command == "ddcutil" and self._ddc_supported():
            try:
                brightness_cache.parent.mkdir(parents=True, exist_ok=True)
                brightness_cache.write_text("", encoding="utf-8")
            except OSError as exc:
                self._logger.warning("[probe] Cannot create %s: %s", brightness_cache, exc)
            return command
        return None

    def find_brightness_max(self, control: ControlPath) -> int | None:
        if control.backing_command == "ddcutil":
            result = executor.run_sync("sudo", ["ddcutil", "getvcp", "10", "--brief"], stderr_fails=False)
            match = DDC_BRIGHTNESS_RE.search(result.output) if result.ok else None
            return int(match.group(2)) if match else None
        if control.backing_path is not None:
            return parse_int(_read_text(control.backing_path / "max_brightness"), None)
        return None

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def find_audio_device(self) -> str | None:
        if not executor.command_exists("pactl"):
            return None
        result = executor.run_sync("pactl", ["get-default-sink"])
        if not result.ok or not result.output or "auto_null" in result.output:
            return None
        return result.output

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    def run(self) -> ProbeResult:
        """Probe the host and return the capability matrix and control paths.

        Raises:
            UnsupportedSystemError: The host is not a compatible Linux system.
        """
        self.check_compatibility()
        session = self.detect_session()
        brightness_cache = self.cache_dir / BRIGHTNESS_CACHE_FILENAME

        battery = ControlPath("batteryLevel", backing_path=self.find_battery_path())
        status = ControlPath(
            "displayStatus",
            backing_path=self.find_display_status_path(),
            backing_command=resolve_command(DISPLAY_STATUS_COMMANDS, session),
        )
        brightness_command = self.find_brightness_command(session, brightness_cache)
        brightness = ControlPath(
            "displayBrightness",
            backing_path=None if brightness_command else self.find_backlight_path(),
            backing_command=brightness_command,
        )
        brightness.max_value = self.find_brightness_max(brightness)
        audio_device = self.find_audio_device()

        sudo = self.has_sudo()
        status_ready = status.backing_path is not None and status.backing_command is not None
        brightness_ready = bool(brightness.max_value) and (
            brightness.backing_path is not None or brightness.backing_command is not None
        )
        matrix = CapabilityMatrix(
            battery_level=battery.backing_path is not None,
            display_status=status_ready,
            display_brightness=sudo and status_ready and brightness_ready,
            keyboard_visibility=executor.process_runs("squeekboard"),
            audio_volume=audio_device is not None,
            sudo_rights=sudo,
            app_update=executor.service_runs(self.app_name) and sudo and self.release_build,
        )

        self._logger.info("[probe] Supported: %s", json.dumps(matrix.as_dict(), indent=2))
        self._logger.info(
            "[probe] User: %s, Session: %s, Desktop: %s", session.user, session.type, session.desktop
        )
        return ProbeResult(
            session=session,
            matrix=matrix,
            battery=battery,
            display_status=status,
            display_brightness=brightness,
            audio_device=audio_device,
            brightness_cache=brightness_cache,
        )


def _read_text(path: Path) -> str | None:
    try:
        return strip_nul(path.read_text(encoding="utf-8"))
    except OSError:
        return None
