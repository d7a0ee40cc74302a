"""Hardware controls for the kiosk host.

Readers and mutators for every probed capability: display power and
brightness, audio volume, on-screen keyboard visibility, battery level, and
system power actions. Mutators return a ``CommandResult``; an unsupported
capability or an invalid argument is reported as a failed result instead of
raising.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path

from touchkio import executor
from touchkio.dbus import PropertyMonitor, dbus_call
from touchkio.events import EventBus, KioskEvent
from touchkio.executor import CommandResult, CommandStream, ProgressCallback
from touchkio.probe import DDC_BRIGHTNESS_RE, CapabilityMatrix, ProbeResult
from touchkio.utils import clamp, parse_int, strip_nul

LOGGER = logging.getLogger("touchkio.hardware")

POWER_STATES = ("ON", "OFF")
KEYBOARD_OBJECT_PATH = "/sm/puri/OSK0"
KEYBOARD_PROPERTY = "Visible"
_VOLUME_RE = re.compile(r"/\s*(\d+)%")
_SINK_CHANGED = "'change' on sink"
_NOT_SUPPORTED = "Not supported"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def brightness_to_percent(raw: int, max_value: int) -> int:
    """Scale a raw backlight value to 1-100."""
    return clamp(_round_half_up(raw / (max_value or 1) * 100), 1, 100)


def percent_to_brightness(percent: int, max_value: int) -> int:
    """Scale 1-100 back to the raw backlight range ``[0, max_value]``.

    The result never reads back above ``percent``, so on coarse backlights
    1% may map to raw 0.
    """
    raw = clamp(_round_half_up(percent / 100 * max_value), 0, max_value)
    while raw > 0 and brightness_to_percent(raw, max_value) > percent:
        raw -= 1
    return raw


def parse_display_status(command: str | None, output: str | None) -> str | None:
    """Interpret the output of the display status command as ``ON``/``OFF``."""
    if output is None:
        return None
    if command in {"wlopm", "kscreen-doctor"}:
        first_line = output.splitlines()[0] if output else ""
        tokens = first_line.split(" ")
        return tokens[-1].upper() if tokens and tokens[-1] else None
    if command == "xset":
        return "ON" if "Monitor is On" in output else "OFF"
    return None


def parse_volume(mute_output: str | None, volume_output: str | None) -> int | None:
    if not mute_output or not volume_output:
        return None
    match = _VOLUME_RE.search(volume_output)
    if not match:
        return None
    return clamp(0 if "yes" in mute_output else int(match.group(1)), 0, 100)


def read_sysfs(path: Path) -> str | None:
    try:
        return strip_nul(path.read_text(encoding="utf-8"))
    except OSError as exc:
        LOGGER.debug("[hardware] Read %s failed: %s", path, exc)
        return None


def _rejected(reason: str) -> CommandResult:
    return CommandResult(ok=False, error=reason)


class Hardware:
    def __init__(
        self,
        probe: ProbeResult,
        events: EventBus,
        logger: logging.Logger | None = None,
    ) -> None:
        self.probe = probe
        self.events = events
        self._logger = logger or LOGGER
        self._keyboard_visible = False
        self._audio_stream: CommandStream | None = None
        self._keyboard_monitor = PropertyMonitor(
            KEYBOARD_OBJECT_PATH,
            KEYBOARD_PROPERTY,
            self._on_keyboard_property,
            cached_value=lambda: "true" if self._keyboard_visible else "false",
            logger=self._logger,
        )

    @property
    def support(self) -> CapabilityMatrix:
        return self.probe.matrix

    # ------------------------------------------------------------------
    # Display status
    # ------------------------------------------------------------------

    async def get_display_status(self) -> str | None:
        if not self.support.display_status:
            return None
        command = self.probe.display_status.backing_command
        if command == "wlopm":
            result = await executor.run_async("wlopm")
        elif command == "kscreen-doctor":
            result = await executor.run_async("kscreen-doctor", ["--dpms", "show"])
        elif command == "xset":
            result = await executor.run_async("xset", ["-q"])
        else:
            return None
        return parse_display_status(command, result.value)

    async def set_display_status(self, status: str) -> CommandResult:
        if not self.support.display_status:
            return _rejected(_NOT_SUPPORTED)
        if status not in POWER_STATES:
            self._logger.error("[hardware] Status must be 'ON' or 'OFF', got %r", status)
            return _rejected("Invalid status")
        state = status.lower()
        command = self.probe.display_status.backing_command
        if command == "wlopm":
            return await executor.run_async("wlopm", [f"--{state}", "*"])
        if command == "kscreen-doctor":
            return await executor.run_async("kscreen-doctor", ["--dpms", state])
        if command == "xset":
            return await executor.run_async("xset", ["dpms", "force", state])
        return _rejected(_NOT_SUPPORTED)

    # ------------------------------------------------------------------
    # Display brightness
    # ------------------------------------------------------------------

    @property
    def brightness_max(self) -> int:
        return self.probe.display_brightness.max_value or 1

    async def get_display_brightness(self) -> int | None:
        if not self.support.display_brightness:
            return None
        control = self.probe.display_brightness
        if control.backing_command == "ddcutil":
            result = await executor.run_async("sudo", ["ddcutil", "getvcp", "10", "--brief"], stderr_fails=False)
            match = DDC_BRIGHTNESS_RE.search(result.output) if result.ok else None
            return brightness_to_percent(int(match.group(1)), self.brightness_max) if match else None
        if control.backing_path is not None:
            raw = parse_int(read_sysfs(control.backing_path / "brightness"), None)
            return brightness_to_percent(raw, self.brightness_max) if raw is not None else None
        return None

    async def set_display_brightness(self, percent: int) -> CommandResult:
        if not self.support.display_brightness:
            return _rejected(_NOT_SUPPORTED)
        if isinstance(percent, bool) or not isinstance(percent, int) or not 1 <= percent <= 100:
            self._logger.error("[hardware] Brightness must be a number between 1 and 100, got %r", percent)
            return _rejected("Invalid brightness")
        control = self.probe.display_brightness
        raw = percent_to_brightness(percent, self.brightness_max)
        if control.backing_command == "ddcutil":
            result = await executor.run_async("sudo", ["ddcutil", "setvcp", "10", str(raw)])
            if result.ok:
                try:
                    self.probe.brightness_cache.write_text(str(raw), encoding="utf-8")
                except OSError as exc:
                    self._logger.warning("[hardware] Cannot update %s: %s", self.probe.brightness_cache, exc)
            return result
        if control.backing_path is not None:
            return await executor.run_async("sudo", ["tee", str(control.backing_path / "brightness")], input_data=str(raw))
        return _rejected(_NOT_SUPPORTED)

    # ------------------------------------------------------------------
    # Audio volume
    # ------------------------------------------------------------------

    async def get_audio_volume(self) -> int | None:
        if not self.support.audio_volume:
            return None
        mute = await executor.run_async("pactl", ["get-sink-mute", "@DEFAULT_SINK@"])
        volume = await executor.run_async("pactl", ["get-sink-volume", "@DEFAULT_SINK@"])
        return parse_volume(mute.value, volume.value)

    async def set_audio_volume(self, volume: int) -> CommandResult:
        if not self.support.audio_volume:
            return _rejected(_NOT_SUPPORTED)
        if isinstance(volume, bool) or not isinstance(volume, int) or not 0 <= volume <= 100:
            self._logger.error("[hardware] Volume must be a number between 0 and 100, got %r", volume)
            return _rejected("Invalid volume")
        await executor.run_async("pactl", ["set-sink-mute", "@DEFAULT_SINK@", "1" if volume == 0 else "0"])
        return await executor.run_async("pactl", ["set-sink-volume", "@DEFAULT_SINK@", f"{volume}%"])

    def _on_audio_output(self, stdout: str | None, stderr: str | None) -> None:
        if stderr or not stdout:
            return
        if _SINK_CHANGED in stdout:
            self._logger.info("[hardware] Update Audio Volume")
            self.events.emit(KioskEvent.UPDATE_VOLUME)

    # ------------------------------------------------------------------
    # Keyboard visibility
    # ------------------------------------------------------------------

    def get_keyboard_visibility(self) -> str | None:
        if not self.support.keyboard_visibility:
            return None
        return "ON" if self._keyboard_visible else "OFF"

    async def set_keyboard_visibility(self, visibility: str) -> CommandResult:
        if not self.support.keyboard_visibility:
            return _rejected(_NOT_SUPPORTED)
        if visibility not in POWER_STATES:
            self._logger.error("[hardware] Visibility must be 'ON' or 'OFF', got %r", visibility)
            return _rejected("Invalid visibility")
        visible = visibility == "ON"
        self._keyboard_visible = visible
        return await dbus_call(KEYBOARD_OBJECT_PATH, "SetVisible", [f"boolean:{str(visible).lower()}"])

    def _on_keyboard_property(self, prop: dict[str, str] | None, error: str | None) -> None:
        if not prop or error:
            return
        self._keyboard_visible = prop.get(KEYBOARD_PROPERTY) == "true"
        self._logger.info("[hardware] Update Keyboard Visibility: %s", self.get_keyboard_visibility())
        self.events.emit(KioskEvent.UPDATE_KEYBOARD)

    # ------------------------------------------------------------------
    # Battery and system power
    # ------------------------------------------------------------------

    def get_battery_level(self) -> float | None:
        path = self.probe.battery.backing_path
        if not self.support.battery_level or path is None:
            return None
        capacity = read_sysfs(path / "capacity")
        try:
            return float(capacity) if capacity else None
        except ValueError:
            return None

    async def shutdown_system(self) -> CommandResult:
        if not self.support.sudo_rights:
            return _rejected(_NOT_SUPPORTED)
        return await executor.run_async("sudo", ["shutdown", "-h", "now"])

    async def reboot_system(self) -> CommandResult:
        if not self.support.sudo_rights:
            return _rejected(_NOT_SUPPORTED)
        return await executor.run_async("sudo", ["reboot"])

    async def install_update(self, install_url: str, mode: str, on_progress: ProgressCallback) -> int | None:
        """Run the upstream install script (``update`` or ``update early``)."""
        if not self.support.app_update:
            on_progress(None, -1)
            return None
        script = f"bash <(wget -qO- {install_url}) {mode}"
        return await executor.run_script("bash", ["-c", script], on_progress)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_monitors(self) -> None:
        """Start the event-driven watchers for audio and keyboard changes."""
        if self.support.audio_volume:
            self._audio_stream = CommandStream("pactl", ["subscribe"], self._on_audio_output, self._logger)
            await self._audio_stream.start()
        if self.support.keyboard_visibility:
            result = await self.set_keyboard_visibility("OFF")
            if result.ok:
                await self._keyboard_monitor.start()
            else:
                self._logger.warning("[hardware] Keyboard monitor not started: %s", result.error)

    async def stop_monitors(self) -> None:
        if self._audio_stream is not None:
            await self._audio_stream.stop()
            self._audio_stream = None
        await self._keyboard_monitor.stop()
