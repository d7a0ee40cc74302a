"""One-second display state poller.

Re-reads the sysfs counters behind display power and brightness and raises
``KioskEvent.UPDATE_DISPLAY`` only when a reading actually changed. The
loop is sequential: tick N+1 is scheduled only after tick N finished, so a
stalled read never overlaps the next one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path

from touchkio.events import EventBus, KioskEvent
from touchkio.hardware import Hardware, read_sysfs
from touchkio.probe import ControlPath

LOGGER = logging.getLogger("touchkio.poller")

POLL_INTERVAL_SECONDS = 1.0


@dataclass(frozen=True)
class PolledValue:
    control: ControlPath
    key: str
    path: Path


def apply_reading(cache: dict[str, str], key: str, value: str | None) -> bool:
    """Store ``value`` under ``key`` and report whether it counts as a change.

    Empty or unreadable values are stored but never count as a change.
    """
    previous = cache.get(key)
    if value is None:
        cache.pop(key, None)
        return False
    cache[key] = value
    return bool(value) and value != previous


class StatePoller:
    def __init__(
        self,
        hardware: Hardware,
        events: EventBus,
        interval: float = POLL_INTERVAL_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.hardware = hardware
        self.events = events
        self.interval = interval
        self._logger = logger or LOGGER
        self._task: asyncio.Task[None] | None = None

    def status_readings(self) -> list[PolledValue]:
        control = self.hardware.probe.display_status
        if not self.hardware.support.display_status or control.backing_path is None:
            return []
        return [
            PolledValue(control, "power", control.backing_path / "dpms"),
            PolledValue(control, "connection", control.backing_path / "status"),
        ]

    def brightness_readings(self) -> list[PolledValue]:
        control = self.hardware.probe.display_brightness
        if not self.hardware.support.display_brightness:
            return []
        if control.backing_command:
            return [PolledValue(control, "brightness", self.hardware.probe.brightness_cache)]
        if control.backing_path is not None:
            return [PolledValue(control, "brightness", control.backing_path / "brightness")]
        return []

    async def _read_all(self, readings: list[PolledValue]) -> list[str | None]:
        return [await asyncio.to_thread(read_sysfs, reading.path) for reading in readings]

    async def tick(self) -> bool:
        """Poll once; returns True when a display change event was raised."""
        status_readings = self.status_readings()
        brightness_readings = self.brightness_readings()
        status_values = await self._read_all(status_readings)
        brightness_values = await self._read_all(brightness_readings)

        # Diff and cache without yielding so no other callback sees a half-applied update
        status_changed = False
        for reading, value in zip(status_readings, status_values):
            status_changed |= apply_reading(reading.control.cached_values, reading.key, value)
        brightness_changed = False
        for reading, value in zip(brightness_readings, brightness_values):
            brightness_changed |= apply_reading(reading.control.cached_values, reading.key, value)

        if status_changed:
            self.events.emit(KioskEvent.UPDATE_DISPLAY)
            self._logger.info("[poller] Update Display Status: %s", await self.hardware.get_display_status())
        if brightness_changed:
            self.events.emit(KioskEvent.UPDATE_DISPLAY)
            self._logger.info(
                "[poller] Update Display Brightness: %s", await self.hardware.get_display_brightness()
            )
        return status_changed or brightness_changed

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("[poller] Poll failed: %s", exc, exc_info=True)
            await asyncio.sleep(self.interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
