"""Kiosk window status state machine.

The window surface only reliably processes one state-bit change at a time,
so every transition is a fixed sequence of primitives with a settle delay
between them. Each primitive is followed by a change notification; bursts
of notifications collapse into one status recomputation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from touchkio.events import Debouncer, EventBus, KioskEvent

LOGGER = logging.getLogger("touchkio.window")

SETTLE_DELAY_SECONDS = 0.1
DEBOUNCE_DELAY_SECONDS = 0.2


class WindowStatus(StrEnum):
    FRAMED = "Framed"
    FULLSCREEN = "Fullscreen"
    MAXIMIZED = "Maximized"
    MINIMIZED = "Minimized"
    TERMINATED = "Terminated"


@dataclass(frozen=True)
class WindowFlags:
    fullscreen: bool = False
    minimized: bool = False
    maximized: bool = False


class WindowSurface(Protocol):
    async def window_flags(self) -> WindowFlags: ...

    async def restore(self) -> None: ...

    async def maximize(self) -> None: ...

    async def unmaximize(self) -> None: ...

    async def minimize(self) -> None: ...

    async def set_fullscreen(self, enabled: bool) -> None: ...


# Primitive order matters: restore first, then the size bit, then fullscreen last
# (or fullscreen off before maximize/minimize).
TRANSITIONS: dict[WindowStatus, tuple[tuple[str, tuple[Any, ...]], ...]] = {
    WindowStatus.FULLSCREEN: (("restore", ()), ("unmaximize", ()), ("set_fullscreen", (True,))),
    WindowStatus.MAXIMIZED: (("restore", ()), ("set_fullscreen", (False,)), ("maximize", ())),
    WindowStatus.MINIMIZED: (("restore", ()), ("set_fullscreen", (False,)), ("minimize", ())),
    WindowStatus.FRAMED: (("restore", ()), ("unmaximize", ()), ("set_fullscreen", (False,))),
}


def compute_status(flags: WindowFlags) -> WindowStatus:
    """Priority: fullscreen > minimized > maximized > framed."""
    if flags.fullscreen:
        return WindowStatus.FULLSCREEN
    if flags.minimized:
        return WindowStatus.MINIMIZED
    if flags.maximized:
        return WindowStatus.MAXIMIZED
    return WindowStatus.FRAMED


def parse_status(value: str) -> WindowStatus | None:
    cleaned = value.strip().lower()
    for status in WindowStatus:
        if status.value.lower() == cleaned:
            return status
    return None


class WindowStatusMachine:
    def __init__(
        self,
        surface: WindowSurface,
        events: EventBus,
        on_terminate: Callable[[], Awaitable[None] | None],
        settle_delay: float = SETTLE_DELAY_SECONDS,
        debounce_delay: float = DEBOUNCE_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.surface = surface
        self.events = events
        self.settle_delay = settle_delay
        self._on_terminate = on_terminate
        self._logger = logger or LOGGER
        self._status = WindowStatus.FRAMED
        self._transition_lock = asyncio.Lock()
        self._debouncer = Debouncer(debounce_delay, self.refresh, self._logger)

    @property
    def status(self) -> WindowStatus:
        """Last computed status (what the bridge publishes)."""
        return self._status

    @property
    def terminated(self) -> bool:
        return self._status is WindowStatus.TERMINATED

    async def get_status(self) -> WindowStatus:
        if self.terminated:
            return self._status
        return compute_status(await self.surface.window_flags())

    def notify_changed(self) -> None:
        """Called for every window property change; recomputation is debounced."""
        if not self.terminated:
            self._debouncer.trigger()

    async def refresh(self) -> WindowStatus:
        if self.terminated:
            return self._status
        self._status = compute_status(await self.surface.window_flags())
        self._logger.info("[window] Update Kiosk Status: %s", self._status)
        self.events.emit(KioskEvent.UPDATE_STATUS)
        return self._status

    async def set_status(self, target: WindowStatus | str) -> WindowStatus:
        status = target if isinstance(target, WindowStatus) else parse_status(target)
        if status is None:
            self._logger.warning("[window] Unknown kiosk status %r", target)
            return self._status
        if self.terminated:
            self._logger.warning("[window] Kiosk is terminating; ignoring %s", status)
            return self._status
        if status is WindowStatus.TERMINATED:
            await self.terminate()
            return self._status

        async with self._transition_lock:
            steps = TRANSITIONS[status]
            for index, (primitive, args) in enumerate(steps):
                await getattr(self.surface, primitive)(*args)
                self.notify_changed()
                if index < len(steps) - 1:
                    await asyncio.sleep(self.settle_delay)
        return status

    async def terminate(self) -> None:
        if self.terminated:
            return
        self._debouncer.cancel()
        self._status = WindowStatus.TERMINATED
        self._logger.info("[window] Update Kiosk Status: %s", self._status)
        self.events.emit(KioskEvent.UPDATE_STATUS)
        result = self._on_terminate()
        if inspect.isawaitable(result):
            await result

    def close(self) -> None:
        self._debouncer.cancel()
