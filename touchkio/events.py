"""Domain events shared by the hardware layer, the kiosk view and the bridge."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

LOGGER = logging.getLogger("touchkio.events")

Handler = Callable[..., Any]


class KioskEvent(StrEnum):
    UPDATE_APP = "updateApp"
    UPDATE_STATUS = "updateStatus"
    UPDATE_DISPLAY = "updateDisplay"
    UPDATE_VOLUME = "updateVolume"
    UPDATE_KEYBOARD = "updateKeyboard"
    UPDATE_PAGE = "updatePage"
    UPDATE_MOTION = "updateMotion"
    UPDATE_SCREENSHOT = "updateScreenshot"
    CONSOLE_LOG = "consoleLog"
    RELOAD_VIEW = "reloadView"
    UPDATE_VIEW = "updateView"


class EventBus:
    """Synchronous fan-out of domain events.

    Plain handlers run inline in registration order. Coroutine handlers are
    scheduled as tasks on the running loop so ``emit`` never blocks.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._handlers: dict[KioskEvent, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or LOGGER

    def on(self, event: KioskEvent, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: KioskEvent, handler: Handler) -> None:
        with contextlib.suppress(ValueError):
            self._handlers[event].remove(handler)

    def handlers(self, event: KioskEvent) -> list[Handler]:
        return list(self._handlers.get(event, ()))

    def emit(self, event: KioskEvent, *args: Any) -> None:
        for handler in self.handlers(event):
            try:
                result = handler(*args)
            except Exception as exc:
                self._logger.error("[events] Handler for %s failed: %s", event, exc, exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._track(event, result)

    def _track(self, event: KioskEvent, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self._logger.error("[events] Async handler for %s failed: %s", event, exc)

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers (used at shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class Debouncer:
    """Collapse bursts of triggers into one delayed call (last trigger wins)."""

    def __init__(self, delay: float, action: Callable[[], Any], logger: logging.Logger | None = None) -> None:
        self.delay = delay
        self._action = action
        self._task: asyncio.Task[None] | None = None
        self._logger = logger or LOGGER

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._fire())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        try:
            result = self._action()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            self._logger.error("[events] Debounced action failed: %s", exc, exc_info=True)
