"""Kiosk view collaborator.

``ChromiumKiosk`` drives a Chromium instance started with
``--remote-debugging-port`` through the DevTools protocol: page targets are
listed from the ``/json`` endpoint and commands are sent over the target's
websocket. It implements both the view interface the bridge uses (pages,
zoom, theme, url, screenshot) and the ``WindowSurface`` the window status
machine drives.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import websocket

from touchkio.config import DevToolsConfig, WebConfig
from touchkio.events import EventBus, KioskEvent
from touchkio.window import WindowFlags

LOGGER = logging.getLogger("touchkio.kiosk")

WATCH_INTERVAL_SECONDS = 1.0
SCREENSHOT_INTERVAL_SECONDS = 60.0
ACTIVITY_RESUME_SECONDS = 30.0
MIN_ZOOM_PERCENT = 25
MAX_ZOOM_PERCENT = 400

# Installed into every page so pointer activity can be polled without a persistent session
_POINTER_SCRIPT = """
(() => {
  if (window.__touchkio) { return; }
  window.__touchkio = { x: null, y: null, t: 0 };
  const record = (event) => {
    const point = event.touches && event.touches.length ? event.touches[0] : event;
    window.__touchkio = { x: Math.round(point.clientX), y: Math.round(point.clientY), t: Date.now() };
  };
  for (const type of ["pointermove", "pointerdown", "touchstart"]) {
    window.addEventListener(type, record, { passive: true, capture: true });
  }
})();
"""
_POINTER_QUERY = "JSON.stringify(window.__touchkio || null)"


class DevToolsError(RuntimeError):
    """Raised when a DevTools endpoint or command fails."""


@dataclass
class PointerActivityTracker:
    """Last pointer position and time, fed by the kiosk view."""

    position: tuple[int, int] | None = None
    last_move: float = field(default_factory=time.time)

    def record(self, x: int | None, y: int | None, timestamp: float | None = None) -> float:
        """Store a pointer sample and return the idle seconds it ended."""
        now = timestamp if timestamp is not None else time.time()
        idle = max(0.0, now - self.last_move)
        if x is not None and y is not None:
            self.position = (x, y)
        self.last_move = now
        return idle

    def idle_minutes(self, now: float | None = None) -> float:
        current = now if now is not None else time.time()
        return max(0.0, current - self.last_move) / 60

    def attributes(self) -> dict[str, Any]:
        if self.position is None:
            return {}
        return {"x": self.position[0], "y": self.position[1]}


class KioskView(Protocol):
    tracker: PointerActivityTracker

    @property
    def page_count(self) -> int: ...

    @property
    def active_page(self) -> int: ...

    def select_page(self, number: int) -> bool: ...

    def get_zoom(self) -> int: ...

    def set_zoom(self, percent: int) -> bool: ...

    def get_theme(self) -> str: ...

    async def set_theme(self, theme: str) -> None: ...

    def get_active_url(self) -> str | None: ...

    async def load_url(self, url: str) -> bool: ...

    @property
    def screenshot(self) -> str | None: ...


def pick_primary_target(pages: list[dict[str, Any]]) -> dict[str, Any] | None:
    for page in pages:
        url = page.get("url") or ""
        if url not in ("", "about:blank", "chrome://newtab/"):
            return page
    return pages[0] if pages else None


class DevToolsClient:
    """Blocking request/response helper around DevTools websockets."""

    def __init__(self, config: DevToolsConfig) -> None:
        self.config = config
        self._ids = itertools.count(1)

    def _fetch_json(self, url: str) -> Any:
        try:
            with urllib.request.urlopen(url, timeout=self.config.timeout) as resp:  # nosec B310 - local endpoint
                return json.load(resp)
        except (urllib.error.URLError, json.JSONDecodeError, OSError) as exc:
            raise DevToolsError(f"cannot reach DevTools endpoint {url}: {exc}") from exc

    def page_targets(self) -> list[dict[str, Any]]:
        payload = self._fetch_json(self.config.discovery_url)
        if not isinstance(payload, list):
            raise DevToolsError(f"unexpected DevTools target list: {payload!r}")
        return [item for item in payload if isinstance(item, dict) and item.get("type") == "page"]

    def browser_ws_url(self) -> str:
        base = self.config.discovery_url.rstrip("/")
        payload = self._fetch_json(f"{base}/version")
        url = payload.get("webSocketDebuggerUrl") if isinstance(payload, dict) else None
        if not url:
            raise DevToolsError("browser endpoint is missing webSocketDebuggerUrl")
        return url

    def primary_target(self) -> dict[str, Any]:
        target = pick_primary_target(self.page_targets())
        if not target or not target.get("webSocketDebuggerUrl"):
            raise DevToolsError("no Chromium page targets available")
        return target

    def send(self, ws_url: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            ws = websocket.create_connection(ws_url, timeout=self.config.timeout)
        except Exception as exc:
            raise DevToolsError(f"failed to open DevTools websocket: {exc}") from exc
        message_id = next(self._ids)
        try:
            ws.send(json.dumps({"id": message_id, "method": method, "params": params or {}}))
            while True:
                reply = json.loads(ws.recv())
                if reply.get("id") != message_id:
                    continue
                if "error" in reply:
                    raise DevToolsError(f"{method} failed: {reply['error']}")
                return reply.get("result", {})
        except DevToolsError:
            raise
        except Exception as exc:
            raise DevToolsError(f"{method} failed: {exc}") from exc
        finally:
            ws.close()

    def page_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.send(self.primary_target()["webSocketDebuggerUrl"], method, params)

    def browser_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.send(self.browser_ws_url(), method, params)


class ChromiumKiosk:
    def __init__(
        self,
        web: WebConfig,
        devtools: DevToolsConfig,
        events: EventBus,
        tracker: PointerActivityTracker | None = None,
        client: DevToolsClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.web = web
        self.events = events
        self.tracker = tracker or PointerActivityTracker()
        self.client = client or DevToolsClient(devtools)
        self._logger = logger or LOGGER
        self._urls = list(web.urls)
        self._active_page = 1
        self._zoom = round(web.zoom * 100)
        self._theme = web.theme
        self._active_url: str | None = None
        self._screenshot: str | None = None
        self._pointer_stamp = 0
        self._window_state: str | None = None
        self._window_listener: Callable[[], None] | None = None
        self._watch_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # DevTools plumbing
    # ------------------------------------------------------------------

    async def _page(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.page_command, method, params)

    async def _browser(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await asyncio.to_thread(self.client.browser_command, method, params)

    async def _window(self) -> tuple[int, str]:
        target = await asyncio.to_thread(self.client.primary_target)
        result = await self._browser("Browser.getWindowForTarget", {"targetId": target.get("id")})
        return int(result["windowId"]), str(result.get("bounds", {}).get("windowState", "normal"))

    async def _set_window_state(self, state: str) -> None:
        window_id, _current = await self._window()
        await self._browser("Browser.setWindowBounds", {"windowId": window_id, "bounds": {"windowState": state}})

    # ------------------------------------------------------------------
    # WindowSurface
    # ------------------------------------------------------------------

    def set_window_listener(self, listener: Callable[[], None]) -> None:
        self._window_listener = listener

    async def window_flags(self) -> WindowFlags:
        _window_id, state = await self._window()
        self._window_state = state
        return WindowFlags(
            fullscreen=state == "fullscreen",
            minimized=state == "minimized",
            maximized=state == "maximized",
        )

    async def restore(self) -> None:
        _window_id, state = await self._window()
        if state == "minimized":
            await self._set_window_state("normal")

    async def maximize(self) -> None:
        await self._set_window_state("maximized")

    async def unmaximize(self) -> None:
        _window_id, state = await self._window()
        if state == "maximized":
            await self._set_window_state("normal")

    async def minimize(self) -> None:
        await self._set_window_state("minimized")

    async def set_fullscreen(self, enabled: bool) -> None:
        _window_id, state = await self._window()
        if enabled and state != "fullscreen":
            await self._set_window_state("fullscreen")
        elif not enabled and state == "fullscreen":
            await self._set_window_state("normal")

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    @property
    def page_count(self) -> int:
        return len(self._urls)

    @property
    def active_page(self) -> int:
        return self._active_page

    @property
    def screenshot(self) -> str | None:
        return self._screenshot

    def select_page(self, number: int) -> bool:
        if not 1 <= number <= len(self._urls):
            self._logger.warning("[kiosk] Page %s out of range 1-%s", number, len(self._urls))
            return False
        self._active_page = number
        return True

    def get_zoom(self) -> int:
        return self._zoom

    def set_zoom(self, percent: int) -> bool:
        if not MIN_ZOOM_PERCENT <= percent <= MAX_ZOOM_PERCENT:
            self._logger.warning("[kiosk] Zoom %s%% out of range", percent)
            return False
        self._zoom = percent
        return True

    def get_theme(self) -> str:
        return self._theme

    async def set_theme(self, theme: str) -> None:
        self._theme = theme
        await self._apply_theme()
        self.events.emit(KioskEvent.UPDATE_PAGE)

    def get_active_url(self) -> str | None:
        url = self._active_url
        if not url or url.startswith("data:"):
            return self._urls[self._active_page - 1]
        return url

    async def load_url(self, url: str) -> bool:
        try:
            await self._page("Page.navigate", {"url": url})
        except DevToolsError as exc:
            self._logger.warning("[kiosk] navigate failed: %s", exc)
            return False
        self._logger.info("[kiosk] navigate -> %s", url)
        return True

    async def _apply_theme(self) -> None:
        try:
            await self._page(
                "Emulation.setEmulatedMedia",
                {"features": [{"name": "prefers-color-scheme", "value": self._theme}]},
            )
        except DevToolsError as exc:
            self._logger.warning("[kiosk] theme update failed: %s", exc)

    async def _apply_zoom(self) -> None:
        try:
            await self._page("Emulation.setPageScaleFactor", {"pageScaleFactor": self._zoom / 100})
        except DevToolsError as exc:
            self._logger.warning("[kiosk] zoom update failed: %s", exc)

    async def _install_pointer_script(self) -> None:
        try:
            await self._page("Page.addScriptToEvaluateOnNewDocument", {"source": _POINTER_SCRIPT})
            await self._page("Runtime.evaluate", {"expression": _POINTER_SCRIPT})
        except DevToolsError as exc:
            self._logger.warning("[kiosk] pointer tracking unavailable: %s", exc)

    async def update_view(self) -> None:
        """Show the active page with the current zoom and theme."""
        await self.load_url(self._urls[self._active_page - 1])
        await self._apply_zoom()
        await self._apply_theme()
        await self._install_pointer_script()
        self.events.emit(KioskEvent.UPDATE_PAGE)

    async def reload(self) -> None:
        try:
            await self._page("Page.reload", {"ignoreCache": True})
        except DevToolsError as exc:
            self._logger.warning("[kiosk] reload failed: %s", exc)

    async def capture_screenshot(self) -> str | None:
        try:
            result = await self._page("Page.captureScreenshot", {"format": "png"})
        except DevToolsError as exc:
            self._logger.debug("[kiosk] screenshot failed: %s", exc)
            return None
        self._screenshot = result.get("data")
        self.events.emit(KioskEvent.UPDATE_SCREENSHOT)
        return self._screenshot

    # ------------------------------------------------------------------
    # Watcher
    # ------------------------------------------------------------------

    async def _poll_pointer(self) -> None:
        result = await self._page("Runtime.evaluate", {"expression": _POINTER_QUERY, "returnByValue": True})
        raw = result.get("result", {}).get("value")
        sample = json.loads(raw) if isinstance(raw, str) else None
        if not sample or not sample.get("t") or sample["t"] == self._pointer_stamp:
            return
        self._pointer_stamp = sample["t"]
        idle = self.tracker.record(sample.get("x"), sample.get("y"), sample["t"] / 1000)
        self.events.emit(KioskEvent.UPDATE_MOTION, True)
        if idle > ACTIVITY_RESUME_SECONDS:
            self._logger.info("[kiosk] Update Last Active")
            self.events.emit(KioskEvent.UPDATE_DISPLAY)

    async def _poll_target(self) -> None:
        target = await asyncio.to_thread(self.client.primary_target)
        url = target.get("url")
        if url != self._active_url:
            self._active_url = url
            self.events.emit(KioskEvent.UPDATE_PAGE)

    async def _poll_window(self) -> None:
        previous = self._window_state
        await self.window_flags()
        if previous is not None and previous != self._window_state and self._window_listener:
            self._window_listener()

    async def _watch(self) -> None:
        last_screenshot = 0.0
        while True:
            try:
                await self._poll_target()
                await self._poll_pointer()
                await self._poll_window()
                if time.monotonic() - last_screenshot >= SCREENSHOT_INTERVAL_SECONDS:
                    last_screenshot = time.monotonic()
                    await self.capture_screenshot()
            except asyncio.CancelledError:
                raise
            except (DevToolsError, ValueError, KeyError) as exc:
                self._logger.debug("[kiosk] watch tick failed: %s", exc)
            except Exception as exc:
                self._logger.error("[kiosk] watch tick failed: %s", exc, exc_info=True)
            await asyncio.sleep(WATCH_INTERVAL_SECONDS)

    async def start(self) -> None:
        self.events.on(KioskEvent.RELOAD_VIEW, self.reload)
        self.events.on(KioskEvent.UPDATE_VIEW, self.update_view)
        await self.update_view()
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch())

    async def stop(self) -> None:
        task = self._watch_task
        self._watch_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
