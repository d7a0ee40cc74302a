"""TouchKio process lifecycle.

Wires the capability probe, hardware layer, kiosk view, window status
machine, state poller and discovery bridge together, and owns the exit
codes: 0 on a normal stop, 1 on a configuration error, an unsupported host
or a second running instance.
"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import logging
import os
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from touchkio import service
from touchkio.config import ConfigError, KioskConfig, load_config
from touchkio.device import DeviceIdentity
from touchkio.events import EventBus, KioskEvent
from touchkio.hardware import Hardware
from touchkio.integration import DiscoveryBridge
from touchkio.kiosk import ChromiumKiosk, DevToolsError
from touchkio.logs import LogHistory, configure_logging
from touchkio.poller import StatePoller
from touchkio.probe import CapabilityProbe, UnsupportedSystemError
from touchkio.window import WindowStatus, WindowStatusMachine

LOGGER = logging.getLogger("touchkio.app")

SHUTDOWN_DRAIN_SECONDS = 2.0


class InstanceLockError(RuntimeError):
    """Raised when another kiosk process already holds the instance lock."""


class InstanceLock:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")  # noqa: SIM115 - held for the process lifetime
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            handle.close()
            raise InstanceLockError("already running") from exc
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        with contextlib.suppress(OSError):
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        handle.close()

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.release()


class TouchKioApp:
    def __init__(self, config: KioskConfig, history: LogHistory | None = None) -> None:
        self.config = config
        self.history = history
        self.events = EventBus()
        self.hardware: Hardware | None = None
        self.kiosk: ChromiumKiosk | None = None
        self.window: WindowStatusMachine | None = None
        self.poller: StatePoller | None = None
        self.bridge: DiscoveryBridge | None = None
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        self._stop_event.set()

    async def wait(self) -> None:
        await self._stop_event.wait()

    async def start(self) -> None:
        """Bring every component up.

        Raises:
            UnsupportedSystemError: The host is not a compatible Linux system.
        """
        config = self.config
        probe = CapabilityProbe(
            config.app.name,
            config.app.cache_dir,
            release_build=config.app.is_release_build,
        ).run()

        self.hardware = Hardware(probe, self.events)
        await self.hardware.start_monitors()
        if self.hardware.support.display_status:
            await self.hardware.set_display_status("ON")
        self.poller = StatePoller(self.hardware, self.events)
        self.poller.start()

        self.kiosk = ChromiumKiosk(config.web, config.devtools, self.events)
        self.window = WindowStatusMachine(self.kiosk, self.events, on_terminate=self.request_stop)
        self.kiosk.set_window_listener(self.window.notify_changed)
        await self.kiosk.start()
        try:
            if config.app.debug:
                await self.window.refresh()
            else:
                await self.window.set_status(WindowStatus.FULLSCREEN)
        except DevToolsError as exc:
            LOGGER.warning("[app] Kiosk window not available yet: %s", exc)

        identity = await asyncio.to_thread(DeviceIdentity.detect)
        self.bridge = DiscoveryBridge(
            config,
            identity,
            self.hardware,
            self.window,
            self.kiosk,
            self.events,
            history=self.history,
        )
        if self.bridge.start():
            self._forward_errors()
        service.ready(f"{config.app.title} {identity.device_name}")

    def _forward_errors(self) -> None:
        if self.history is None:
            return
        loop = asyncio.get_running_loop()

        def _listener() -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self.events.emit, KioskEvent.CONSOLE_LOG)

        self.history.set_listener(_listener)

    async def shutdown(self) -> None:
        service.stopping()
        if self.history is not None:
            self.history.set_listener(None)
        if self.window is not None:
            await self.window.terminate()
            self.window.close()
        if self.bridge is not None:
            await self.bridge.stop()
        if self.poller is not None:
            await self.poller.stop()
        if self.kiosk is not None:
            await self.kiosk.stop()
        if self.hardware is not None:
            await self.hardware.stop_monitors()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.events.drain(), SHUTDOWN_DRAIN_SECONDS)


async def main(argv: Sequence[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.error("[app] %s", exc)
        return 1

    history = configure_logging(config.log_level, config.app.log_path)
    LOGGER.info("[app] %s-v%s", config.app.name, config.app.version)
    LOGGER.info("[app] Arguments: %s", config.describe())

    lock = InstanceLock(config.app.cache_dir / f"{config.app.name}.lock")
    try:
        lock.acquire()
    except InstanceLockError:
        LOGGER.error("[app] %s is already running", config.app.title)
        return 1

    app = TouchKioApp(config, history)
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("[app] Received signal %s, shutting down", signum)
        app.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        try:
            await app.start()
        except UnsupportedSystemError as exc:
            LOGGER.error("[app] %s", exc)
            await app.shutdown()
            return 1
        await app.wait()
        await app.shutdown()
    finally:
        lock.release()
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
