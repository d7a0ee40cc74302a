"""Home Assistant discovery bridge.

Maps every capability onto retained config/state/attributes topics under
``{app}/{node}/...``, retracts the configs of unsupported capabilities,
and routes incoming command topics to hardware and view mutators.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

import psutil

from touchkio import device
from touchkio.config import THEMES, KioskConfig
from touchkio.device import DeviceIdentity
from touchkio.discovery import (
    DiscoveryEntity,
    build_binary_sensor_entity,
    build_button_entity,
    build_image_entity,
    build_light_entity,
    build_number_entity,
    build_select_entity,
    build_sensor_entity,
    build_switch_entity,
    build_text_entity,
    build_update_entity,
)
from touchkio.events import EventBus, KioskEvent
from touchkio.executor import CommandResult
from touchkio.hardware import Hardware
from touchkio.kiosk import KioskView
from touchkio.logs import LogHistory
from touchkio.mqtt import KioskMqtt
from touchkio.probe import CapabilityMatrix
from touchkio.releases import ReleaseInfo, fetch_latest_release
from touchkio.utils import parse_int
from touchkio.window import WindowStatus, WindowStatusMachine

LOGGER = logging.getLogger("touchkio.integration")

FAST_TIER_SECONDS = 30
MEDIUM_TIER_SECONDS = 60
SLOW_TIER_SECONDS = 3600
MOTION_CLEAR_SECONDS = 5.0
SUMMARY_LIMIT = 250
PAGE_URL_LIMIT = 255
ZOOM_MIN = 25
ZOOM_MAX = 400


class CommandKind(StrEnum):
    INSTALL_APP = "install_app"
    SHUTDOWN = "shutdown"
    REBOOT = "reboot"
    REFRESH = "refresh"
    KIOSK_STATUS = "kiosk_status"
    THEME = "theme"
    DISPLAY_POWER = "display_power"
    DISPLAY_BRIGHTNESS = "display_brightness"
    VOLUME = "volume"
    KEYBOARD = "keyboard"
    PAGE_NUMBER = "page_number"
    PAGE_ZOOM = "page_zoom"
    PAGE_URL = "page_url"


_INT_COMMANDS = frozenset(
    {
        CommandKind.DISPLAY_BRIGHTNESS,
        CommandKind.VOLUME,
        CommandKind.PAGE_NUMBER,
        CommandKind.PAGE_ZOOM,
    }
)


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    payload: str | int


def parse_command(kind: CommandKind, payload: str, install_payload: str = "update") -> Command | None:
    """Parse a raw command payload for ``kind``; None means the message is ignored."""
    text = payload.strip()
    if kind in _INT_COMMANDS:
        value = parse_int(text, None)
        if value is None:
            try:
                value = round(float(text))
            except ValueError:
                return None
        return Command(kind, value)
    if kind is CommandKind.THEME:
        theme = text.lower()
        return Command(kind, theme) if theme in THEMES else None
    if kind is CommandKind.INSTALL_APP:
        return Command(kind, text) if text == install_payload else None
    if kind is CommandKind.PAGE_URL and not text:
        return None
    return Command(kind, text)


def format_heartbeat(now: datetime | None = None) -> str:
    """Local wall-clock time as ISO 8601 without fractions or offset."""
    local = now or datetime.now()
    return local.replace(microsecond=0, tzinfo=None).isoformat()


def truncate_summary(summary: str, limit: int = SUMMARY_LIMIT) -> str:
    return summary[:limit] + "..." if len(summary) > limit else summary


class DiscoveryBridge:
    def __init__(
        self,
        config: KioskConfig,
        identity: DeviceIdentity,
        hardware: Hardware,
        window: WindowStatusMachine,
        view: KioskView,
        events: EventBus,
        history: LogHistory | None = None,
        mqtt_client: KioskMqtt | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.identity = identity
        self.hardware = hardware
        self.window = window
        self.view = view
        self.events = events
        self.history = history
        self._logger = logger or LOGGER
        self.node = identity.node_id
        self.root = f"{config.app.name}/{self.node}"
        self.device = identity.device_block(
            config.app.title, config.app.name, config.app.version, config.app.homepage
        )
        self.mqtt = mqtt_client or KioskMqtt(
            config.mqtt,
            client_id=f"{config.app.name}-{self.node}",
            will_topic=f"{self.root}/kiosk/state",
            logger=logging.getLogger("touchkio.mqtt"),
        )
        self.latest_release: ReleaseInfo | None = None
        self._routes: dict[str, CommandKind] = {}
        self._handlers: dict[CommandKind, Callable[[Any], Awaitable[None]]] = {
            CommandKind.INSTALL_APP: self._install_app,
            CommandKind.SHUTDOWN: self._shutdown,
            CommandKind.REBOOT: self._reboot,
            CommandKind.REFRESH: self._refresh,
            CommandKind.KIOSK_STATUS: self._set_kiosk_status,
            CommandKind.THEME: self._set_theme,
            CommandKind.DISPLAY_POWER: self._set_display_power,
            CommandKind.DISPLAY_BRIGHTNESS: self._set_display_brightness,
            CommandKind.VOLUME: self._set_volume,
            CommandKind.KEYBOARD: self._set_keyboard,
            CommandKind.PAGE_NUMBER: self._set_page_number,
            CommandKind.PAGE_ZOOM: self._set_page_zoom,
            CommandKind.PAGE_URL: self._set_page_url,
        }
        self._subscribed = False
        self._events_wired = False
        self.initialized = False
        self._motion_detected: bool | None = None
        self._motion_timer: asyncio.TimerHandle | None = None
        self._tier_tasks: list[asyncio.Task[None]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Topics and publishing
    # ------------------------------------------------------------------

    @property
    def install_payload(self) -> str:
        return "update early" if self.config.app.early else "update"

    def topic(self, path: str, leaf: str = "state") -> str:
        return f"{self.root}/{path}/{leaf}"

    @property
    def support(self) -> CapabilityMatrix:
        return self.hardware.support

    def publish_config(self, entity: DiscoveryEntity) -> bool:
        topic = entity.config_topic(self.config.mqtt.discovery_prefix, self.node)
        self._logger.debug("[integration] publish config %s", entity.object_id)
        return self.mqtt.publish(topic, json.dumps(entity.config))

    def retract_config(self, entity: DiscoveryEntity) -> bool:
        topic = entity.config_topic(self.config.mqtt.discovery_prefix, self.node)
        self._logger.debug("[integration] remove config %s", entity.object_id)
        return self.mqtt.publish(topic, "")

    def publish_state(self, path: str | None, state: Any) -> bool:
        if path is None or state is None:
            return False
        return self.mqtt.publish(self.topic(path), f"{state}")

    def publish_attributes(self, path: str | None, attributes: Any) -> bool:
        if path is None or attributes is None:
            return False
        return self.mqtt.publish(self.topic(path, "attributes"), json.dumps(attributes, default=str))

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def _uid(self, object_id: str) -> str:
        return f"{self.node}_{object_id}"

    def entities(self) -> list[tuple[DiscoveryEntity, bool, dict[str, CommandKind]]]:
        """Every candidate entity with its support flag and command routes."""
        support = self.support
        dev = self.device
        page_count = self.view.page_count
        candidates: list[tuple[DiscoveryEntity, bool, dict[str, CommandKind]]] = []

        def add(
            platform: str,
            object_id: str,
            config: dict[str, Any],
            supported: bool = True,
            commands: dict[str, CommandKind] | None = None,
            state_topic: str | None = None,
        ) -> None:
            routes = commands or {}
            entity = DiscoveryEntity(
                platform=platform,
                object_id=object_id,
                config=config,
                state_topic=state_topic if state_topic is not None else config.get("stat_t"),
                command_topics=tuple(routes),
            )
            candidates.append((entity, supported, routes))

        # Controls
        install = self.topic("app", "install")
        add(
            "update",
            "app",
            build_update_entity(
                "App",
                self._uid("app"),
                install,
                self.topic("app/version"),
                self.install_payload,
                dev,
            ),
            support.app_update,
            {install: CommandKind.INSTALL_APP},
        )
        for object_id, name, icon, kind, supported in (
            ("shutdown", "Shutdown", "mdi:power", CommandKind.SHUTDOWN, support.sudo_rights),
            ("reboot", "Reboot", "mdi:restart", CommandKind.REBOOT, support.sudo_rights),
            ("refresh", "Refresh", "mdi:web-refresh", CommandKind.REFRESH, True),
        ):
            execute = self.topic(object_id, "execute")
            add(
                "button",
                object_id,
                build_button_entity(name, self._uid(object_id), execute, dev, icon=icon),
                supported,
                {execute: kind},
            )
        kiosk_set = self.topic("kiosk", "set")
        add(
            "select",
            "kiosk",
            build_select_entity(
                "Kiosk",
                self._uid("kiosk"),
                kiosk_set,
                self.topic("kiosk"),
                [status.value for status in WindowStatus],
                dev,
                icon="mdi:overscan",
            ),
            commands={kiosk_set: CommandKind.KIOSK_STATUS},
        )
        theme_set = self.topic("theme", "set")
        add(
            "select",
            "theme",
            build_select_entity(
                "Theme",
                self._uid("theme"),
                theme_set,
                self.topic("theme"),
                ["Light", "Dark"],
                dev,
                icon="mdi:compare",
            ),
            commands={theme_set: CommandKind.THEME},
        )
        power_set = self.topic("display/power", "set")
        display_routes = {power_set: CommandKind.DISPLAY_POWER}
        brightness_set = brightness_state = None
        if support.display_brightness:
            brightness_set = self.topic("display/brightness", "set")
            brightness_state = self.topic("display/brightness")
            display_routes[brightness_set] = CommandKind.DISPLAY_BRIGHTNESS
        add(
            "light",
            "display",
            build_light_entity(
                "Display",
                self._uid("display"),
                power_set,
                self.topic("display/power"),
                dev,
                brightness_command_topic=brightness_set,
                brightness_state_topic=brightness_state,
                icon="mdi:monitor-shimmer",
            ),
            support.display_status,
            display_routes,
        )
        volume_set = self.topic("volume", "set")
        add(
            "number",
            "volume",
            build_number_entity(
                "Volume",
                self._uid("volume"),
                volume_set,
                self.topic("volume"),
                dev,
                unit_of_measurement="%",
                icon="mdi:volume-high",
            ),
            support.audio_volume,
            {volume_set: CommandKind.VOLUME},
        )
        keyboard_set = self.topic("keyboard", "set")
        add(
            "switch",
            "keyboard",
            build_switch_entity(
                "Keyboard",
                self._uid("keyboard"),
                keyboard_set,
                self.topic("keyboard"),
                dev,
                icon="mdi:keyboard-close-outline",
            ),
            support.keyboard_visibility,
            {keyboard_set: CommandKind.KEYBOARD},
        )
        page_set = self.topic("page_number", "set")
        add(
            "number",
            "page_number",
            build_number_entity(
                "Page Number",
                self._uid("page_number"),
                page_set,
                self.topic("page_number"),
                dev,
                min_value=1,
                max_value=max(page_count, 1),
                mode="box",
                unit_of_measurement="Page",
                icon="mdi:page-next",
            ),
            page_count > 1,
            {page_set: CommandKind.PAGE_NUMBER},
        )
        zoom_set = self.topic("page_zoom", "set")
        add(
            "number",
            "page_zoom",
            build_number_entity(
                "Page Zoom",
                self._uid("page_zoom"),
                zoom_set,
                self.topic("page_zoom"),
                dev,
                min_value=ZOOM_MIN,
                max_value=ZOOM_MAX,
                step=5,
                mode="box",
                unit_of_measurement="%",
                icon="mdi:magnify-plus",
            ),
            commands={zoom_set: CommandKind.PAGE_ZOOM},
        )
        url_set = self.topic("page_url", "set")
        add(
            "text",
            "page_url",
            build_text_entity(
                "Page Url",
                self._uid("page_url"),
                url_set,
                self.topic("page_url"),
                dev,
                pattern="https?://.*",
                icon="mdi:web",
            ),
            commands={url_set: CommandKind.PAGE_URL},
        )

        # Sensors
        rounded = "{{ (value | float) | round(0) }}"
        for object_id, name, template, unit, icon, attributes, supported, category in (
            ("model", "Model", "{{ value }}", None, "mdi:raspberry-pi", True, True, None),
            ("serial_number", "Serial Number", "{{ value }}", None, "mdi:hexadecimal", False, True, None),
            ("host_name", "Host Name", "{{ value }}", None, "mdi:console-network", False, True, None),
            ("network_address", "Network Address", "{{ value }}", None, "mdi:ip-network", True, True, None),
            ("up_time", "Up Time", rounded, "min", "mdi:timeline-clock", True, True, None),
            ("memory_size", "Memory Size", "{{ (value | float) | round(2) }}", "GiB", "mdi:memory", False, True, None),
            ("memory_usage", "Memory Usage", rounded, "%", "mdi:memory-arrow-down", False, True, None),
            ("processor_usage", "Processor Usage", rounded, "%", "mdi:cpu-64-bit", False, True, None),
            ("processor_temperature", "Processor Temperature", rounded, "°C", "mdi:radiator", False, True, None),
            ("battery_level", "Battery Level", rounded, "%", "mdi:battery-medium", False, support.battery_level, None),
            ("package_upgrades", "Package Upgrades", "{{ value | int }}", None, "mdi:package-down", True, True, None),
            ("last_active", "Last Active", rounded, "min", "mdi:gesture-tap-hold", True, True, None),
            ("heartbeat", "Heartbeat", "{{ value }}", None, "mdi:heart-flash", True, True, "diagnostic"),
            ("errors", "Errors", "{{ value | int }}", None, "mdi:alert-circle", True, True, "diagnostic"),
            ("version", "Version", "{{ value }}", None, "mdi:application-braces", True, True, "diagnostic"),
        ):
            add(
                "sensor",
                object_id,
                build_sensor_entity(
                    name,
                    self._uid(object_id),
                    self.topic(object_id),
                    dev,
                    attributes_topic=self.topic(object_id, "attributes") if attributes else None,
                    value_template=template,
                    unit_of_measurement=unit,
                    icon=icon,
                    entity_category=category,
                ),
                supported,
            )
        add(
            "binary_sensor",
            "motion",
            build_binary_sensor_entity(
                "Motion",
                self._uid("motion"),
                self.topic("motion"),
                dev,
                device_class="motion",
                icon="mdi:motion-sensor",
            ),
        )
        add(
            "image",
            "screenshot",
            build_image_entity(
                "Screenshot",
                self._uid("screenshot"),
                self.topic("screenshot"),
                dev,
                icon="mdi:image-area",
            ),
            state_topic=self.topic("screenshot"),
        )
        return candidates

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Connect to the broker; registration runs on every (re)connect."""
        if not self.config.mqtt.host:
            return False
        self.mqtt.connect(on_connected=self._on_connected)
        for interval, action in (
            (FAST_TIER_SECONDS, self.fast_tier),
            (MEDIUM_TIER_SECONDS, self.update),
            (SLOW_TIER_SECONDS, self.slow_tier),
        ):
            self._tier_tasks.append(asyncio.create_task(self._every(interval, action)))
        return True

    async def stop(self) -> None:
        for task in self._tier_tasks:
            task.cancel()
        for task in self._tier_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tier_tasks.clear()
        if self._motion_timer is not None:
            self._motion_timer.cancel()
            self._motion_timer = None
        for task in list(self._tasks):
            task.cancel()
        if self.initialized:
            self.update_kiosk()
        self.mqtt.disconnect()

    def _spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self._logger.error("[integration] Command Failed: %s", exc)

        task.add_done_callback(_done)
        return task

    def _on_connected(self) -> None:
        self._spawn(self.register())

    async def register(self) -> None:
        """Publish or retract every entity config and push initial states."""
        routes: dict[str, CommandKind] = {}
        for entity, supported, commands in self.entities():
            if supported:
                self.publish_config(entity)
                routes.update(commands)
            else:
                self.retract_config(entity)
        self._routes = routes
        if not self._subscribed:
            for topic in routes:
                self.mqtt.subscribe(topic, self.handle_message)
            self._subscribed = True
        self._wire_events()
        self.initialized = True
        await self.refresh_release()
        await self.update_all()

    def _wire_events(self) -> None:
        if self._events_wired:
            return
        self._events_wired = True
        self.events.on(KioskEvent.UPDATE_APP, self.update_app)
        self.events.on(KioskEvent.UPDATE_STATUS, self.update_kiosk)
        self.events.on(KioskEvent.UPDATE_VOLUME, self.update_volume)
        self.events.on(KioskEvent.UPDATE_KEYBOARD, self.update_keyboard)
        self.events.on(KioskEvent.UPDATE_PAGE, self._on_page_changed)
        self.events.on(KioskEvent.UPDATE_DISPLAY, self._on_display_changed)
        self.events.on(KioskEvent.UPDATE_MOTION, self.update_motion)
        self.events.on(KioskEvent.UPDATE_SCREENSHOT, self.update_screenshot)
        self.events.on(KioskEvent.CONSOLE_LOG, self.update_errors)

    async def _every(self, interval: float, action: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.initialized:
                continue
            try:
                await action()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error("[integration] Periodic update failed: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    def resolve(self, topic: str, payload: str) -> Command | None:
        kind = self._routes.get(topic)
        if kind is None:
            return None
        command = parse_command(kind, payload, self.install_payload)
        if command is None:
            self._logger.warning("[integration] Ignoring invalid %s payload: %r", kind, payload)
        return command

    def handle_message(self, topic: str, payload: str) -> None:
        command = self.resolve(topic, payload)
        if command is None:
            return
        self._spawn(self.dispatch(command))

    async def dispatch(self, command: Command) -> None:
        await self._handlers[command.kind](command.payload)

    def _report(self, result: CommandResult) -> bool:
        if not result.ok:
            self._logger.warning("[integration] Command Failed: %s", result.error)
        return result.ok

    async def _display_on(self) -> None:
        if self.support.display_status:
            self._report(await self.hardware.set_display_status("ON"))

    async def _install_app(self, mode: str) -> None:
        await self._display_on()
        self._logger.info("[integration] Update App...")
        await self.hardware.install_update(self.config.app.install_url, mode, self._on_install_progress)

    def _on_install_progress(self, progress: int | None, error: int | None) -> None:
        if progress:
            self._logger.info("[integration] Progress: %s%%", progress)
        self.events.emit(KioskEvent.UPDATE_APP, progress)

    async def _shutdown(self, _payload: str) -> None:
        self._logger.info("[integration] Shutdown system...")
        await self._display_on()
        self._report(await self.hardware.shutdown_system())

    async def _reboot(self, _payload: str) -> None:
        self._logger.info("[integration] Rebooting system...")
        await self._display_on()
        self._report(await self.hardware.reboot_system())

    async def _refresh(self, _payload: str) -> None:
        self._logger.info("[integration] Refreshing webview...")
        await self._display_on()
        self.events.emit(KioskEvent.RELOAD_VIEW)

    async def _set_kiosk_status(self, status: str) -> None:
        self._logger.info("[integration] Set Kiosk Status: %s", status)
        await self._display_on()
        await self.window.set_status(status)

    async def _set_theme(self, theme: str) -> None:
        self._logger.info("[integration] Set Application Theme: %s", theme)
        await self.view.set_theme(theme)

    async def _set_display_power(self, status: str) -> None:
        self._logger.info("[integration] Set Display Status: %s", status)
        if self._report(await self.hardware.set_display_status(status)):
            await self.update_display()

    async def _set_display_brightness(self, brightness: int) -> None:
        self._logger.info("[integration] Set Display Brightness: %s", brightness)
        if self._report(await self.hardware.set_display_brightness(brightness)):
            await self.update_display()

    async def _set_volume(self, volume: int) -> None:
        self._logger.info("[integration] Set Audio Volume: %s", volume)
        if self._report(await self.hardware.set_audio_volume(volume)):
            await self.update_volume()

    async def _set_keyboard(self, visibility: str) -> None:
        self._logger.info("[integration] Set Keyboard Visibility: %s", visibility)
        await self._display_on()
        if self._report(await self.hardware.set_keyboard_visibility(visibility)):
            self.update_keyboard()

    async def _set_page_number(self, number: int) -> None:
        self._logger.info("[integration] Set Page Number: %s", number)
        if self.view.select_page(number):
            self.events.emit(KioskEvent.UPDATE_VIEW)

    async def _set_page_zoom(self, zoom: int) -> None:
        self._logger.info("[integration] Set Page Zoom: %s", zoom)
        if self.view.set_zoom(zoom):
            self.events.emit(KioskEvent.UPDATE_VIEW)

    async def _set_page_url(self, url: str) -> None:
        self._logger.info("[integration] Set Page Url: %s", url)
        await self.view.load_url(url)

    # ------------------------------------------------------------------
    # State updates
    # ------------------------------------------------------------------

    async def update_all(self) -> None:
        self.update_app()
        self.update_kiosk()
        self.update_theme()
        await self.update_display()
        await self.update_volume()
        self.update_keyboard()
        self.update_page()
        self.update_model()
        self.update_serial_number()
        self.update_host_name()
        await self.update()
        self.update_memory_size()
        await self.update_package_upgrades()
        self.update_motion()
        self.update_screenshot()
        self.fast_tier_sync()
        self.update_version()

    async def update(self) -> None:
        """System load sensors (medium tier)."""
        await self.update_network_address()
        self.update_up_time()
        self.update_last_active()
        self.update_memory_usage()
        self.update_processor_usage()
        await self.update_processor_temperature()
        self.update_battery_level()

    def fast_tier_sync(self) -> None:
        self.update_last_active()
        self.update_heartbeat()
        self.update_errors()

    async def fast_tier(self) -> None:
        self.fast_tier_sync()

    async def slow_tier(self) -> None:
        await self.update_package_upgrades()
        await self.refresh_release()

    async def refresh_release(self) -> None:
        if not self.support.app_update:
            return
        release = await fetch_latest_release(self.config.app.releases_url)
        if release is not None:
            self.latest_release = release
            self.update_app()

    def update_app(self, progress: int | None = 0) -> None:
        latest = self.latest_release
        if not self.support.app_update or latest is None or not latest.summary:
            return
        version = {
            "title": latest.title,
            "latest_version": latest.version,
            "installed_version": self.config.app.version,
            "release_summary": truncate_summary(latest.summary),
            "release_url": latest.url,
            "update_percentage": progress or None,
            "in_progress": bool(progress and 0 < progress < 100),
        }
        self.publish_state("app/version", json.dumps(version))

    def update_kiosk(self) -> None:
        self.publish_state("kiosk", self.window.status.value)

    def update_theme(self) -> None:
        theme = self.view.get_theme()
        self.publish_state("theme", theme[:1].upper() + theme[1:])

    async def update_display(self) -> None:
        brightness = await self.hardware.get_display_brightness()
        status = await self.hardware.get_display_status()
        self.publish_state("display/brightness", brightness)
        self.publish_state("display/power", status)

    async def _on_display_changed(self) -> None:
        await self.update_display()
        self.update_last_active()

    async def update_volume(self) -> None:
        self.publish_state("volume", await self.hardware.get_audio_volume())

    def update_keyboard(self) -> None:
        self.publish_state("keyboard", self.hardware.get_keyboard_visibility())

    def update_page(self) -> None:
        self.update_page_number()
        self.update_page_zoom()
        self.update_page_url()
        self.update_theme()

    def _on_page_changed(self) -> None:
        self.update_page()

    def update_page_number(self) -> None:
        number = None if self.view.page_count <= 1 else self.view.active_page or 1
        self.publish_state("page_number", number)

    def update_page_zoom(self) -> None:
        self.publish_state("page_zoom", self.view.get_zoom())

    def update_page_url(self) -> None:
        url = self.view.get_active_url()
        self.publish_state("page_url", url if url is not None and len(url) < PAGE_URL_LIMIT else None)

    def update_model(self) -> None:
        self.publish_state("model", self.identity.model)
        self.publish_attributes("model", self.support.as_dict())

    def update_serial_number(self) -> None:
        self.publish_state("serial_number", self.identity.serial_number)

    def update_host_name(self) -> None:
        self.publish_state("host_name", self.identity.host_name)

    async def update_network_address(self) -> None:
        addresses = await asyncio.to_thread(device.network_addresses)
        self.publish_state("network_address", device.primary_network_address(addresses))
        self.publish_attributes("network_address", addresses)

    def update_up_time(self) -> None:
        boot = datetime.fromtimestamp(psutil.boot_time(), tz=timezone.utc)
        self.publish_state("up_time", device.up_time_minutes())
        self.publish_attributes("up_time", {"boot": boot.isoformat()})

    def update_memory_size(self) -> None:
        self.publish_state("memory_size", device.memory_size_gib())

    def update_memory_usage(self) -> None:
        self.publish_state("memory_usage", device.memory_usage_percent())

    def update_processor_usage(self) -> None:
        self.publish_state("processor_usage", device.processor_usage_percent())

    async def update_processor_temperature(self) -> None:
        self.publish_state("processor_temperature", await asyncio.to_thread(device.processor_temperature))

    def update_battery_level(self) -> None:
        self.publish_state("battery_level", self.hardware.get_battery_level())

    async def update_package_upgrades(self) -> None:
        rows = await asyncio.to_thread(device.check_package_upgrades)
        self.publish_state("package_upgrades", len(rows))
        self.publish_attributes("package_upgrades", {"packages": device.parse_package_upgrades(rows)})

    def update_last_active(self) -> None:
        tracker = self.view.tracker
        self.publish_state("last_active", tracker.idle_minutes())
        self.publish_attributes("last_active", tracker.attributes())

    def update_motion(self, detected: bool = False) -> None:
        """Publish motion ON now and OFF once no new motion arrived for a while."""
        if self._motion_timer is not None:
            self._motion_timer.cancel()
            self._motion_timer = None
        if detected:
            loop = asyncio.get_running_loop()
            self._motion_timer = loop.call_later(MOTION_CLEAR_SECONDS, self.update_motion, False)
        if self._motion_detected is not detected:
            self._motion_detected = detected
            self.publish_state("motion", "ON" if detected else "OFF")

    def update_screenshot(self) -> None:
        self.publish_state("screenshot", self.view.screenshot)

    def update_heartbeat(self) -> None:
        self.publish_state("heartbeat", format_heartbeat())
        self.publish_attributes("heartbeat", {"date": datetime.now(timezone.utc).isoformat()})

    def update_errors(self) -> None:
        if self.history is None:
            return
        self.publish_state("errors", self.history.error_count())
        self.publish_attributes("errors", self.history.history_by_minute())

    def update_version(self) -> None:
        self.publish_state("version", self.config.app.version)
        self.publish_attributes("version", self.config.app.build)
