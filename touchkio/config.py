"""Configuration helpers for the TouchKio kiosk."""

from __future__ import annotations

import argparse
import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from touchkio import __version__
from touchkio.utils import mask_secret, parse_bool, parse_float, split_csv

LOGGER = logging.getLogger(__name__)

APP_NAME = "touchkio"
APP_TITLE = "TouchKio"
APP_AUTHOR = "leukipp"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_ZOOM = 1.25
DEFAULT_THEME = "dark"
THEMES = ("light", "dark")
ARGUMENTS_FILENAME = "Arguments.json"
BUILD_FILENAME = "build.json"

# Persisted argument keys (Arguments.json) and their environment variable names
_ENV_KEYS = {
    "web_url": "TOUCHKIO_WEB_URL",
    "web_zoom": "TOUCHKIO_WEB_ZOOM",
    "web_theme": "TOUCHKIO_WEB_THEME",
    "web_widget": "TOUCHKIO_WEB_WIDGET",
    "mqtt_url": "TOUCHKIO_MQTT_URL",
    "mqtt_user": "TOUCHKIO_MQTT_USER",
    "mqtt_password": "TOUCHKIO_MQTT_PASSWORD",
    "mqtt_discovery": "TOUCHKIO_MQTT_DISCOVERY",
    "app_debug": "TOUCHKIO_APP_DEBUG",
    "app_early": "TOUCHKIO_APP_EARLY",
    "ignore_certificate_errors": "TOUCHKIO_IGNORE_CERTIFICATE_ERRORS",
    "log_level": "TOUCHKIO_LOG_LEVEL",
}


class ConfigError(ValueError):
    """Raised when the resolved configuration cannot start the kiosk."""


@dataclass(frozen=True)
class WebConfig:
    urls: tuple[str, ...]
    zoom: float
    theme: str
    widget: bool


@dataclass(frozen=True)
class MqttConfig:
    url: str | None
    host: str | None
    port: int
    tls_enabled: bool
    username: str | None
    password: str | None
    discovery_prefix: str
    verify_certificates: bool


@dataclass(frozen=True)
class DevToolsConfig:
    discovery_url: str
    timeout: float


@dataclass(frozen=True)
class AppConfig:
    name: str
    title: str
    version: str
    homepage: str
    releases_url: str
    install_url: str
    config_dir: Path
    cache_dir: Path
    debug: bool
    early: bool
    build: dict[str, Any] = field(default_factory=dict)

    @property
    def log_path(self) -> Path:
        return self.config_dir / "main.log"

    @property
    def is_release_build(self) -> bool:
        return self.build.get("maker") == "deb"


@dataclass(frozen=True)
class KioskConfig:
    web: WebConfig
    mqtt: MqttConfig
    devtools: DevToolsConfig
    app: AppConfig
    log_level: str

    def describe(self) -> dict[str, Any]:
        """Return a loggable summary with secrets masked."""
        return {
            "web_url": list(self.web.urls),
            "web_zoom": self.web.zoom,
            "web_theme": self.web.theme,
            "web_widget": self.web.widget,
            "mqtt_url": self.mqtt.url,
            "mqtt_user": self.mqtt.username,
            "mqtt_password": mask_secret(self.mqtt.password),
            "mqtt_discovery": self.mqtt.discovery_prefix,
            "app_debug": self.app.debug,
            "app_early": self.app.early,
        }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description=f"{APP_TITLE} kiosk")
    parser.add_argument("--web-url", dest="web_url", help="Comma separated dashboard urls")
    parser.add_argument("--web-zoom", dest="web_zoom")
    parser.add_argument("--web-theme", dest="web_theme", choices=THEMES)
    parser.add_argument("--web-widget", dest="web_widget")
    parser.add_argument("--mqtt-url", dest="mqtt_url")
    parser.add_argument("--mqtt-user", dest="mqtt_user")
    parser.add_argument("--mqtt-password", dest="mqtt_password")
    parser.add_argument("--mqtt-discovery", dest="mqtt_discovery")
    parser.add_argument("--app-debug", dest="app_debug")
    parser.add_argument("--app-early", dest="app_early", action="store_const", const="true")
    parser.add_argument(
        "--ignore-certificate-errors",
        dest="ignore_certificate_errors",
        action="store_const",
        const="true",
    )
    parser.add_argument("--log-level", dest="log_level")
    parser.add_argument("--version", action="version", version=f"{APP_NAME}-v{__version__}")
    return parser


def _default_dir(env: Mapping[str, str], variable: str, fallback: str) -> Path:
    base = env.get(variable) or str(Path.home() / fallback)
    return Path(base) / APP_NAME


def read_arguments_file(path: Path) -> dict[str, Any]:
    """Load persisted arguments, returning an empty dict when absent or unreadable."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.error("[config] Failed to parse %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        LOGGER.error("[config] Ignoring %s: expected a JSON object", path)
        return {}
    return data


def _read_build_info(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("[config] Failed to read build info %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _merge_sources(
    cli: Mapping[str, Any],
    env: Mapping[str, str],
    persisted: Mapping[str, Any],
) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for key, variable in _ENV_KEYS.items():
        value = cli.get(key)
        if value is None:
            value = env.get(variable)
        if value is None:
            value = persisted.get(key)
        merged[key] = value
    return merged


def _parse_urls(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        urls = [str(item).strip() for item in raw if str(item).strip()]
    else:
        urls = split_csv(raw)
    if not urls:
        raise ConfigError("Please provide the '--web-url' parameter")
    for url in urls:
        if urlparse(url).scheme not in {"http", "https"}:
            raise ConfigError(f"Please provide the '--web-url' parameter with http(s): {url}")
    return tuple(urls)


def _parse_mqtt(merged: Mapping[str, Any]) -> MqttConfig:
    url = merged.get("mqtt_url") or None
    discovery = merged.get("mqtt_discovery") or DEFAULT_DISCOVERY_PREFIX
    verify = not parse_bool(merged.get("ignore_certificate_errors"), False)
    if url is None:
        return MqttConfig(
            url=None,
            host=None,
            port=1883,
            tls_enabled=False,
            username=None,
            password=None,
            discovery_prefix=discovery,
            verify_certificates=verify,
        )
    parsed = urlparse(url)
    if parsed.scheme not in {"mqtt", "mqtts"}:
        raise ConfigError("Please provide the '--mqtt-url' parameter with mqtt(s)")
    tls_enabled = parsed.scheme == "mqtts"
    return MqttConfig(
        url=url,
        host=parsed.hostname,
        port=parsed.port or (8883 if tls_enabled else 1883),
        tls_enabled=tls_enabled,
        username=merged.get("mqtt_user") or parsed.username,
        password=merged.get("mqtt_password") or parsed.password,
        discovery_prefix=discovery,
        verify_certificates=verify,
    )


def load_config(
    argv: Sequence[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> KioskConfig:
    """Resolve the kiosk configuration.

    Precedence is command line, then environment, then the persisted
    ``Arguments.json`` in the config directory.

    Raises:
        ConfigError: If no valid web url is provided or the MQTT url is malformed.
    """
    source = env if env is not None else os.environ
    cli = vars(build_parser().parse_args(argv))

    config_dir = _default_dir(source, "XDG_CONFIG_HOME", ".config")
    cache_dir = _default_dir(source, "XDG_CACHE_HOME", ".cache")
    persisted = read_arguments_file(config_dir / ARGUMENTS_FILENAME)
    merged = _merge_sources(cli, source, persisted)

    theme = str(merged.get("web_theme") or DEFAULT_THEME).lower()
    web = WebConfig(
        urls=_parse_urls(merged.get("web_url")),
        zoom=parse_float(merged.get("web_zoom"), DEFAULT_ZOOM),
        theme=theme if theme in THEMES else DEFAULT_THEME,
        widget=parse_bool(_as_text(merged.get("web_widget")), True),
    )

    repository = f"{APP_AUTHOR}/{APP_NAME}"
    app = AppConfig(
        name=APP_NAME,
        title=APP_TITLE,
        version=__version__,
        homepage=f"https://github.com/{repository}",
        releases_url=f"https://api.github.com/repos/{repository}/releases",
        install_url=f"https://raw.githubusercontent.com/{repository}/main/install.sh",
        config_dir=config_dir,
        cache_dir=cache_dir,
        debug=parse_bool(_as_text(merged.get("app_debug")), False),
        early=parse_bool(_as_text(merged.get("app_early")), False),
        build=_read_build_info(Path(__file__).resolve().parent / BUILD_FILENAME),
    )

    return KioskConfig(
        web=web,
        mqtt=_parse_mqtt(merged),
        devtools=DevToolsConfig(
            discovery_url=source.get("TOUCHKIO_DEVTOOLS_URL", "http://localhost:9222/json"),
            timeout=parse_float(source.get("TOUCHKIO_DEVTOOLS_TIMEOUT"), 3.0),
        ),
        app=app,
        log_level=str(merged.get("log_level") or "INFO").upper(),
    )


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
