"""Signal bus property monitor.

Wraps ``dbus-monitor`` for a single object path and turns its text frames
into structured property updates. A frame looks like::

    signal time=... path=/sm/puri/OSK0; interface=org.freedesktop.DBus.Properties; member=PropertiesChanged
       string "sm.puri.OSK0"
       array [
          dict entry(
             string "Visible"
             variant             boolean true
          )
       ]
       array [
       ]

The grammar is deliberately small: ``dict entry(`` opens an entry, a
``string "<key>"`` token names it, a ``variant <type> <value>`` clause
carries the value, and ``)`` closes it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from touchkio import executor
from touchkio.executor import CommandResult, CommandStream

LOGGER = logging.getLogger("touchkio.dbus")

_TOKEN_RE = re.compile(
    r"(?P<open>dict entry\()"
    r"|(?P<close>\))"
    r"|(?P<string>string \"(?P<name>[^\"]*)\")"
    r"|(?P<variant>variant\s+(?P<clause>[^\n()]*))"
)
_SIGNAL_HEADER = "signal "

PropertyCallback = Callable[[dict[str, str] | None, str | None], None]


class FrameParseError(ValueError):
    """A signal frame did not follow the dict-entry grammar."""


@dataclass(slots=True)
class PropertiesFrame:
    """Structured view of one PropertiesChanged frame."""

    interface: str | None = None
    changed: dict[str, str] = field(default_factory=dict)
    strings: list[str] = field(default_factory=list)

    def mentions(self, name: str) -> bool:
        return name in self.strings or name in self.changed


def _variant_value(clause: str) -> str:
    token = clause.split()[-1] if clause.split() else ""
    if len(token) >= 2 and token[0] == token[-1] == '"':
        return token[1:-1]
    return token


def parse_properties_frame(text: str) -> PropertiesFrame:
    """Parse one frame of ``dbus-monitor`` output.

    Header lines (``signal ...``) are skipped; the body is scanned token by
    token so frames split or joined across lines parse the same way.

    Raises:
        FrameParseError: On unbalanced or incomplete dict entries.
    """
    body = "\n".join(line for line in text.splitlines() if not line.lstrip().startswith(_SIGNAL_HEADER))
    frame = PropertiesFrame()
    in_entry = False
    key: str | None = None
    value: str | None = None

    for match in _TOKEN_RE.finditer(body):
        kind = match.lastgroup
        if kind == "open":
            if in_entry:
                raise FrameParseError("nested dict entry")
            in_entry, key, value = True, None, None
        elif kind == "close":
            if not in_entry:
                raise FrameParseError("unexpected ')' outside dict entry")
            if key is None or value is None:
                raise FrameParseError("dict entry without key or variant")
            frame.changed[key] = value
            in_entry = False
        elif kind == "string":
            name = match.group("name").strip()
            if in_entry and key is None:
                key = name
            elif not in_entry and frame.interface is None and not frame.strings:
                frame.interface = name
            frame.strings.append(name)
        elif kind == "variant":
            if not in_entry:
                raise FrameParseError("variant outside dict entry")
            value = _variant_value(match.group("clause"))

    if in_entry:
        raise FrameParseError("unterminated dict entry")
    return frame


def split_frames(chunk: str) -> list[str]:
    """Split a chunk of monitor output on ``signal`` header lines."""
    frames: list[list[str]] = []
    for line in chunk.splitlines():
        if line.lstrip().startswith(_SIGNAL_HEADER) or not frames:
            frames.append([])
        frames[-1].append(line)
    return ["\n".join(lines) for lines in frames if any(item.strip() for item in lines)]


def monitor_args(object_path: str) -> list[str]:
    return [
        f"interface='org.freedesktop.DBus.Properties',member='PropertiesChanged',path='{object_path}'"
    ]


class PropertyMonitor:
    """Follow one property of one object path over ``dbus-monitor``.

    The callback receives ``({name: value}, None)`` per update or
    ``(None, error)`` for stream errors. The process is not restarted when it
    exits; the owner decides when to call ``start()`` again.
    """

    def __init__(
        self,
        object_path: str,
        property_name: str,
        callback: PropertyCallback,
        cached_value: Callable[[], str | None],
        logger: logging.Logger | None = None,
    ) -> None:
        self.object_path = object_path
        self.property_name = property_name
        self._callback = callback
        self._cached_value = cached_value
        self._logger = logger or LOGGER
        self._stream: CommandStream | None = None

    @property
    def running(self) -> bool:
        return self._stream is not None and self._stream.running

    async def start(self) -> bool:
        if self.running:
            return True
        self._stream = CommandStream("dbus-monitor", monitor_args(self.object_path), self._on_output, self._logger)
        return await self._stream.start()

    async def stop(self) -> None:
        if self._stream is not None:
            await self._stream.stop()
            self._stream = None

    def _on_output(self, stdout: str | None, stderr: str | None) -> None:
        if stderr:
            self._logger.error("[dbus] Monitor D-Bus: %s", stderr)
            self._callback(None, stderr)
            return
        if stdout:
            self.feed(stdout)

    def feed(self, chunk: str) -> None:
        """Process a chunk of monitor output (one or more frames)."""
        for text in split_frames(chunk):
            try:
                frame = parse_properties_frame(text)
            except FrameParseError as exc:
                self._logger.warning("[dbus] Ignoring malformed frame on %s: %s", self.object_path, exc)
                continue
            if not frame.mentions(self.property_name):
                continue
            if frame.changed:
                for key, value in frame.changed.items():
                    self._callback({key: value}, None)
            else:
                # Confirmation echo without payload: repeat the last known value
                self._callback({self.property_name: f"{self._cached_value()}"}, None)


def _interface_for(object_path: str) -> str:
    return object_path.strip("/").replace("/", ".")


async def dbus_call(object_path: str, method: str, values: list[str]) -> CommandResult:
    """Invoke ``method`` on the interface named after ``object_path`` via dbus-send."""
    interface = _interface_for(object_path)
    return await executor.run_async(
        "dbus-send",
        [
            "--print-reply",
            "--type=method_call",
            f"--dest={interface}",
            object_path,
            f"{interface}.{method}",
            *values,
        ],
    )
