"""Logging setup and in-memory log capture for the errors sensor."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
HISTORY_SIZE = 100


@dataclass(frozen=True, slots=True)
class LogEntry:
    time: datetime
    level: str
    text: str


class LogHistory(logging.Handler):
    """Keep the most recent records and notify a listener about errors.

    The listener may be called from any thread that logs (paho runs its
    network loop on its own thread), so it must hand off to the event loop
    itself.
    """

    def __init__(self, size: int = HISTORY_SIZE, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._entries: deque[LogEntry] = deque(maxlen=size)
        self._entries_lock = threading.Lock()
        self._listener: Callable[[], None] | None = None

    def set_listener(self, listener: Callable[[], None] | None) -> None:
        self._listener = listener

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                time=datetime.fromtimestamp(record.created),
                level=record.levelname.lower(),
                text=record.getMessage(),
            )
        except (TypeError, ValueError):
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)
        listener = self._listener
        if listener is not None and record.levelno >= logging.ERROR:
            listener()

    def entries(self) -> list[LogEntry]:
        """Newest first."""
        with self._entries_lock:
            return list(reversed(self._entries))

    def error_count(self) -> int:
        return sum(1 for entry in self.entries() if entry.level in {"error", "critical"})

    def history_by_minute(self) -> dict[str, list[dict[str, str]]]:
        history: dict[str, list[dict[str, str]]] = {}
        for entry in self.entries():
            minute = entry.time.strftime("%Y-%m-%dT%H:%M")
            history.setdefault(minute, []).append({entry.level.upper(): entry.text})
        return history


def configure_logging(level: str, log_path: Path | None = None, history: LogHistory | None = None) -> LogHistory:
    """Install stderr, file and history handlers on the root logger.

    A previous log file at ``log_path`` is removed so every run starts fresh.
    """
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(resolved)
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.unlink(missing_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            logging.getLogger("touchkio.logs").error("[logs] Failed to open log file %s: %s", log_path, exc)
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)
    history = history or LogHistory()
    root.addHandler(history)
    return history
