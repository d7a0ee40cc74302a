"""systemd notification helper for the touchkio user service.

Messages go to ``$NOTIFY_SOCKET``; every call is a no-op when the kiosk
runs outside systemd (started by hand or from a desktop autostart entry).
"""

from __future__ import annotations

import logging
import os
import socket

LOGGER = logging.getLogger("touchkio.service")


def notify(*fields: str) -> bool:
    """Send ``KEY=value`` fields to the service manager; True when delivered."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr or not fields:
        return False
    if addr.startswith("@"):
        addr = "\0" + addr[1:]  # abstract socket
    message = "\n".join(fields).encode()
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.sendto(message, addr)
    except OSError as exc:
        LOGGER.debug("[service] Failed to notify %s: %s", fields, exc)
        return False
    return True


def ready(status: str | None = None) -> bool:
    fields = ["READY=1"]
    if status:
        fields.append(f"STATUS={status}")
    return notify(*fields)


def stopping() -> bool:
    return notify("STOPPING=1")
