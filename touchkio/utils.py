"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Device naming: Node id derivation from serial numbers
- Numeric helpers: Clamping used by the hardware layer
- Secrets: Password masking for logged configuration
- Text cleanup: NUL stripping for command output

These utilities are used throughout TouchKio for configuration parsing and data handling.
"""

from __future__ import annotations

import re

_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | bytes | None, default: int | None) -> int | None:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def strip_nul(text: str) -> str:
    """Trim whitespace and drop embedded NUL bytes (sysfs/devicetree output)."""
    return text.replace("\0", "").strip()


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def node_id_from_serial(serial_number: str) -> str:
    """Derive the discovery node id from a device serial number.

    The last six characters are uppercased and stripped of anything that is
    not A-Z or 0-9, then prefixed with ``rpi_``.
    """
    suffix = strip_nul(serial_number)[-6:].upper()
    return f"rpi_{_NON_ALNUM_RE.sub('', suffix)}"


def mask_secret(value: str | None) -> str | None:
    """Replace every character of a secret with ``*`` for logging."""
    if value is None:
        return None
    return "*" * len(value)
