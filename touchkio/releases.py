"""Latest release lookup for the app update entity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from packaging.version import InvalidVersion, Version

LOGGER = logging.getLogger("touchkio.releases")

REQUEST_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    title: str
    version: str
    summary: str
    url: str


def parse_release(payload: dict[str, Any]) -> ReleaseInfo | None:
    tag = str(payload.get("tag_name") or "").strip()
    if not tag:
        return None
    version = tag[1:] if tag.lower().startswith("v") else tag
    return ReleaseInfo(
        title=str(payload.get("name") or tag),
        version=version,
        summary=str(payload.get("body") or ""),
        url=str(payload.get("html_url") or ""),
    )


def _parse_version(value: str | None) -> Version | None:
    if not value:
        return None
    try:
        return Version(value.strip())
    except (InvalidVersion, AttributeError):
        return None


def is_newer_version(remote: str | None, local: str | None) -> bool:
    remote_version = _parse_version(remote)
    if remote_version is None:
        return False
    local_version = _parse_version(local)
    if local_version is None:
        return True
    return remote_version > local_version


async def fetch_latest_release(
    releases_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> ReleaseInfo | None:
    """Return the latest published release, or None when it cannot be fetched."""
    url = f"{releases_url.rstrip('/')}/latest"
    headers = {"Accept": "application/vnd.github+json"}
    try:
        if client is not None:
            response = await client.get(url, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.get(url, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as exc:
        LOGGER.warning("[releases] Failed to fetch latest release from %s: %s", url, exc)
        return None
    except ValueError as exc:
        LOGGER.warning("[releases] Invalid release payload from %s: %s", url, exc)
        return None
    if not isinstance(payload, dict):
        return None
    return parse_release(payload)
