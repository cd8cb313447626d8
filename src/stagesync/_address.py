"""Relay address resolution for sync agents."""

from __future__ import annotations

import logging
import re

from stagesync._constants import DEFAULT_PORT

_logger = logging.getLogger(__name__)

_SCHEME_PREFIX = re.compile(r"^(?:https?://|exp:///?)")


def sanitize_host(value: str) -> str:
    """Strip scheme, path and query from a ``host[:port]`` candidate."""
    stripped = _SCHEME_PREFIX.sub("", value.strip())
    return stripped.split("?", 1)[0].split("/", 1)[0]


def parse_port(value: str | int | None, fallback: int = DEFAULT_PORT) -> int:
    """Parse a port value, returning *fallback* for anything non-positive or non-numeric."""
    if value is None:
        return fallback
    try:
        num = int(value)
    except (TypeError, ValueError):
        return fallback
    return num if num > 0 else fallback


def normalize_ws_url(value: str, port: int | None = None) -> str:
    """Turn a URL or ``host[:port]`` string into a ``ws://`` URL.

    ``ws://`` and ``wss://`` URLs pass through untouched. A port embedded in
    *value* wins over *port*.
    """
    if value.startswith(("ws://", "wss://")):
        return value
    host, _, port_part = sanitize_host(value).partition(":")
    resolved = parse_port(port_part, fallback=port or DEFAULT_PORT) if port_part else (port or DEFAULT_PORT)
    return f"ws://{host}:{resolved}"


def resolve_sync_url(
    *,
    url: str | None = None,
    host: str | None = None,
    port: int | None = None,
    dev_host: str | None = None,
    fallback_location: str | None = None,
) -> str | None:
    """Pick the relay URL from the first available source.

    Order: explicit URL, explicit host (with optional port), development-host
    hint, fallback location. Returns ``None`` when no source yields a host.
    """
    if url:
        _logger.debug("Using explicit sync URL: %s", url)
        return normalize_ws_url(url)

    if host:
        _logger.debug("Using explicit host override: %s port=%s", host, port)
        return normalize_ws_url(host, parse_port(port))

    candidate = dev_host or fallback_location
    if not candidate:
        _logger.debug("No host candidate from development hint or fallback location")
        return None

    resolved_host = sanitize_host(candidate).split(":", 1)[0]
    if not resolved_host:
        _logger.debug("Failed to parse host from candidate: %s", candidate)
        return None

    resolved_port = parse_port(port)
    _logger.debug("Using candidate host/port combo: %s %s", resolved_host, resolved_port)
    return f"ws://{resolved_host}:{resolved_port}"
