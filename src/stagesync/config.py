"""Relay and agent configuration for stagesync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from stagesync._address import parse_port, resolve_sync_url
from stagesync._constants import DEFAULT_BIND_HOST, DEFAULT_PORT, RECONNECT_DELAY_SECONDS
from stagesync.exceptions import StageSyncConfigError


def _env_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise StageSyncConfigError(f"expected a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay process configuration.

    Parameters
    ----------
    host : str
        Interface to bind. Defaults to all interfaces so peers on the
        same LAN can reach the relay.
    port : int
        TCP port for the websocket endpoint.
    """

    host: str = DEFAULT_BIND_HOST
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise StageSyncConfigError(f"port must be between 0 and 65535, got {self.port}")

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create configuration from ``STAGE_SYNC_PORT`` / ``STAGE_SYNC_BIND``.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        port_env = env.get("STAGE_SYNC_PORT")
        if port_env is not None and "port" not in overrides:
            try:
                config_kwargs["port"] = int(port_env)
            except ValueError as exc:
                raise StageSyncConfigError(f"STAGE_SYNC_PORT is not an integer: {port_env!r}") from exc

        bind_env = env.get("STAGE_SYNC_BIND")
        if bind_env and "host" not in overrides:
            config_kwargs["host"] = bind_env

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class AgentConfig:
    """Client sync agent configuration.

    Parameters
    ----------
    url : str or None
        Full relay address. Wins over every other source.
    host : str or None
        Relay host, used with ``port`` when no URL is given.
    port : int or None
        Relay port. Falls back to 4001.
    dev_host : str or None
        Development-host hint (``host[:port]`` of the machine serving the
        app). Only the host part is used.
    fallback_location : str or None
        Last-resort ``host[:port]`` supplied by the embedding application.
    reconnect_delay : float
        Seconds between a lost connection and the next attempt.
    """

    url: str | None = None
    host: str | None = None
    port: int | None = None
    dev_host: str | None = None
    fallback_location: str | None = None
    reconnect_delay: float = RECONNECT_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.reconnect_delay < 0:
            raise StageSyncConfigError(f"reconnect_delay must be >= 0, got {self.reconnect_delay}")

    @classmethod
    def from_env(cls, **overrides: Any) -> AgentConfig:
        """Create configuration from ``STAGE_SYNC_*`` environment variables.

        Reads ``STAGE_SYNC_URL``, ``STAGE_SYNC_HOST``, ``STAGE_SYNC_PORT``,
        ``STAGE_SYNC_DEV_HOST`` and ``STAGE_SYNC_RECONNECT_DELAY``. Explicit
        keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "STAGE_SYNC_URL": "url",
            "STAGE_SYNC_HOST": "host",
            "STAGE_SYNC_DEV_HOST": "dev_host",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = val

        port_env = env.get("STAGE_SYNC_PORT")
        if port_env and "port" not in overrides:
            config_kwargs["port"] = parse_port(port_env)

        if "reconnect_delay" not in overrides:
            config_kwargs["reconnect_delay"] = _env_float(
                env.get("STAGE_SYNC_RECONNECT_DELAY"),
                RECONNECT_DELAY_SECONDS,
            )

        config_kwargs.update(overrides)
        return cls(**config_kwargs)

    def resolve_url(self) -> str | None:
        """Resolve the relay websocket URL, or ``None`` when nothing is known."""
        return resolve_sync_url(
            url=self.url,
            host=self.host,
            port=self.port,
            dev_host=self.dev_host,
            fallback_location=self.fallback_location,
        )
