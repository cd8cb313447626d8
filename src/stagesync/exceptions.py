"""Custom exception hierarchy for stagesync."""

from __future__ import annotations


class StageSyncError(Exception):
    """Base exception for all stagesync errors."""


class StageSyncConfigError(StageSyncError):
    """Invalid or missing configuration."""


class PayloadError(StageSyncError):
    """Inbound frame is not JSON, lacks the expected envelope, or fails validation."""

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class SyncTransportError(StageSyncError):
    """Websocket-level failure (not connected, send failed)."""

    def __init__(self, message: str, *, url: str = "") -> None:
        self.url = url
        super().__init__(message)
