"""Client sync agent.

Owns:
- the single websocket to the relay and its reconnect loop
- applying remote snapshots to the local document without echoing them back
- sending local document changes, skipping ones the relay already has
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import string
from collections.abc import Callable, Coroutine
from enum import StrEnum
from typing import Any

import aiohttp

from stagesync._constants import TRANSPORT_ERROR, UNAVAILABLE_ERROR
from stagesync.config import AgentConfig
from stagesync.document import StageDocument
from stagesync.exceptions import PayloadError, SyncTransportError
from stagesync.models.snapshot import Snapshot
from stagesync.protocol import (
    deserialize_snapshot,
    encode_request_state,
    encode_update,
    fingerprint,
    parse_state_packet,
    serialize_snapshot,
)

_logger = logging.getLogger(__name__)

_ORIGIN_ALPHABET = string.ascii_lowercase + string.digits


class SyncStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


_STATUS_LABELS: dict[SyncStatus, str] = {
    SyncStatus.CONNECTED: "Live sync enabled",
    SyncStatus.CONNECTING: "Syncing...",
    SyncStatus.DISCONNECTED: "Reconnecting sync...",
    SyncStatus.ERROR: "Sync offline",
    SyncStatus.UNAVAILABLE: "Sync unavailable",
}

StatusListener = Callable[[SyncStatus, str | None], None]


def create_origin_id() -> str:
    """Random per-session origin id, e.g. ``client-k3v9x0qa``."""
    return "client-" + "".join(secrets.choice(_ORIGIN_ALPHABET) for _ in range(8))


class SyncAgent:
    """Keeps a :class:`StageDocument` loosely in sync with the relay.

    Usage::

        document = StageDocument()
        async with SyncAgent(document, AgentConfig.from_env()) as agent:
            document.place_equipment("mic", "Vox 1", (0.5, 0.2))
    """

    def __init__(
        self,
        document: StageDocument,
        config: AgentConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        origin_id: str | None = None,
        on_status: StatusListener | None = None,
    ) -> None:
        self._document = document
        self._config = config if config is not None else AgentConfig.from_env()
        self._url = self._config.resolve_url()
        self._external_session = session is not None
        self._http = session
        self._origin_id = origin_id or create_origin_id()
        self._on_status = on_status

        self._status = SyncStatus.CONNECTING if self._url else SyncStatus.UNAVAILABLE
        self._error: str | None = None
        self._status_waiters: dict[SyncStatus, list[asyncio.Event]] = {}

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._pending_sends: set[asyncio.Task[None]] = set()
        self._unsubscribe: Callable[[], None] | None = None

        self._applying_remote = False
        self._offline_changes = False
        self._last_fingerprint: str | None = None
        self._last_version: int | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def origin_id(self) -> str:
        return self._origin_id

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def error(self) -> str | None:
        """Short error text for the current status, if any."""
        return self._error

    @property
    def status_label(self) -> str:
        return _STATUS_LABELS[self._status]

    @property
    def last_version(self) -> int | None:
        """Version of the last state packet received; informational only."""
        return self._last_version

    @property
    def document(self) -> StageDocument:
        return self._document

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SyncAgent:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Begin connecting; returns immediately."""
        if self._task is not None:
            return
        if self._url is None:
            _logger.info("No sync URL resolved; sync unavailable")
            self._set_status(SyncStatus.UNAVAILABLE, UNAVAILABLE_ERROR)
            return

        if self._http is None:
            self._http = aiohttp.ClientSession()
        self._unsubscribe = self._document.subscribe(self._on_document_changed)
        self._task = asyncio.create_task(self._run(), name=f"stagesync-{self._origin_id}")

    async def close(self) -> None:
        """Cancel any pending reconnect, close the websocket and owned session."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            _logger.debug("Cleaning up websocket connection")
            await ws.close()

        if self._pending_sends:
            await asyncio.gather(*self._pending_sends, return_exceptions=True)

        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None

    async def drain(self) -> None:
        """Wait until every update handed to the transport has been written."""
        while self._pending_sends:
            await asyncio.gather(*list(self._pending_sends), return_exceptions=True)

    async def wait_for_status(self, status: SyncStatus, timeout_seconds: float) -> bool:
        """Wait until the agent enters *status*; ``False`` on timeout."""
        if self._status == status:
            return True
        waiter = asyncio.Event()
        self._status_waiters.setdefault(status, []).append(waiter)
        try:
            await asyncio.wait_for(waiter.wait(), timeout_seconds)
            return True
        except TimeoutError:
            return False
        finally:
            pending = self._status_waiters.get(status)
            if pending is not None:
                self._status_waiters[status] = [cand for cand in pending if cand is not waiter]
                if not self._status_waiters[status]:
                    self._status_waiters.pop(status, None)

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    def _set_status(self, status: SyncStatus, error: str | None = None) -> None:
        self._status = status
        self._error = error
        for waiter in self._status_waiters.pop(status, []):
            waiter.set()
        if self._on_status is not None:
            try:
                self._on_status(status, error)
            except Exception:
                _logger.exception("Status listener failed")

    async def _run(self) -> None:
        assert self._url is not None  # noqa: S101
        while True:
            await self._connect_once(self._url)
            _logger.debug("Connection closed, reconnecting in %.1fs", self._config.reconnect_delay)
            await asyncio.sleep(self._config.reconnect_delay)

    async def _connect_once(self, url: str) -> None:
        assert self._http is not None  # noqa: S101
        self._set_status(SyncStatus.CONNECTING)
        _logger.debug("Attempting to connect to %s", url)

        try:
            ws = await self._http.ws_connect(url)
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            _logger.info("Cannot reach sync server %s: %s", url, exc)
            self._set_status(SyncStatus.ERROR, TRANSPORT_ERROR)
            self._mark_closed()
            return

        self._ws = ws
        self._set_status(SyncStatus.CONNECTED)
        _logger.info("Connected to sync server %s", url)
        try:
            async with self._send_lock:
                # Offline edits go out before the state request so the
                # relay's answer already includes them.
                previous = self._last_fingerprint
                payload = self._take_offline_changes()
                if payload is not None:
                    try:
                        await ws.send_str(encode_update(payload, self._origin_id))
                    except (aiohttp.ClientError, ConnectionError):
                        self._offline_changes = True
                        self._last_fingerprint = previous
                        raise
                    _logger.info("Sent changes made while offline")
                await ws.send_str(encode_request_state(self._origin_id))
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.warning("Websocket error, marked as offline: %s", ws.exception())
                    self._set_status(SyncStatus.ERROR, TRANSPORT_ERROR)
        except (aiohttp.ClientError, ConnectionError) as exc:
            _logger.warning("Websocket failure, marked as offline: %s", exc)
            self._set_status(SyncStatus.ERROR, TRANSPORT_ERROR)
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()
            self._mark_closed()

    def _mark_closed(self) -> None:
        # An error recorded for this connection stays visible until the next attempt.
        if self._status != SyncStatus.ERROR:
            self._set_status(SyncStatus.DISCONNECTED)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_text(self, text: str) -> None:
        try:
            packet = parse_state_packet(text)
        except PayloadError as exc:
            _logger.warning("Failed to parse sync payload: %s", exc)
            return
        if packet is None:
            return
        if packet.origin_id == self._origin_id:
            # Our own update coming back: keep the version, never re-apply.
            self._last_version = packet.version
            return

        try:
            snapshot = deserialize_snapshot(packet.payload)
        except PayloadError as exc:
            _logger.warning("Dropping remote state from %s: %s", packet.origin_id, exc)
            return

        self._last_version = packet.version
        _logger.debug(
            "Received remote state origin=%s version=%d equipment=%d issues=%d",
            packet.origin_id,
            packet.version,
            len(snapshot.equipment),
            len(snapshot.issues),
        )
        self._apply_remote(snapshot)

    def _apply_remote(self, snapshot: Snapshot) -> None:
        self._applying_remote = True
        self._last_fingerprint = fingerprint(serialize_snapshot(snapshot))
        try:
            self._document.replace(snapshot)
        finally:
            asyncio.get_running_loop().call_soon(self._clear_applying_remote)

    def _clear_applying_remote(self) -> None:
        self._applying_remote = False

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _on_document_changed(self, snapshot: Snapshot) -> None:
        if self._applying_remote:
            return
        if self._status != SyncStatus.CONNECTED or self._ws is None:
            self._offline_changes = True
            return

        payload = self._changed_payload(snapshot)
        if payload is not None:
            self._spawn(self._send_update(payload))

    def _changed_payload(self, snapshot: Snapshot) -> dict[str, Any] | None:
        payload = serialize_snapshot(snapshot)
        digest = fingerprint(payload)
        if digest == self._last_fingerprint:
            return None
        # Recorded before the send so a slow socket never causes a duplicate.
        self._last_fingerprint = digest
        return payload

    def _take_offline_changes(self) -> dict[str, Any] | None:
        if not self._offline_changes:
            return None
        self._offline_changes = False
        return self._changed_payload(self._document.snapshot)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def _send_update(self, payload: dict[str, Any]) -> None:
        try:
            async with self._send_lock:
                ws = self._ws
                if ws is None or ws.closed:
                    raise SyncTransportError("websocket is not open", url=self._url or "")
                await ws.send_str(encode_update(payload, self._origin_id))
        except (SyncTransportError, aiohttp.ClientError, ConnectionError) as exc:
            _logger.warning("Failed to broadcast stage update: %s", exc)
            return
        _logger.debug(
            "Broadcasted stage update equipment=%d issues=%d",
            len(payload.get("equipment", [])),
            len(payload.get("issues", [])),
        )
