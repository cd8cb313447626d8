"""In-memory websocket relay for the shared stage snapshot.

Keeps the most recent snapshot and rebroadcasts every accepted update to
all connected peers. One relay serves one document; nothing is persisted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from aiohttp import WSCloseCode, WSMsgType, web

from stagesync._constants import PEER_QUEUE_SIZE, PEER_SEND_TIMEOUT_SECONDS
from stagesync.config import RelayConfig
from stagesync.exceptions import PayloadError
from stagesync.protocol import UpdateMessage, encode_state, parse_inbound
from stagesync.state.store import SnapshotStore

_logger = logging.getLogger(__name__)


class _Peer:
    """One connected websocket plus its outbound queue and writer task."""

    def __init__(self, ws: web.WebSocketResponse, request: web.Request, queue_size: int) -> None:
        self.ws = ws
        self.remote = request.remote
        self.transport = request.transport
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self.writer: asyncio.Task[None] | None = None


class RelayHub:
    """Fans snapshot updates out to every connected peer.

    Packets are built and queued while holding the store lock, so every
    peer receives updates in the order the relay accepted them. Each peer
    has its own writer task; a peer that stops reading is dropped once its
    queue overflows or a single send exceeds ``send_timeout``.
    """

    def __init__(
        self,
        store: SnapshotStore | None = None,
        *,
        queue_size: int = PEER_QUEUE_SIZE,
        send_timeout: float = PEER_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store if store is not None else SnapshotStore()
        self._peers: dict[web.WebSocketResponse, _Peer] = {}
        self._queue_size = queue_size
        self._send_timeout = send_timeout

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def peer_count(self) -> int:
        return len(self._peers)

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        peer = _Peer(ws, request, self._queue_size)
        peer.writer = asyncio.create_task(self._write_loop(peer), name=f"stagesync-peer-{request.remote}")
        async with self._store.locked() as store:
            self._peers[ws] = peer
            snapshot, version = store.current_locked()
            if snapshot is not None:
                self._enqueue(peer, encode_state(snapshot, version))
        _logger.info("Peer connected remote=%s peers=%d", peer.remote, len(self._peers))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_text(peer, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    _logger.warning("Ignoring binary frame (%d bytes) from %s", len(msg.data), peer.remote)
                elif msg.type == WSMsgType.ERROR:
                    _logger.warning("Peer connection error remote=%s: %s", peer.remote, ws.exception())
        finally:
            self._peers.pop(ws, None)
            peer.writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await peer.writer
            _logger.info("Peer disconnected remote=%s peers=%d", peer.remote, len(self._peers))
        return ws

    async def _handle_text(self, sender: _Peer, text: str) -> None:
        try:
            message = parse_inbound(text)
        except PayloadError as exc:
            _logger.warning("Dropping malformed frame: %s", exc)
            return

        if isinstance(message, UpdateMessage):
            async with self._store.locked() as store:
                version = store.replace_locked(message.payload)
                packet = encode_state(message.payload, version, message.origin_id)
                for peer in list(self._peers.values()):
                    if peer is not sender:
                        self._enqueue(peer, packet)
                # Acknowledge the sender with the authoritative version.
                self._enqueue(sender, packet)
            _logger.debug(
                "Accepted update origin=%s version=%d peers=%d",
                message.origin_id,
                version,
                len(self._peers),
            )
            return

        async with self._store.locked() as store:
            snapshot, version = store.current_locked()
            if snapshot is not None:
                self._enqueue(sender, encode_state(snapshot, version))

    def _enqueue(self, peer: _Peer, packet: str) -> None:
        if peer.ws.closed:
            return
        try:
            peer.outbox.put_nowait(packet)
        except asyncio.QueueFull:
            _logger.warning(
                "Peer %s is not reading (%d packets queued), dropping it",
                peer.remote,
                peer.outbox.qsize(),
            )
            self._drop(peer)

    async def _write_loop(self, peer: _Peer) -> None:
        while True:
            packet = await peer.outbox.get()
            if peer.ws.closed:
                return
            try:
                await asyncio.wait_for(peer.ws.send_str(packet), self._send_timeout)
            except TimeoutError:
                _logger.warning("Send to peer %s timed out, dropping it", peer.remote)
                self._drop(peer)
                return
            except ConnectionError as exc:
                _logger.warning("Send to peer %s failed, dropping it: %s", peer.remote, exc)
                self._drop(peer)
                return

    def _drop(self, peer: _Peer) -> None:
        self._peers.pop(peer.ws, None)
        # Aborting ends the peer's read loop, which cleans up the writer.
        if peer.transport is not None:
            peer.transport.abort()

    async def handle_health(self, _request: web.Request) -> web.Response:
        async with self._store.locked() as store:
            snapshot, version = store.current_locked()
        return web.json_response(
            {
                "status": "ok",
                "version": version,
                "peers": len(self._peers),
                "hasSnapshot": snapshot is not None,
            }
        )

    async def close_peers(self) -> None:
        for peer in list(self._peers.values()):
            if peer.writer is not None:
                peer.writer.cancel()
            try:
                await asyncio.wait_for(
                    peer.ws.close(code=WSCloseCode.GOING_AWAY, message=b"relay shutting down"),
                    self._send_timeout,
                )
            except TimeoutError:
                self._drop(peer)
        self._peers.clear()


HUB_KEY = web.AppKey("stagesync_hub", RelayHub)


async def _on_shutdown(app: web.Application) -> None:
    await app[HUB_KEY].close_peers()


def create_app(hub: RelayHub | None = None) -> web.Application:
    """Build the relay application: websocket on any path, ``GET /health``."""
    hub = hub if hub is not None else RelayHub()
    app = web.Application()
    app[HUB_KEY] = hub
    app.router.add_get("/health", hub.handle_health)
    app.router.add_get("/{tail:.*}", hub.handle_websocket)
    app.on_shutdown.append(_on_shutdown)
    return app


async def run_relay(config: RelayConfig, *, stop_event: asyncio.Event | None = None) -> None:
    """Serve the relay until *stop_event* is set or the task is cancelled."""
    app = create_app()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    _logger.info(
        "Listening on ws://%s:%d (set STAGE_SYNC_PORT to override)",
        config.host,
        config.port,
    )
    try:
        await (stop_event or asyncio.Event()).wait()
    finally:
        await runner.cleanup()
        _logger.info("Relay stopped")
