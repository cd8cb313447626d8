"""Relay behavior exercised over real websockets."""

from __future__ import annotations

import asyncio
import json
import socket
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils

from _harness import eventually, running_relay
from stagesync.relay import RelayHub


def _update(payload: Any, origin: str | None = "client-a") -> str:
    message: dict[str, Any] = {"type": "stage:update", "payload": payload}
    if origin is not None:
        message["originId"] = origin
    return json.dumps(message)


@pytest.mark.asyncio
async def test_no_push_on_connect_without_snapshot() -> None:
    async with running_relay() as (hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            await ws.send_str(json.dumps({"type": "stage:request-state", "originId": "client-a"}))
            with pytest.raises(TimeoutError):
                await ws.receive(timeout=0.2)
        assert not hub.store.has_snapshot


@pytest.mark.asyncio
async def test_update_is_broadcast_and_acknowledged() -> None:
    payload = {"equipment": [], "issues": [{"id": "i1", "status": "problem-detected"}]}
    async with running_relay() as (_hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as sender, http.ws_connect(url) as peer:
            await sender.send_str(_update(payload))

            broadcast = await peer.receive_json(timeout=1.0)
            ack = await sender.receive_json(timeout=1.0)

    expected = {"type": "stage:state", "payload": payload, "version": 1, "originId": "client-a"}
    assert broadcast == expected
    assert ack == expected


@pytest.mark.asyncio
async def test_update_without_origin_is_tagged_server() -> None:
    async with running_relay() as (_hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            await ws.send_str(_update({"issues": []}, origin=None))
            ack = await ws.receive_json(timeout=1.0)
    assert ack["originId"] == "server"


@pytest.mark.asyncio
async def test_new_peer_receives_latest_snapshot() -> None:
    async with running_relay() as (hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as sender:
            await sender.send_str(_update({"issues": [{"id": "old"}]}))
            await sender.receive_json(timeout=1.0)
            await sender.send_str(_update({"issues": [{"id": "new"}]}))
            await sender.receive_json(timeout=1.0)

        async with http.ws_connect(url) as late:
            pushed = await late.receive_json(timeout=1.0)

        assert hub.store.version == 2
    assert pushed == {"type": "stage:state", "payload": {"issues": [{"id": "new"}]}, "version": 2, "originId": "server"}


@pytest.mark.asyncio
async def test_request_state_answers_requester_only() -> None:
    async with running_relay() as (_hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as sender:
            await sender.send_str(_update({"issues": []}))
            await sender.receive_json(timeout=1.0)

            async with http.ws_connect(url) as asker:
                await asker.receive_json(timeout=1.0)  # initial push
                await asker.send_str(json.dumps({"type": "stage:request-state", "originId": "client-b"}))
                answer = await asker.receive_json(timeout=1.0)
                assert answer["version"] == 1
                assert answer["originId"] == "server"

                with pytest.raises(TimeoutError):
                    await sender.receive(timeout=0.2)


@pytest.mark.asyncio
async def test_identical_updates_still_bump_version() -> None:
    async with running_relay() as (hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            for _ in range(3):
                await ws.send_str(_update({"issues": []}))
                await ws.receive_json(timeout=1.0)
        assert hub.store.version == 3


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped_and_connection_kept() -> None:
    async with running_relay() as (hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            await ws.send_str(_update({"issues": [{"id": "keep"}]}))
            await ws.receive_json(timeout=1.0)

            await ws.send_str("this is not json")
            await ws.send_str(json.dumps({"type": "stage:update"}))
            await ws.send_str(json.dumps({"type": "stage:whatever", "payload": {}}))
            await ws.send_bytes(b"\x00\x01")

            await ws.send_str(json.dumps({"type": "stage:request-state"}))
            answer = await ws.receive_json(timeout=1.0)

        assert hub.store.version == 1
    assert answer["payload"] == {"issues": [{"id": "keep"}]}


@pytest.mark.asyncio
async def test_disconnect_only_drops_that_peer() -> None:
    async with running_relay() as (hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as stays:
            async with http.ws_connect(url):
                pass
            await stays.send_str(_update({"issues": []}))
            ack = await stays.receive_json(timeout=1.0)
            assert ack["version"] == 1
            await eventually(lambda: hub.peer_count == 1)


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    async with running_relay() as (_hub, server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            await ws.send_str(_update({"issues": []}))
            await ws.receive_json(timeout=1.0)

            async with http.get(server.make_url("/health")) as resp:
                body = await resp.json()

    assert body == {"status": "ok", "version": 1, "peers": 1, "hasSnapshot": True}


@pytest.mark.asyncio
async def test_numeric_origin_is_echoed_as_text() -> None:
    async with running_relay() as (_hub, _server, url), aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            await ws.send_str(json.dumps({"type": "stage:update", "payload": {"issues": []}, "originId": 7}))
            ack = await ws.receive_json(timeout=1.0)
    assert ack["version"] == 1
    assert ack["originId"] == "7"


_HANDSHAKE = (
    b"GET / HTTP/1.1\r\n"
    b"Host: localhost\r\n"
    b"Upgrade: websocket\r\n"
    b"Connection: Upgrade\r\n"
    b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n"
    b"Sec-WebSocket-Version: 13\r\n"
    b"\r\n"
)


async def _open_silent_peer(server: test_utils.TestServer) -> asyncio.StreamWriter:
    """Complete a websocket handshake on a tiny receive buffer and never read."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 4096)
    sock.setblocking(False)
    await asyncio.get_running_loop().sock_connect(sock, (server.host, server.port))
    _reader, writer = await asyncio.open_connection(sock=sock, limit=1024)
    writer.write(_HANDSHAKE)
    await writer.drain()
    return writer


@pytest.mark.asyncio
async def test_peer_that_stops_reading_is_dropped() -> None:
    hub = RelayHub(queue_size=4, send_timeout=0.5)
    blob = "x" * 1_000_000
    async with running_relay(hub) as (_hub, server, url), aiohttp.ClientSession() as http:
        silent = await _open_silent_peer(server)
        try:
            await eventually(lambda: hub.peer_count == 1)
            async with http.ws_connect(url) as sender:
                for n in range(20):
                    await sender.send_str(_update({"issues": [{"id": f"i{n}", "blob": blob}]}))
                    ack = await sender.receive_json(timeout=5.0)
                    assert ack["version"] == n + 1

                # Only the sender is left once the silent peer is cut off.
                await eventually(lambda: hub.peer_count == 1, timeout=5.0)

                async with http.ws_connect(url) as late:
                    pushed = await late.receive_json(timeout=5.0)
                assert pushed["version"] == 20
                assert pushed["payload"]["issues"][0]["id"] == "i19"
        finally:
            silent.close()
