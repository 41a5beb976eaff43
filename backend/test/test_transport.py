"""WebSocketSignalingTransport 테스트 (로컬 릴레이 서버 사용)."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import websockets

from voice_mesh.signaling.transport import SignalingTransportError, WebSocketSignalingTransport


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def relay():
    received = []
    connections = []

    async def handler(ws):
        connections.append(ws)
        async for raw in ws:
            received.append(json.loads(raw))

    server = await websockets.serve(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield SimpleNamespace(url=f"ws://127.0.0.1:{port}", received=received, connections=connections)
    server.close()
    await server.wait_closed()


@pytest.fixture
def callbacks():
    return SimpleNamespace(message=AsyncMock(), connect=AsyncMock(), disconnect=AsyncMock())


def make_transport(url: str, callbacks) -> WebSocketSignalingTransport:
    transport = WebSocketSignalingTransport(url, reconnect_delay=0.01, max_reconnect_delay=0.05)
    transport.set_handlers(
        on_message=callbacks.message,
        on_connect=callbacks.connect,
        on_disconnect=callbacks.disconnect,
    )
    return transport


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_emit_and_receive(self, relay, callbacks) -> None:
        transport = make_transport(relay.url, callbacks)
        await transport.connect()
        await wait_for(lambda: transport.connected)
        callbacks.connect.assert_awaited_once()

        await transport.emit("join_voice", {"roomId": "room-1", "userId": "alice", "username": "앨리스"})
        await wait_for(lambda: relay.received)
        assert relay.received[0] == {
            "type": "join_voice",
            "data": {"roomId": "room-1", "userId": "alice", "username": "앨리스"},
        }

        await relay.connections[0].send("not json")
        await relay.connections[0].send(json.dumps({"data": {}}))
        await relay.connections[0].send(json.dumps({"type": "user_joined_voice", "data": {"userId": "bob"}}))
        await wait_for(lambda: callbacks.message.await_count)
        callbacks.message.assert_awaited_once_with("user_joined_voice", {"userId": "bob"})

        await transport.disconnect()
        assert not transport.connected
        callbacks.disconnect.assert_awaited_once_with(True)

    @pytest.mark.asyncio
    async def test_emit_without_connection_raises(self, callbacks) -> None:
        transport = make_transport("ws://127.0.0.1:9", callbacks)

        with pytest.raises(SignalingTransportError):
            await transport.emit("leave_voice", {})

    @pytest.mark.asyncio
    async def test_reconnects_after_relay_drop(self, relay, callbacks) -> None:
        transport = make_transport(relay.url, callbacks)
        await transport.connect()
        await wait_for(lambda: transport.connected)

        await relay.connections[0].close()
        await wait_for(lambda: callbacks.disconnect.await_count == 1)
        callbacks.disconnect.assert_awaited_once_with(False)

        await wait_for(lambda: callbacks.connect.await_count == 2)
        assert transport.connected
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_while_retrying(self, callbacks) -> None:
        transport = make_transport("ws://127.0.0.1:9", callbacks)
        await transport.connect()
        await asyncio.sleep(0.05)

        await transport.disconnect()

        assert not transport.connected
        callbacks.connect.assert_not_awaited()
        callbacks.disconnect.assert_not_awaited()
