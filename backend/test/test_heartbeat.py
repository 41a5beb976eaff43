"""HeartbeatPublisher 테스트."""

import asyncio

import pytest

from voice_mesh.webrtc.heartbeat import HeartbeatPublisher
from voice_mesh.webrtc.registry import PeerConnectionRecord

from fakes import FakePeerConnection


async def add_record(registry, peer_id: str, connection: str, ice: str) -> None:
    record = PeerConnectionRecord(peer_id=peer_id, pc=FakePeerConnection())
    record.connection_state = connection
    record.ice_connection_state = ice
    await registry.upsert(peer_id, record)


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_snapshot(self, registry, adapter, config) -> None:
        await add_record(registry, "bob", "connected", "completed")
        await add_record(registry, "carol", "connecting", "checking")
        publisher = HeartbeatPublisher(registry, adapter, config)

        assert publisher.build_snapshot() == {
            "bob": {"connectionState": "connected", "iceConnectionState": "completed"},
            "carol": {"connectionState": "connecting", "iceConnectionState": "checking"},
        }

    @pytest.mark.asyncio
    async def test_publish_once(self, registry, adapter, transport, config) -> None:
        await add_record(registry, "bob", "connected", "connected")
        publisher = HeartbeatPublisher(registry, adapter, config)

        assert await publisher.publish_once() is True

        payload = transport.payloads("voice_heartbeat")[0]
        assert payload["roomId"] == "room-1"
        assert payload["userId"] == "alice"
        assert payload["connectionStates"]["bob"]["iceConnectionState"] == "connected"

    @pytest.mark.asyncio
    async def test_nothing_sent_without_connections(self, registry, adapter, transport, config) -> None:
        publisher = HeartbeatPublisher(registry, adapter, config)

        assert await publisher.publish_once() is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_periodic_publish(self, registry, adapter, transport, config) -> None:
        await add_record(registry, "bob", "connected", "connected")
        publisher = HeartbeatPublisher(registry, adapter, config)

        publisher.start()
        await asyncio.sleep(config.HEARTBEAT_INTERVAL * 4)
        await publisher.stop()

        assert not publisher.running
        assert len(transport.payloads("voice_heartbeat")) >= 2
