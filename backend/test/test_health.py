"""HealthMonitor 테스트 (제한된 재연결)."""

import asyncio

import pytest
import pytest_asyncio

from voice_mesh.signaling.messages import SessionDescription
from voice_mesh.webrtc.health import FAILED, HEALTHY, PENDING, RECONNECTING, HealthMonitor
from voice_mesh.webrtc.lifecycle import ConnectionLifecycleManager

from fakes import fast_config

OFFER = SessionDescription(sdp="v=0 remote-offer", type="offer")


@pytest.fixture
def config():
    # 주기 체크가 테스트 중간에 끼어들지 않도록 간격을 길게 둠
    return fast_config(HEALTH_CHECK_INTERVAL=10.0, RECONNECT_DELAY=0.01, MAX_RECONNECT_ATTEMPTS=3)


@pytest.fixture
def lifecycle(registry, adapter, store, config, pc_factory):
    return ConnectionLifecycleManager(registry, adapter, store, config, pc_factory=pc_factory)


@pytest_asyncio.fixture
async def monitor(registry, lifecycle, store, config):
    monitor = HealthMonitor(registry, lifecycle, store, config, clock=lambda: 42.0)
    lifecycle.on_connection_failed(monitor.on_peer_failed)
    monitor.start()
    yield monitor
    await monitor.stop()


@pytest_asyncio.fixture
async def slow_monitor(registry, lifecycle, store):
    """재연결 대기 중에 다른 이벤트를 끼워 넣을 수 있도록 지연을 늘린 모니터."""
    monitor = HealthMonitor(
        registry, lifecycle, store,
        fast_config(HEALTH_CHECK_INTERVAL=10.0, RECONNECT_DELAY=0.1),
    )
    monitor.start()
    yield monitor
    await monitor.stop()


async def wait_reconnect(monitor: HealthMonitor, peer_id: str) -> None:
    await monitor._reconnects[peer_id].wait()


class TestCheckPeer:
    @pytest.mark.asyncio
    async def test_missing_peer(self, monitor) -> None:
        assert await monitor.check_peer("nobody") is None

    @pytest.mark.asyncio
    async def test_pending_while_connecting(self, monitor, lifecycle, registry) -> None:
        await lifecycle.initiate("bob")

        assert await monitor.check_peer("bob") == PENDING
        assert registry.get("bob").last_health_check_at == 42.0

    @pytest.mark.asyncio
    async def test_healthy_resets_attempts(self, monitor, lifecycle, registry) -> None:
        await lifecycle.initiate("bob")
        registry.get("bob").connection_state = "failed"
        assert await monitor.check_peer("bob") == RECONNECTING
        await wait_reconnect(monitor, "bob")

        record = registry.get("bob")
        assert record.reconnect_attempts == 1
        record.connection_state = "connected"
        record.ice_connection_state = "completed"

        assert await monitor.check_peer("bob") == HEALTHY
        assert monitor.attempts("bob") == 0
        assert record.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_ice_disconnected_is_unhealthy(self, monitor, lifecycle, registry) -> None:
        await lifecycle.initiate("bob")
        registry.get("bob").ice_connection_state = "disconnected"

        assert await monitor.check_peer("bob") == RECONNECTING
        assert "bob" not in registry
        assert monitor.pending_reconnects() == ["bob"]


class TestBoundedReconnect:
    @pytest.mark.asyncio
    async def test_three_reconnects_then_terminal_error(self, monitor, lifecycle, registry, store, pc_factory) -> None:
        """실패 → 재연결 1, 2, 3회 → 네 번째 실패에서 포기."""
        await lifecycle.initiate("bob")

        for attempt in (1, 2, 3):
            await pc_factory.last.set_state(connection="failed")
            assert "bob" not in registry
            await wait_reconnect(monitor, "bob")
            assert registry.get("bob").reconnect_attempts == attempt

        registry.get("bob").connection_state = "failed"
        assert await monitor.check_peer("bob") == FAILED

        assert "bob" not in registry
        assert monitor.pending_reconnects() == []
        assert len(pc_factory.created) == 4
        assert store.connection_error == "Connection to bob failed after 3 reconnect attempts"

    @pytest.mark.asyncio
    async def test_zero_attempts_fails_immediately(self, registry, lifecycle, store) -> None:
        monitor = HealthMonitor(registry, lifecycle, store, fast_config(MAX_RECONNECT_ATTEMPTS=0))
        await lifecycle.initiate("bob")
        registry.get("bob").connection_state = "failed"

        assert await monitor.check_peer("bob") == FAILED


    @pytest.mark.asyncio
    async def test_ice_and_connection_failure_count_once(self, monitor, lifecycle, registry, pc_factory) -> None:
        """ICE와 connection이 동시에 failed가 되어도 재시도는 한 번만 증가."""
        await lifecycle.initiate("bob")
        pc = pc_factory.last
        pc.close_gate = asyncio.Event()
        pc.iceConnectionState = "failed"
        pc.connectionState = "failed"

        events = asyncio.gather(pc.emit("iceconnectionstatechange"), pc.emit("connectionstatechange"))
        await asyncio.sleep(0.01)
        assert monitor.attempts("bob") == 1

        pc.close_gate.set()
        await events
        await wait_reconnect(monitor, "bob")

        assert monitor.attempts("bob") == 1
        assert registry.get("bob").reconnect_attempts == 1
        assert len(pc_factory.created) == 2

    @pytest.mark.asyncio
    async def test_concurrent_checks_while_disposing(self, monitor, lifecycle, registry, pc_factory) -> None:
        await lifecycle.initiate("bob")
        pc_factory.last.close_gate = asyncio.Event()
        registry.get("bob").connection_state = "failed"

        first = asyncio.ensure_future(monitor.check_peer("bob"))
        await asyncio.sleep(0)
        second = await monitor.check_peer("bob")
        pc_factory.last.close_gate.set()

        assert await first == RECONNECTING
        assert second is None
        assert monitor.attempts("bob") == 1


class TestDelayedReconnect:
    @pytest.mark.asyncio
    async def test_skipped_when_peer_reappeared(self, slow_monitor, lifecycle, registry, transport, pc_factory) -> None:
        """대기 중 offer로 레코드가 다시 생기면 예약된 재연결은 initiate하지 않음."""
        await lifecycle.initiate("bob")
        registry.get("bob").connection_state = "failed"
        assert await slow_monitor.check_peer("bob") == RECONNECTING

        assert await lifecycle.accept_offer("bob", OFFER) is True
        answering_pc = registry.get("bob").pc
        await wait_reconnect(slow_monitor, "bob")

        assert registry.get("bob").pc is answering_pc
        assert len(pc_factory.created) == 2
        assert len(transport.payloads("voice_offer")) == 1


class TestStopAndForget:
    @pytest.mark.asyncio
    async def test_stop_cancels_scheduled_reconnect(self, monitor, lifecycle, registry, pc_factory) -> None:
        await lifecycle.initiate("bob")
        registry.get("bob").connection_state = "failed"
        await monitor.check_peer("bob")
        task = monitor._reconnects["bob"]

        await monitor.stop()
        await task.wait()

        assert monitor.pending_reconnects() == []
        assert "bob" not in registry
        assert len(pc_factory.created) == 1

    @pytest.mark.asyncio
    async def test_failure_event_ignored_when_stopped(self, monitor, lifecycle, registry, pc_factory) -> None:
        await monitor.stop()
        await lifecycle.initiate("bob")

        await pc_factory.last.set_state(connection="failed")

        assert "bob" in registry
        assert registry.get("bob").connection_state == "failed"

    @pytest.mark.asyncio
    async def test_forget_clears_history(self, monitor, lifecycle, registry) -> None:
        await lifecycle.initiate("bob")
        registry.get("bob").connection_state = "failed"
        await monitor.check_peer("bob")

        monitor.forget("bob")

        assert monitor.attempts("bob") == 0
        assert "bob" not in monitor._reconnects

    @pytest.mark.asyncio
    async def test_check_all_visits_every_record(self, monitor, lifecycle, registry) -> None:
        for peer in ("bob", "carol"):
            await lifecycle.initiate(peer)
        registry.get("carol").connection_state = "failed"

        await monitor.check_all()

        assert registry.get("bob").last_health_check_at == 42.0
        assert monitor.attempts("carol") == 1
