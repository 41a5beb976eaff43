"""PeerConnectionRegistry 테스트."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voice_mesh.webrtc.registry import PeerConnectionRecord, PeerConnectionRegistry

from fakes import FakePeerConnection


def make_record(peer_id: str, **kwargs) -> PeerConnectionRecord:
    return PeerConnectionRecord(peer_id=peer_id, pc=FakePeerConnection(**kwargs))


class TestUpsert:
    @pytest.mark.asyncio
    async def test_insert_and_get(self, registry) -> None:
        record = make_record("bob")
        await registry.upsert("bob", record)

        assert registry.get("bob") is record
        assert "bob" in registry
        assert len(registry) == 1
        assert registry.is_current(record)

    @pytest.mark.asyncio
    async def test_replacing_disposes_previous(self, registry) -> None:
        old, new = make_record("bob"), make_record("bob")
        await registry.upsert("bob", old)
        await registry.upsert("bob", new)

        assert registry.get("bob") is new
        assert old.disposed and old.pc.closed
        assert not new.disposed
        assert not registry.is_current(old)

    @pytest.mark.asyncio
    async def test_previous_is_released_before_insert(self, registry) -> None:
        old, new = make_record("bob"), make_record("bob")
        old.pc.close_gate = asyncio.Event()
        await registry.upsert("bob", old)

        replacing = asyncio.ensure_future(registry.upsert("bob", new))
        await asyncio.sleep(0)

        assert registry.get("bob") is None
        assert not old.pc.closed

        old.pc.close_gate.set()
        await replacing

        assert old.released and old.pc.closed
        assert registry.get("bob") is new

    @pytest.mark.asyncio
    async def test_peer_id_mismatch_raises(self, registry) -> None:
        with pytest.raises(ValueError):
            await registry.upsert("carol", make_record("bob"))

    def test_generation_increases(self) -> None:
        first, second = make_record("bob"), make_record("bob")
        assert second.generation > first.generation


class TestDispose:
    @pytest.mark.asyncio
    async def test_remove_and_dispose_releases_everything(self, registry) -> None:
        record = make_record("bob")
        record.remote_sink = AsyncMock()
        record.analyser = AsyncMock()
        await registry.upsert("bob", record)

        assert await registry.remove_and_dispose("bob") is True

        assert "bob" not in registry
        assert record.pc.closed
        record.remote_sink.stop.assert_awaited_once()
        record.analyser.disconnect.assert_awaited_once()
        assert record.states() == {"connectionState": "closed", "iceConnectionState": "closed"}

    @pytest.mark.asyncio
    async def test_failing_step_does_not_block_others(self, registry) -> None:
        record = make_record("bob", fail_on={"close"})
        record.remote_sink = AsyncMock()
        record.remote_sink.stop.side_effect = RuntimeError("sink")
        record.analyser = AsyncMock()
        await registry.upsert("bob", record)

        await registry.remove_and_dispose("bob")

        record.analyser.disconnect.assert_awaited_once()
        assert "bob" not in registry

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self) -> None:
        record = make_record("bob")
        record.analyser = AsyncMock()

        await record.dispose()
        await record.dispose()

        record.analyser.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_unknown_returns_false(self, registry) -> None:
        assert await registry.remove_and_dispose("nobody") is False

    @pytest.mark.asyncio
    async def test_dispose_all(self, registry) -> None:
        records = [make_record(peer) for peer in ("bob", "carol", "dave")]
        for record in records:
            await registry.upsert(record.peer_id, record)

        await registry.dispose_all()

        assert len(registry) == 0
        assert all(r.pc.closed for r in records)


    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_release(self, registry) -> None:
        """해제 도중 호출자가 취소되어도 dispose_all 이후 모든 리소스가 해제됨."""
        record = make_record("bob")
        record.remote_sink = AsyncMock()
        record.analyser = AsyncMock()
        record.pc.close_gate = asyncio.Event()
        await registry.upsert("bob", record)

        caller = asyncio.ensure_future(registry.remove_and_dispose("bob"))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        assert "bob" not in registry
        assert not record.released

        record.pc.close_gate.set()
        await registry.dispose_all()

        assert record.released
        assert record.pc.closed
        record.remote_sink.stop.assert_awaited_once()
        record.analyser.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_removed_before_release_finishes(self, registry) -> None:
        record = make_record("bob")
        record.pc.close_gate = asyncio.Event()
        await registry.upsert("bob", record)

        caller = asyncio.ensure_future(registry.remove_and_dispose("bob"))
        await asyncio.sleep(0)

        assert registry.get("bob") is None
        assert record.disposed

        record.pc.close_gate.set()
        assert await caller is True


class TestIteration:
    @pytest.mark.asyncio
    async def test_records_is_a_snapshot(self, registry) -> None:
        for peer in ("bob", "carol"):
            await registry.upsert(peer, make_record(peer))

        seen = []
        for record in registry.records():
            seen.append(record.peer_id)
            await registry.remove_and_dispose(record.peer_id)

        assert sorted(seen) == ["bob", "carol"]
        assert registry.peer_ids() == []

    @pytest.mark.asyncio
    async def test_for_each(self, registry) -> None:
        await registry.upsert("bob", make_record("bob"))

        registry.for_each(lambda r: setattr(r, "reconnect_attempts", 2))

        assert registry.get("bob").reconnect_attempts == 2
