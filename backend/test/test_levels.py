"""오디오 레벨 / 음소거 판정 테스트."""

import asyncio

import numpy as np
import pytest

from voice_mesh.audio.context import get_audio_context
from voice_mesh.audio.levels import AudioLevelMonitor, rms_level, smooth
from voice_mesh.webrtc.registry import PeerConnectionRecord

from fakes import FakePeerConnection, make_stream

LOUD = np.full(512, 0.5, dtype=np.float32)
SILENT = np.zeros(512, dtype=np.float32)


class TestLevelMath:
    def test_rms_level(self) -> None:
        assert rms_level(SILENT) == 0.0
        assert rms_level(np.full(64, 0.1)) == pytest.approx(0.15)
        assert rms_level(np.ones(64)) == 1.0
        assert rms_level(np.array([])) == 0.0

    def test_smoothing_stays_in_range(self) -> None:
        rng = np.random.default_rng(7)
        level = 0.0
        for instant in rng.random(200):
            level = smooth(level, float(instant))
            assert 0.0 <= level <= 1.0

    @pytest.mark.parametrize("start", [0.0, 0.3, 0.9, 1.0])
    @pytest.mark.parametrize("target", [0.0, 0.4, 1.0])
    def test_smoothing_converges_monotonically(self, start, target) -> None:
        level = start
        for _ in range(50):
            previous = level
            level = smooth(previous, target)
            assert level <= max(previous, target) + 1e-12
            assert abs(level - target) <= abs(previous - target) + 1e-12
            if abs(previous - target) > 1e-9:
                assert abs(level - target) < abs(previous - target)
        assert level == pytest.approx(target, abs=1e-6)

    def test_smoothing_factor(self) -> None:
        assert smooth(0.0, 1.0) == pytest.approx(0.3)
        assert smooth(1.0, 0.0) == pytest.approx(0.7)


@pytest.fixture
def monitor(store, registry, config, audio_context):
    return AudioLevelMonitor(store, registry, config)


async def connected_peer(registry, peer_id: str, samples=None) -> PeerConnectionRecord:
    record = PeerConnectionRecord(peer_id=peer_id, pc=FakePeerConnection())
    record.connection_state = "connected"
    record.analyser = get_audio_context().create_analyser(peer_id)
    if samples is not None:
        record.analyser.push(samples)
    await registry.upsert(peer_id, record)
    return record


class TestRemoteMute:
    @pytest.mark.asyncio
    async def test_speaking_peer_is_unmuted(self, monitor, store, registry) -> None:
        store.upsert_participant("bob", "Bob")
        await connected_peer(registry, "bob", LOUD)

        for _ in range(5):
            monitor.sample_once()

        bob = store.get_participant("bob")
        assert bob.audio_level > 0.5
        assert bob.is_muted is False

    @pytest.mark.asyncio
    async def test_silent_peer_is_muted(self, monitor, store, registry) -> None:
        store.upsert_participant("bob", "Bob")
        await connected_peer(registry, "bob", SILENT)

        monitor.sample_once()

        assert store.get_participant("bob").is_muted is True

    @pytest.mark.asyncio
    async def test_explicit_mute_wins_over_audio(self, monitor, store, registry) -> None:
        store.upsert_participant("bob", "Bob")
        store.set_explicit_mute("bob", True)
        await connected_peer(registry, "bob", LOUD)

        monitor.sample_once()

        bob = store.get_participant("bob")
        assert bob.is_muted is True
        assert bob.audio_level > 0.0

    @pytest.mark.asyncio
    async def test_explicit_unmute_wins_over_silence(self, monitor, store, registry) -> None:
        store.upsert_participant("bob", "Bob")
        store.set_explicit_mute("bob", False)
        await connected_peer(registry, "bob", SILENT)

        monitor.sample_once()

        assert store.get_participant("bob").is_muted is False

    @pytest.mark.asyncio
    async def test_unconnected_peer(self, monitor, store, registry) -> None:
        store.upsert_participant("bob", "Bob")
        store.upsert_participant("carol", "Carol")
        store.set_explicit_mute("carol", False)
        record = await connected_peer(registry, "bob", LOUD)
        record.connection_state = "connecting"

        monitor.sample_once()

        assert store.get_participant("bob").is_muted is True
        assert store.get_participant("bob").audio_level == 0.0
        assert store.get_participant("carol").is_muted is False
        assert monitor.level("bob") == 0.0


class TestLocalMute:
    @pytest.mark.asyncio
    async def test_local_level_follows_track_enabled(self, monitor, store) -> None:
        stream = make_stream()
        analyser = get_audio_context().create_analyser("local")
        analyser.push(LOUD)
        monitor.set_local_source(stream, analyser)
        store.upsert_participant("alice", "Alice")

        monitor.sample_once()
        alice = store.get_participant("alice")
        assert alice.is_muted is False
        assert alice.audio_level > 0.0

        stream.set_enabled(False)
        monitor.sample_once()
        alice = store.get_participant("alice")
        assert alice.is_muted is True
        assert alice.audio_level == 0.0

        await monitor.clear_local_source()
        assert not analyser.connected
        stream.stop()

    @pytest.mark.asyncio
    async def test_no_local_stream_is_muted(self, monitor, store) -> None:
        store.upsert_participant("alice", "Alice")

        monitor.sample_once()

        assert store.get_participant("alice").is_muted is True

    @pytest.mark.asyncio
    async def test_periodic_sampling(self, monitor, store, registry, config) -> None:
        store.upsert_participant("bob", "Bob")
        await connected_peer(registry, "bob", LOUD)

        monitor.start()
        await asyncio.sleep(config.AUDIO_SAMPLE_INTERVAL * 5)
        await monitor.stop()

        assert store.get_participant("bob").audio_level > 0.0
