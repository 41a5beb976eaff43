"""공통 pytest 픽스처."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from voice_mesh.audio.context import close_audio_context, get_audio_context
from voice_mesh.session.state import VoiceSessionStore
from voice_mesh.signaling.adapter import SignalingAdapter
from voice_mesh.webrtc.registry import PeerConnectionRegistry

from fakes import FakeTransport, PeerConnectionFactory, fast_config


@pytest_asyncio.fixture
async def audio_context():
    """테스트용 오디오 컨텍스트. 테스트가 끝나면 종료합니다."""
    context = get_audio_context()
    yield context
    await close_audio_context()


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def adapter(transport):
    return SignalingAdapter(transport, room_id="room-1", user_id="alice")


@pytest.fixture
def store():
    return VoiceSessionStore("alice", can_transmit=True)


@pytest.fixture
def registry():
    return PeerConnectionRegistry()


@pytest.fixture
def pc_factory():
    return PeerConnectionFactory()
