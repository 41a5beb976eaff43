"""오디오 레벨 모니터 모듈.

참가자별 오디오 레벨을 주기적으로 샘플링하여 평활화하고, 음소거 여부를
판정해 세션 상태에 반영합니다.

Level Calculation:
    instant  = min(1, rms(time_domain) * 1.5)
    smoothed = 0.7 * previous + 0.3 * instant

Mute Precedence:
    1. 로컬 사용자: 활성화된 오디오 트랙이 없으면 음소거
    2. 원격 사용자: 명시적 voice_mute_changed 메시지
    3. 원격 사용자: smoothed < SILENCE_THRESHOLD 이면 음소거로 판정
    4. 연결되지 않은 원격 사용자(명시적 메시지 없음): 음소거, 레벨 0
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from ..session.state import VoiceSessionStore
from ..shared.scheduling import PeriodicTask
from ..webrtc.config import MeshConfig, mesh_config
from .context import AudioAnalyser

if TYPE_CHECKING:
    from ..webrtc.registry import PeerConnectionRegistry
    from ..webrtc.tracks import LocalAudioStream

logger = logging.getLogger(__name__)

LEVEL_GAIN = 1.5
SMOOTHING_FACTOR = 0.7


def rms_level(samples: np.ndarray) -> float:
    """시간 영역 샘플의 순간 레벨 [0, 1]."""
    samples = np.asarray(samples, dtype=np.float32)
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return min(1.0, rms * LEVEL_GAIN)


def smooth(previous: float, instant: float, factor: float = SMOOTHING_FACTOR) -> float:
    """지수 평활화. 두 입력이 [0, 1]이면 결과도 [0, 1]."""
    return previous * factor + instant * (1.0 - factor)


class AudioLevelMonitor:
    """참가자 오디오 레벨 / 음소거 샘플러.

    Attributes:
        store (VoiceSessionStore): 결과를 반영할 세션 상태
        registry (PeerConnectionRegistry): 원격 피어 분석기 조회

    Examples:
        >>> monitor = AudioLevelMonitor(store, registry)
        >>> monitor.set_local_source(stream, context.create_analyser("local", stream.primary_track))
        >>> monitor.start()
    """

    def __init__(
        self,
        store: VoiceSessionStore,
        registry: "PeerConnectionRegistry",
        config: MeshConfig = mesh_config,
    ):
        self.store = store
        self.registry = registry
        self.silence_threshold = config.SILENCE_THRESHOLD
        self._task = PeriodicTask("audio-levels", config.AUDIO_SAMPLE_INTERVAL, self.sample_once)

        # user_id -> smoothed level
        self._levels: Dict[str, float] = {}

        self._local_stream: Optional["LocalAudioStream"] = None
        self._local_analyser: Optional[AudioAnalyser] = None

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> bool:
        return self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def set_local_source(self, stream: "LocalAudioStream", analyser: Optional[AudioAnalyser]) -> None:
        self._local_stream = stream
        self._local_analyser = analyser

    async def clear_local_source(self) -> None:
        """로컬 스트림 참조를 제거하고 로컬 분석기를 해제합니다."""
        analyser, self._local_analyser = self._local_analyser, None
        self._local_stream = None
        self._levels.pop(self.store.local_user_id, None)
        if analyser is not None:
            await analyser.disconnect()

    def reset(self) -> None:
        self._levels.clear()

    def level(self, user_id: str) -> float:
        return self._levels.get(user_id, 0.0)

    def sample_once(self) -> None:
        """모든 참가자의 레벨과 음소거 상태를 한 번 갱신합니다."""
        for user_id in self.store.participant_ids():
            if user_id == self.store.local_user_id:
                level, is_muted = self._sample_local()
            else:
                level, is_muted = self._sample_remote(user_id)
            self.store.update_audio(user_id, level, is_muted)

    def _advance(self, user_id: str, analyser: AudioAnalyser) -> float:
        instant = rms_level(analyser.get_time_domain_data())
        smoothed = smooth(self._levels.get(user_id, 0.0), instant)
        self._levels[user_id] = smoothed
        return smoothed

    def _sample_local(self):
        stream = self._local_stream
        if stream is None or not stream.has_enabled_audio_track():
            self._levels.pop(self.store.local_user_id, None)
            return 0.0, True
        if self._local_analyser is None:
            return 0.0, False
        return self._advance(self.store.local_user_id, self._local_analyser), False

    def _sample_remote(self, user_id: str):
        explicit = self.store.explicit_mute(user_id)
        record = self.registry.get(user_id)

        if record is None or record.connection_state != "connected" or record.analyser is None:
            self._levels.pop(user_id, None)
            return 0.0, explicit if explicit is not None else True

        smoothed = self._advance(user_id, record.analyser)
        if explicit is not None:
            return smoothed, explicit
        return smoothed, smoothed < self.silence_threshold
