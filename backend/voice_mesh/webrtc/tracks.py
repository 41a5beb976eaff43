"""오디오 트랙 모듈.

로컬 마이크 스트림을 감싸는 트랙/스트림과, 원격 피어 오디오를 소비하는
싱크를 제공합니다.

Classes:
    LocalAudioTrack: enabled 플래그를 가진 로컬 오디오 트랙
    LocalAudioStream: 로컬 오디오 트랙 묶음 (음소거 상태 판단 기준)
    RemoteAudioSink: 원격 오디오를 버리거나(MediaBlackhole) 녹음(MediaRecorder)
"""

import logging
import time
from pathlib import Path
from typing import Iterable, List, Optional

from av import AudioFrame
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

logger = logging.getLogger(__name__)


class LocalAudioTrack(MediaStreamTrack):
    """enabled 플래그로 송출을 켜고 끌 수 있는 로컬 오디오 트랙.

    원본 트랙(마이크)의 프레임을 그대로 전달하되, enabled가 False이면
    같은 형식의 무음 프레임을 대신 전달합니다. 브라우저의
    MediaStreamTrack.enabled와 같은 의미입니다.

    Attributes:
        kind (str): 트랙 종류 ("audio")
        track (MediaStreamTrack): 원본 오디오 트랙
        enabled (bool): 송출 여부

    Examples:
        >>> local = LocalAudioTrack(microphone_track)
        >>> local.enabled = False   # 음소거 (무음 프레임 송출)
    """
    kind = "audio"

    def __init__(self, track: MediaStreamTrack):
        super().__init__()
        self.track = track
        self.enabled = True

    async def recv(self):
        frame = await self.track.recv()
        if self.enabled:
            return frame
        return self._silence_like(frame)

    @staticmethod
    def _silence_like(frame: AudioFrame) -> AudioFrame:
        silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent

    def stop(self):
        super().stop()
        self.track.stop()


class LocalAudioStream:
    """로컬 오디오 스트림.

    외부에서 획득한 마이크 트랙들을 LocalAudioTrack으로 감쌉니다.
    로컬 사용자의 음소거 여부는 활성화된 오디오 트랙이 있는지로 판단합니다.

    Examples:
        >>> stream = LocalAudioStream([microphone_track])
        >>> stream.has_enabled_audio_track()
        True
        >>> stream.set_enabled(False)
        >>> stream.has_enabled_audio_track()
        False
    """

    def __init__(self, tracks: Iterable[MediaStreamTrack]):
        self._tracks: List[LocalAudioTrack] = [
            t if isinstance(t, LocalAudioTrack) else LocalAudioTrack(t)
            for t in tracks
            if t.kind == "audio"
        ]

    @property
    def audio_tracks(self) -> List[LocalAudioTrack]:
        return list(self._tracks)

    @property
    def primary_track(self) -> Optional[LocalAudioTrack]:
        """송신에 사용할 첫 번째 오디오 트랙."""
        return self._tracks[0] if self._tracks else None

    def has_enabled_audio_track(self) -> bool:
        """활성화된(live + enabled) 오디오 트랙이 하나라도 있는지 여부."""
        return any(t.enabled and t.readyState == "live" for t in self._tracks)

    def set_enabled(self, enabled: bool) -> None:
        for track in self._tracks:
            track.enabled = enabled

    def stop(self) -> None:
        for track in self._tracks:
            track.stop()


class RemoteAudioSink:
    """원격 피어 오디오를 소비하는 싱크.

    수신 트랙을 계속 읽어야 jitter buffer가 유지되므로, 재생 장치가 없는
    프로세스에서도 반드시 소비자를 붙입니다. output_dir이 지정되면
    피어별 WAV 파일로 녹음합니다.

    Attributes:
        peer_id (str): 원격 피어 ID
        path (Optional[Path]): 녹음 파일 경로 (녹음하지 않으면 None)
    """

    def __init__(self, peer_id: str, track: MediaStreamTrack, output_dir: Optional[str] = None):
        self.peer_id = peer_id
        self.path: Optional[Path] = None

        if output_dir:
            directory = Path(output_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self.path = directory / f"{peer_id}_{int(time.time())}.wav"
            self._sink = MediaRecorder(str(self.path))
        else:
            self._sink = MediaBlackhole()

        self._sink.addTrack(track)
        self._started = False
        self._stopped = False

    @property
    def recording(self) -> bool:
        return self.path is not None

    async def start(self) -> None:
        if self._started or self._stopped:
            return
        self._started = True
        await self._sink.start()
        if self.path:
            logger.info(f"[WebRTC] 피어 {self.peer_id[:8]} 오디오 녹음 시작: {self.path}")

    async def stop(self) -> None:
        """싱크를 중지합니다. 여러 번 호출해도 안전합니다."""
        if self._stopped:
            return
        self._stopped = True
        await self._sink.stop()
        logger.debug(f"[WebRTC] 피어 {self.peer_id[:8]} 오디오 싱크 중지")
