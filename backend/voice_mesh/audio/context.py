"""오디오 처리 컨텍스트 모듈.

프로세스 전체에서 하나만 존재하는 오디오 처리 컨텍스트와, 트랙의 최근
시간 영역 샘플을 보관하는 분석기(AudioAnalyser)를 제공합니다.

Architecture:
    - MediaRelay: 하나의 원본 트랙을 여러 소비자(송신, 분석기, 싱크)가
      독립적으로 읽을 수 있도록 구독(subscribe) 트랙을 생성
    - AudioAnalyser: 구독 트랙을 백그라운드 태스크로 소비하며
      최근 ANALYSER_FFT_SIZE개 샘플을 링 버퍼(numpy)에 유지
    - 분석기는 반드시 disconnect()로 명시적으로 해제해야 함

Functions:
    get_audio_context: 컨텍스트를 반환 (없으면 생성)
    close_audio_context: 컨텍스트를 한 번만 종료
    frame_to_float: AudioFrame을 [-1, 1] 범위의 모노 float32 배열로 변환

Examples:
    >>> context = get_audio_context()
    >>> analyser = context.create_analyser("peer-123", remote_track)
    >>> samples = analyser.get_time_domain_data()
    >>> await analyser.disconnect()
    >>> await close_audio_context()
"""

import asyncio
import logging
from typing import Dict, Optional

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaRelay
from aiortc.mediastreams import MediaStreamError

logger = logging.getLogger(__name__)

# 분석기 버퍼 크기 (samples)
ANALYSER_FFT_SIZE = 512


def frame_to_float(frame) -> np.ndarray:
    """AudioFrame을 [-1, 1] 범위의 모노 float32 배열로 변환합니다.

    Args:
        frame (AudioFrame): aiortc/PyAV 오디오 프레임

    Returns:
        np.ndarray: 모노 float32 샘플 배열

    Note:
        - AudioFrame.to_ndarray()로 numpy 배열 추출
        - 인터리브 스테레오는 채널 평균으로 모노 변환
        - int16은 32768로 나누어 정규화
    """
    array = frame.to_ndarray()

    if array.ndim > 1:
        array = array.flatten()

    # 채널 평균 전에 정규화 (평균하면 dtype이 float64로 바뀜)
    if array.dtype == np.int16:
        array = array.astype(np.float32) / 32768.0
    else:
        array = array.astype(np.float32)

    channels = len(frame.layout.channels) if frame.layout is not None else 1
    if channels > 1 and array.size == frame.samples * channels:
        # Interleaved: (samples, channels)
        array = array.reshape(-1, channels).mean(axis=1)

    return np.clip(array, -1.0, 1.0).astype(np.float32)


class AudioAnalyser:
    """트랙의 최근 시간 영역 샘플을 보관하는 분석기.

    Attributes:
        name (str): 분석 대상 식별자 (피어 ID 또는 "local")
        fft_size (int): 보관하는 샘플 수

    Note:
        - 트랙이 없으면 push()로만 샘플이 채워짐 (테스트/외부 입력용)
        - 버퍼가 채워지기 전에는 0으로 채워진 구간이 포함됨
    """

    def __init__(
        self,
        context: "AudioProcessingContext",
        name: str,
        track: Optional[MediaStreamTrack] = None,
        fft_size: int = ANALYSER_FFT_SIZE,
    ):
        self.name = name
        self.fft_size = fft_size
        self._context = context
        self._track = track
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._task: Optional[asyncio.Task] = None
        self._connected = True

    @property
    def connected(self) -> bool:
        """컨텍스트에 연결되어 있는지 여부."""
        return self._connected

    def start(self) -> None:
        """트랙 소비 태스크를 시작합니다."""
        if self._track is None or self._task is not None:
            return
        self._task = asyncio.create_task(self._consume(), name=f"analyser:{self.name}")

    def push(self, samples: np.ndarray) -> None:
        """샘플을 링 버퍼 끝에 추가합니다."""
        samples = np.asarray(samples, dtype=np.float32).ravel()
        if samples.size >= self.fft_size:
            self._buffer = samples[-self.fft_size:].copy()
        else:
            self._buffer = np.concatenate([self._buffer[samples.size:], samples])

    def get_time_domain_data(self) -> np.ndarray:
        """최근 fft_size개 샘플의 복사본을 반환합니다."""
        return self._buffer.copy()

    async def disconnect(self) -> None:
        """소비 태스크를 중지하고 컨텍스트에서 분리합니다. 여러 번 호출해도 안전합니다."""
        if not self._connected:
            return
        self._connected = False

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._track is not None:
            self._track.stop()
            self._track = None

        self._context._detach(self)
        logger.debug(f"[Audio] 분석기 해제: {self.name[:8]}")

    async def _consume(self) -> None:
        frame_count = 0
        try:
            while True:
                frame = await self._track.recv()
                self.push(frame_to_float(frame))
                frame_count += 1
                if frame_count == 1:
                    logger.info(f"[Audio] {self.name[:8]} 첫 프레임 분석")
        except MediaStreamError:
            logger.info(f"[Audio] {self.name[:8]} 트랙 종료 (프레임 {frame_count}개)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Audio] {self.name[:8]} 분석 오류: {type(e).__name__}: {e}", exc_info=True)


class AudioProcessingContext:
    """프로세스 전체 오디오 처리 컨텍스트.

    MediaRelay와 모든 AudioAnalyser를 소유합니다. 동시에 하나의 인스턴스만
    살아 있을 수 있으며, 보통 get_audio_context()로 접근합니다.

    Raises:
        RuntimeError: 종료되지 않은 컨텍스트가 이미 있는 상태에서 생성 시
    """

    _live: Optional["AudioProcessingContext"] = None

    def __init__(self, fft_size: Optional[int] = None):
        if AudioProcessingContext._live is not None:
            raise RuntimeError("AudioProcessingContext already exists; use get_audio_context()")
        AudioProcessingContext._live = self

        self.fft_size = fft_size or ANALYSER_FFT_SIZE
        self.relay = MediaRelay()
        self._analysers: Dict[int, AudioAnalyser] = {}
        self._closed = False
        logger.info(f"[Audio] 오디오 컨텍스트 생성 (fft_size={self.fft_size})")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def analyser_count(self) -> int:
        return len(self._analysers)

    def subscribe(self, track: MediaStreamTrack) -> MediaStreamTrack:
        """원본 트랙의 독립 구독 트랙을 생성합니다.

        원본 트랙을 여러 소비자가 직접 recv()하면 프레임이 나뉘어 전달되므로,
        소비자마다 MediaRelay.subscribe()로 별도 구독을 만들어야 합니다.
        """
        self._ensure_open()
        return self.relay.subscribe(track)

    def create_analyser(self, name: str, track: Optional[MediaStreamTrack] = None) -> AudioAnalyser:
        """분석기를 생성하고 트랙 소비를 시작합니다.

        Args:
            name: 분석 대상 식별자
            track: 분석할 원본 트랙 (None이면 push() 전용 분석기)

        Returns:
            AudioAnalyser: 생성된 분석기 (disconnect()로 해제 필요)
        """
        self._ensure_open()
        source = self.relay.subscribe(track) if track is not None else None
        analyser = AudioAnalyser(self, name, source, self.fft_size)
        self._analysers[id(analyser)] = analyser
        analyser.start()
        logger.debug(f"[Audio] 분석기 생성: {name[:8]} (총 {len(self._analysers)}개)")
        return analyser

    def _detach(self, analyser: AudioAnalyser) -> None:
        self._analysers.pop(id(analyser), None)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("AudioProcessingContext is closed")

    async def close(self) -> None:
        """모든 분석기를 해제하고 컨텍스트를 종료합니다. 두 번째 호출부터는 무시됩니다."""
        if self._closed:
            return
        self._closed = True
        for analyser in list(self._analysers.values()):
            await analyser.disconnect()
        if AudioProcessingContext._live is self:
            AudioProcessingContext._live = None
        logger.info("[Audio] 오디오 컨텍스트 종료")


def get_audio_context() -> AudioProcessingContext:
    """오디오 처리 컨텍스트를 반환합니다 (없으면 생성)."""
    context = AudioProcessingContext._live
    if context is None:
        context = AudioProcessingContext()
    return context


async def close_audio_context() -> None:
    """현재 오디오 처리 컨텍스트를 종료합니다. 컨텍스트가 없으면 아무것도 하지 않습니다."""
    context = AudioProcessingContext._live
    if context is not None:
        await context.close()
