"""오디오 모듈.

오디오 처리 컨텍스트(MediaRelay + 분석기), 참가자 오디오 레벨 모니터,
로컬 음소거 변화 감지기를 제공합니다.

Classes:
    AudioProcessingContext: 프로세스 전체 오디오 컨텍스트
    AudioAnalyser: 트랙의 최근 시간 영역 샘플 보관
    AudioLevelMonitor: 레벨 평활화 및 음소거 판정
    ChangeDetector: 범용 폴링 변화 감지기
    MuteChangeDetector: 로컬 음소거 상태 감지기
"""

from .context import (
    AudioAnalyser,
    AudioProcessingContext,
    close_audio_context,
    frame_to_float,
    get_audio_context,
)
from .levels import AudioLevelMonitor, rms_level, smooth
from .mute import ChangeDetector, MuteChangeDetector, is_stream_muted

__all__ = [
    "AudioAnalyser",
    "AudioProcessingContext",
    "close_audio_context",
    "frame_to_float",
    "get_audio_context",
    "AudioLevelMonitor",
    "rms_level",
    "smooth",
    "ChangeDetector",
    "MuteChangeDetector",
    "is_stream_muted",
]
