"""음성 메시 신뢰성 관리자.

참가자 간 풀 메시 P2P 오디오 연결을 수립하고, 상태를 감시하며,
끊어진 연결을 복구합니다. 시그널링 릴레이는 offer/answer/ICE 교환과
참가자 알림에만 사용되며 미디어는 전달하지 않습니다.

Modules:
    signaling: 시그널링 메시지 / 전송 계층 / 어댑터
    webrtc: 연결 레지스트리, 협상, 헬스 모니터, 하트비트, 유예 타이머
    audio: 오디오 컨텍스트, 레벨 모니터, 음소거 감지
    session: 세션 상태와 VoiceMeshManager 퍼사드
    shared: 주기/지연 작업, 응답 DTO
"""

from .session.manager import VoiceMeshManager
from .session.state import VoiceSessionState
from .webrtc.tracks import LocalAudioStream

__all__ = [
    "VoiceMeshManager",
    "VoiceSessionState",
    "LocalAudioStream",
]
