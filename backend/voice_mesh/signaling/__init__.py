"""시그널링 모듈.

음성 메시 시그널링 메시지 정의, 릴레이 전송 계층, 타입 지정 어댑터를 제공합니다.

Classes:
    SignalingAdapter: 메시지 송수신 및 핸들러 디스패치
    SignalingTransport: 전송 계층 추상 클래스
    WebSocketSignalingTransport: websockets 기반 릴레이 클라이언트
    SignalingEvent: 이벤트 이름 열거형

Config:
    signaling_config: 릴레이 주소 / 세션 식별 설정
"""

from .messages import (
    SignalingEvent,
    SignalingMessage,
    SignalingMessageError,
    SessionDescription,
    IceCandidatePayload,
    ParticipantInfo,
    PeerConnectionStates,
    JoinVoice,
    LeaveVoice,
    RequestVoiceParticipants,
    VoiceHeartbeat,
    VoiceParticipants,
    UserJoinedVoice,
    UserLeftVoice,
    VoiceConnectionFailed,
    VoiceReconnectionRequested,
    SignalingError,
    VoiceOffer,
    VoiceAnswer,
    VoiceIceCandidate,
    VoiceMuteChanged,
    parse_message,
)
from .transport import SignalingTransport, SignalingTransportError, WebSocketSignalingTransport
from .adapter import SignalingAdapter
from .config import signaling_config, SignalingConfig

__all__ = [
    # Messages
    "SignalingEvent",
    "SignalingMessage",
    "SignalingMessageError",
    "SessionDescription",
    "IceCandidatePayload",
    "ParticipantInfo",
    "PeerConnectionStates",
    "JoinVoice",
    "LeaveVoice",
    "RequestVoiceParticipants",
    "VoiceHeartbeat",
    "VoiceParticipants",
    "UserJoinedVoice",
    "UserLeftVoice",
    "VoiceConnectionFailed",
    "VoiceReconnectionRequested",
    "SignalingError",
    "VoiceOffer",
    "VoiceAnswer",
    "VoiceIceCandidate",
    "VoiceMuteChanged",
    "parse_message",
    # Transport / adapter
    "SignalingTransport",
    "SignalingTransportError",
    "WebSocketSignalingTransport",
    "SignalingAdapter",
    # Config
    "signaling_config",
    "SignalingConfig",
]
