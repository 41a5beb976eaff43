"""음성 시그널링 메시지 정의.

릴레이를 통해 주고받는 음성 메시 시그널링 메시지의 타입과 페이로드를
pydantic 모델로 정의합니다. 와이어 형식의 키는 camelCase이며,
파이썬 쪽 필드는 snake_case를 사용합니다.

Wire Format:
    {"type": "<event>", "data": {<camelCase payload>}}

Examples:
    >>> msg = VoiceMuteChanged(room_id="room-1", user_id="u1", is_muted=True)
    >>> msg.to_payload()
    {'roomId': 'room-1', 'userId': 'u1', 'isMuted': True}
    >>> parse_message("voice_mute_changed", {"roomId": "room-1", "userId": "u1", "isMuted": True})
    VoiceMuteChanged(room_id='room-1', user_id='u1', is_muted=True)
"""

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class SignalingEvent(str, Enum):
    """시그널링 이벤트 이름."""

    JOIN_VOICE = "join_voice"
    LEAVE_VOICE = "leave_voice"
    REQUEST_VOICE_PARTICIPANTS = "request_voice_participants"
    VOICE_PARTICIPANTS = "voice_participants"
    USER_JOINED_VOICE = "user_joined_voice"
    USER_LEFT_VOICE = "user_left_voice"
    VOICE_OFFER = "voice_offer"
    VOICE_ANSWER = "voice_answer"
    VOICE_ICE_CANDIDATE = "voice_ice_candidate"
    VOICE_MUTE_CHANGED = "voice_mute_changed"
    VOICE_HEARTBEAT = "voice_heartbeat"
    VOICE_CONNECTION_FAILED = "voice_connection_failed"
    VOICE_RECONNECTION_REQUESTED = "voice_reconnection_requested"
    ERROR = "error"


class SignalingMessageError(ValueError):
    """알 수 없는 이벤트이거나 페이로드 형식이 잘못된 메시지."""


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignalingMessage(_Payload):
    """모든 시그널링 메시지의 기반 클래스."""

    event: ClassVar[SignalingEvent]

    def to_payload(self) -> Dict[str, Any]:
        """와이어 전송용 camelCase 딕셔너리로 변환합니다."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================
# 공통 페이로드
# ============================================================

class SessionDescription(_Payload):
    """SDP offer/answer (RTCSessionDescriptionInit 형식)."""

    sdp: str
    type: str


class IceCandidatePayload(_Payload):
    """ICE candidate (RTCIceCandidateInit 형식)."""

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_m_line_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


class ParticipantInfo(_Payload):
    """voice_participants 목록의 참가자 항목."""

    user_id: str = Field(alias="userId")
    username: str = ""
    is_muted: bool = Field(default=False, alias="isMuted")


class PeerConnectionStates(_Payload):
    """하트비트에 포함되는 피어별 연결 상태."""

    connection_state: str = Field(alias="connectionState")
    ice_connection_state: str = Field(alias="iceConnectionState")


# ============================================================
# 송신 메시지
# ============================================================

class JoinVoice(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.JOIN_VOICE

    room_id: str = Field(alias="roomId")
    user_id: str = Field(alias="userId")
    username: str


class LeaveVoice(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.LEAVE_VOICE

    room_id: str = Field(alias="roomId")
    user_id: str = Field(alias="userId")


class RequestVoiceParticipants(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.REQUEST_VOICE_PARTICIPANTS

    room_id: str = Field(alias="roomId")


class VoiceHeartbeat(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_HEARTBEAT

    room_id: str = Field(alias="roomId")
    user_id: str = Field(alias="userId")
    connection_states: Dict[str, PeerConnectionStates] = Field(alias="connectionStates")


# ============================================================
# 수신 메시지
# ============================================================

class VoiceParticipants(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_PARTICIPANTS

    participants: List[ParticipantInfo] = Field(default_factory=list)


class UserJoinedVoice(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.USER_JOINED_VOICE

    user_id: str = Field(alias="userId")
    username: str = ""


class UserLeftVoice(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.USER_LEFT_VOICE

    user_id: str = Field(alias="userId")
    username: str = ""


class VoiceConnectionFailed(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_CONNECTION_FAILED

    from_user_id: str = Field(alias="fromUserId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class VoiceReconnectionRequested(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_RECONNECTION_REQUESTED

    from_user_id: str = Field(alias="fromUserId")
    target_user_id: str = Field(alias="targetUserId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class SignalingError(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.ERROR

    message: str = "Voice connection error"


# ============================================================
# 양방향 메시지
# ============================================================

class VoiceOffer(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_OFFER

    offer: SessionDescription
    target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
    from_user_id: str = Field(alias="fromUserId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class VoiceAnswer(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_ANSWER

    answer: SessionDescription
    target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
    from_user_id: str = Field(alias="fromUserId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class VoiceIceCandidate(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_ICE_CANDIDATE

    candidate: IceCandidatePayload
    target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
    from_user_id: str = Field(alias="fromUserId")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class VoiceMuteChanged(SignalingMessage):
    event: ClassVar[SignalingEvent] = SignalingEvent.VOICE_MUTE_CHANGED

    room_id: Optional[str] = Field(default=None, alias="roomId")
    user_id: str = Field(alias="userId")
    is_muted: bool = Field(alias="isMuted")


MESSAGE_TYPES: Dict[SignalingEvent, Type[SignalingMessage]] = {
    cls.event: cls
    for cls in (
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
    )
}


def parse_message(event: str, data: Any) -> SignalingMessage:
    """이벤트 이름과 페이로드로 타입이 지정된 메시지를 생성합니다.

    Args:
        event: 이벤트 이름 (예: "voice_offer")
        data: camelCase 페이로드 딕셔너리

    Returns:
        SignalingMessage: 해당 이벤트의 메시지 인스턴스

    Raises:
        SignalingMessageError: 알 수 없는 이벤트 또는 잘못된 페이로드
    """
    try:
        message_type = MESSAGE_TYPES[SignalingEvent(event)]
    except (ValueError, KeyError):
        raise SignalingMessageError(f"Unknown signaling event: {event!r}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SignalingMessageError(f"Payload for {event!r} must be an object, got {type(data).__name__}")

    try:
        return message_type.model_validate(data)
    except ValidationError as e:
        raise SignalingMessageError(f"Invalid payload for {event!r}: {e.errors()}") from e
