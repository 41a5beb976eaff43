"""음성 세션 상태 모듈.

UI/HTTP 계층이 읽는 음성 세션 상태(참가자 목록, 음소거/레벨, 연결 오류,
로컬 상태)를 보관합니다. 상태 변경은 모두 VoiceSessionStore를 거치며,
구독자에게 변경 알림을 보냅니다.

Classes:
    VoiceParticipant: 참가자 한 명의 표시 상태
    LocalSessionState: 로컬 사용자 상태
    VoiceSessionState: 읽기 전용 스냅샷
    VoiceSessionStore: 상태 저장소
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class VoiceParticipant:
    """참가자 한 명의 표시 상태.

    Attributes:
        user_id (str): 사용자 ID
        username (str): 표시 이름
        is_muted (bool): 음소거 여부 (명시적 메시지 또는 무음 판정)
        audio_level (float): 평활화된 오디오 레벨 [0, 1]
    """

    user_id: str
    username: str = ""
    is_muted: bool = False
    audio_level: float = 0.0


@dataclass
class LocalSessionState:
    """로컬 사용자 상태."""

    has_local_stream: bool = False
    can_transmit: bool = True
    is_audio_reception_enabled: bool = False


@dataclass(frozen=True)
class VoiceSessionState:
    """음성 세션 상태 스냅샷."""

    participants: List[VoiceParticipant]
    is_connecting: bool
    connection_error: Optional[str]
    can_transmit: bool
    is_audio_enabled: bool
    has_local_stream: bool


StateListener = Callable[[VoiceSessionState], None]


class VoiceSessionStore:
    """음성 세션 상태 저장소.

    참가자는 레코드보다 먼저 생길 수 있으며(입장 알림, 참가자 목록, 음소거
    메시지), user_left_voice 또는 전체 정리 시에만 제거됩니다. 원격 참가자의
    명시적 음소거 플래그는 참가자와 별도로 보관하여 무음 판정보다 우선합니다.

    Attributes:
        local_user_id (str): 로컬 사용자 ID
        local (LocalSessionState): 로컬 사용자 상태

    Examples:
        >>> store = VoiceSessionStore("alice", can_transmit=True)
        >>> store.upsert_participant("bob", "Bob")
        >>> store.set_explicit_mute("bob", True)
        >>> store.snapshot().participants[0].user_id
        'bob'
    """

    def __init__(self, local_user_id: str, can_transmit: bool = True):
        self.local_user_id = local_user_id
        self.local = LocalSessionState(can_transmit=can_transmit)
        self.is_connecting = False
        self.connection_error: Optional[str] = None

        self._participants: Dict[str, VoiceParticipant] = {}
        self._explicit_mutes: Dict[str, bool] = {}
        self._listeners: List[StateListener] = []

    # ============================================================
    # 구독
    # ============================================================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """상태 변경 리스너를 등록합니다.

        Returns:
            Callable[[], None]: 등록 해제 함수
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"[Voice] 상태 리스너 오류: {e}", exc_info=True)

    def snapshot(self) -> VoiceSessionState:
        return VoiceSessionState(
            participants=[replace(p) for p in self._participants.values()],
            is_connecting=self.is_connecting,
            connection_error=self.connection_error,
            can_transmit=self.local.can_transmit,
            is_audio_enabled=self.local.is_audio_reception_enabled,
            has_local_stream=self.local.has_local_stream,
        )

    # ============================================================
    # 참가자
    # ============================================================

    def participant_ids(self) -> List[str]:
        return list(self._participants.keys())

    def get_participant(self, user_id: str) -> Optional[VoiceParticipant]:
        return self._participants.get(user_id)

    def upsert_participant(self, user_id: str, username: Optional[str] = None) -> VoiceParticipant:
        """참가자를 추가하거나 이름을 갱신합니다. 레벨과 음소거 상태는 유지됩니다."""
        participant = self._participants.get(user_id)
        if participant is None:
            participant = VoiceParticipant(user_id=user_id, username=username or "")
            self._participants[user_id] = participant
            logger.info(f"[Voice] 참가자 추가: {user_id[:8]} ({participant.username})")
        elif username:
            participant.username = username
        self._notify()
        return participant

    def merge_participants(self, entries: List[Dict]) -> None:
        """참가자 목록을 병합합니다.

        알려진 참가자의 레벨은 유지하고 이름은 비어 있지 않을 때만 갱신합니다.
        명시적 음소거 플래그는 캐시합니다. 로컬 사용자 항목은 무시합니다.

        Args:
            entries: {"user_id", "username", "is_muted"} 딕셔너리 목록
        """
        for entry in entries:
            user_id = entry["user_id"]
            if user_id == self.local_user_id:
                continue
            participant = self._participants.get(user_id)
            if participant is None:
                participant = VoiceParticipant(user_id=user_id, username=entry.get("username") or "")
                self._participants[user_id] = participant
            elif entry.get("username"):
                participant.username = entry["username"]
            if "is_muted" in entry and entry["is_muted"] is not None:
                self._explicit_mutes[user_id] = bool(entry["is_muted"])
                participant.is_muted = bool(entry["is_muted"])
        logger.info(f"[Voice] 참가자 목록 병합: {len(entries)}명 수신, 현재 {len(self._participants)}명")
        self._notify()

    def remove_participant(self, user_id: str) -> bool:
        self._explicit_mutes.pop(user_id, None)
        removed = self._participants.pop(user_id, None) is not None
        if removed:
            logger.info(f"[Voice] 참가자 제거: {user_id[:8]}")
            self._notify()
        return removed

    def clear_participants(self) -> None:
        self._participants.clear()
        self._explicit_mutes.clear()
        self._notify()

    def set_explicit_mute(self, user_id: str, is_muted: bool) -> None:
        """원격 참가자의 명시적 음소거 상태를 기록합니다. 참가자가 없으면 생성합니다."""
        self._explicit_mutes[user_id] = is_muted
        participant = self._participants.get(user_id)
        if participant is None:
            participant = VoiceParticipant(user_id=user_id)
            self._participants[user_id] = participant
        participant.is_muted = is_muted
        self._notify()

    def explicit_mute(self, user_id: str) -> Optional[bool]:
        return self._explicit_mutes.get(user_id)

    def update_audio(self, user_id: str, audio_level: float, is_muted: bool) -> None:
        """샘플링 결과를 반영합니다. 값이 바뀐 경우에만 알림을 보냅니다."""
        participant = self._participants.get(user_id)
        if participant is None:
            return
        level = max(0.0, min(1.0, audio_level))
        if participant.audio_level == level and participant.is_muted == is_muted:
            return
        participant.audio_level = level
        participant.is_muted = is_muted
        self._notify()

    # ============================================================
    # 연결 / 로컬 상태
    # ============================================================

    def set_connection_error(self, message: str) -> None:
        logger.warning(f"[Voice] 연결 오류: {message}")
        self.connection_error = message
        self._notify()

    def clear_connection_error(self) -> None:
        if self.connection_error is None:
            return
        self.connection_error = None
        self._notify()

    def set_connecting(self, connecting: bool) -> None:
        if self.is_connecting == connecting:
            return
        self.is_connecting = connecting
        self._notify()

    def set_local_stream(self, has_local_stream: bool) -> None:
        self.local.has_local_stream = has_local_stream
        self._notify()

    def set_audio_reception(self, enabled: bool) -> None:
        self.local.is_audio_reception_enabled = enabled
        self._notify()

    def reset(self) -> None:
        """전체 정리 시 세션 상태를 초기화합니다. can_transmit은 유지됩니다."""
        self._participants.clear()
        self._explicit_mutes.clear()
        self.is_connecting = False
        self.connection_error = None
        self.local.has_local_stream = False
        self.local.is_audio_reception_enabled = False
        self._notify()
