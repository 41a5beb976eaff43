"""음성 메시 세션 관리 모듈.

시그널링, 연결 수명 주기, 헬스 모니터, 하트비트, 유예 타이머, 오디오
레벨 모니터를 하나의 음성 세션으로 묶습니다. 외부(UI, HTTP)에는
VoiceSessionState와 네 개의 진입점만 노출합니다.

Entry Points:
    add_local_stream: 마이크 스트림을 연결하고 음성 메시에 참여
    remove_local_stream: 송신 트랙 제거 (연결은 유지)
    enable_audio_reception: 오디오 수신 활성화 (청취자는 이때 참여)
    perform_intentional_cleanup: 퇴장 및 전체 정리

Signaling Flow:
    1. 참여 시 join_voice → voice_mute_changed → request_voice_participants
    2. 기존 참가자는 user_joined_voice 수신 시 새 참가자에게 offer 전송
    3. 새 참가자는 voice_offer를 수락하고 answer 전송
    4. voice_participants는 참가자 목록 병합에만 사용 (연결 시작 안 함)

Examples:
    >>> transport = WebSocketSignalingTransport("ws://localhost:8000/ws")
    >>> manager = VoiceMeshManager(transport, room_id="room-1", user_id="alice", username="Alice")
    >>> await manager.start()
    >>> await manager.add_local_stream(LocalAudioStream([microphone_track]))
    >>> manager.state.participants
    >>> await manager.perform_intentional_cleanup()
"""

import logging
from typing import Any, Callable, Dict, Optional

from aiortc import RTCPeerConnection

from ..audio.context import close_audio_context, get_audio_context
from ..audio.levels import AudioLevelMonitor
from ..audio.mute import MuteChangeDetector, is_stream_muted
from ..signaling.adapter import SignalingAdapter
from ..signaling.messages import (
    SignalingError,
    SignalingEvent,
    UserJoinedVoice,
    UserLeftVoice,
    VoiceAnswer,
    VoiceConnectionFailed,
    VoiceIceCandidate,
    VoiceMuteChanged,
    VoiceOffer,
    VoiceParticipants,
    VoiceReconnectionRequested,
)
from ..signaling.transport import SignalingTransport
from ..webrtc.config import MeshConfig, mesh_config
from ..webrtc.grace import GracePeriodController, GraceState
from ..webrtc.health import HealthMonitor
from ..webrtc.heartbeat import HeartbeatPublisher
from ..webrtc.lifecycle import ConnectionLifecycleManager
from ..webrtc.registry import PeerConnectionRegistry
from ..webrtc.tracks import LocalAudioStream
from .state import VoiceSessionState, VoiceSessionStore

logger = logging.getLogger(__name__)


class VoiceMeshManager:
    """음성 메시 세션 퍼사드.

    Attributes:
        room_id (str): 음성 룸 ID
        user_id (str): 로컬 사용자 ID
        username (str): 로컬 사용자 표시 이름
        store (VoiceSessionStore): 세션 상태
        signaling (SignalingAdapter): 시그널링 송수신
        registry (PeerConnectionRegistry): 피어 연결 레코드
        lifecycle (ConnectionLifecycleManager): 연결 협상
        health (HealthMonitor): 헬스 체크 / 재연결
        heartbeat (HeartbeatPublisher): 상태 보고
        levels (AudioLevelMonitor): 오디오 레벨 / 음소거 판정
        mute_detector (MuteChangeDetector): 로컬 음소거 변화 감지
        grace (GracePeriodController): 릴레이 단절 유예
    """

    def __init__(
        self,
        transport: SignalingTransport,
        room_id: str,
        user_id: str,
        username: str = "",
        can_transmit: bool = True,
        config: MeshConfig = mesh_config,
        pc_factory: Optional[Callable[[], RTCPeerConnection]] = None,
    ):
        self.room_id = room_id
        self.user_id = user_id
        self.username = username
        self.config = config

        self.store = VoiceSessionStore(user_id, can_transmit=can_transmit)
        self.signaling = SignalingAdapter(transport, room_id, user_id)
        self.registry = PeerConnectionRegistry()
        self.lifecycle = ConnectionLifecycleManager(
            self.registry, self.signaling, self.store, config, pc_factory=pc_factory
        )
        self.health = HealthMonitor(self.registry, self.lifecycle, self.store, config)
        self.heartbeat = HeartbeatPublisher(self.registry, self.signaling, config)
        self.levels = AudioLevelMonitor(self.store, self.registry, config)
        self.mute_detector = MuteChangeDetector(
            lambda: self.lifecycle.local_stream,
            self._on_local_mute_changed,
            config.MUTE_POLL_INTERVAL,
        )
        self.grace = GracePeriodController(
            pause=self._pause_polling,
            resume=self._resume_polling,
            teardown=self._teardown,
            reannounce=self.announce_presence,
            is_session_active=self.is_session_active,
            config=config,
        )

        self.lifecycle.on_connection_failed(self.health.on_peer_failed)
        self.signaling.on_transport_up(self.grace.on_transport_up)
        self.signaling.on_transport_down(self.grace.on_transport_down)
        self._register_handlers()

    # ============================================================
    # 상태
    # ============================================================

    @property
    def state(self) -> VoiceSessionState:
        """현재 음성 세션 상태 스냅샷."""
        return self.store.snapshot()

    def is_session_active(self) -> bool:
        """송신 스트림이 있거나 수신을 켠 상태(음성 메시 참여 중)인지 여부."""
        local = self.store.local
        return local.has_local_stream or local.is_audio_reception_enabled

    def connection_snapshot(self) -> Dict[str, Dict[str, str]]:
        return self.heartbeat.build_snapshot()

    def status(self) -> Dict[str, Any]:
        """헬스 체크 엔드포인트용 상태 요약."""
        return {
            "transport_connected": self.signaling.connected,
            "grace_state": self.grace.state.value,
            "session_active": self.is_session_active(),
            "connections": len(self.registry),
            "pending_reconnects": self.health.pending_reconnects(),
            "tasks": {
                "health_check": self.health.running,
                "heartbeat": self.heartbeat.running,
                "audio_levels": self.levels.running,
                "mute_poll": self.mute_detector.running,
            },
        }

    # ============================================================
    # 시작 / 종료
    # ============================================================

    async def start(self) -> None:
        """릴레이 연결을 시작합니다."""
        logger.info(f"[Voice] 음성 세션 시작: room={self.room_id}, user={self.user_id[:8]}")
        await self.signaling.connect()

    async def shutdown(self) -> None:
        """서버 종료 시 호출: 퇴장 처리 후 릴레이 연결을 닫습니다."""
        await self.perform_intentional_cleanup()
        await self.signaling.disconnect()
        logger.info("[Voice] 음성 세션 종료")

    # ============================================================
    # 진입점
    # ============================================================

    async def add_local_stream(self, stream: LocalAudioStream) -> None:
        """로컬 마이크 스트림을 연결하고 음성 메시에 참여합니다.

        기존 연결이 있으면 재협상 없이 송신 트랙만 교체합니다.
        """
        self.store.set_connecting(True)
        try:
            self.grace.reactivate(self.signaling.connected)

            await self.lifecycle.attach_local_stream(stream)

            await self.levels.clear_local_source()
            track = stream.primary_track
            analyser = get_audio_context().create_analyser("local", track) if track is not None else None
            self.levels.set_local_source(stream, analyser)

            self.store.set_local_stream(True)
            self.store.upsert_participant(self.user_id, self.username)
            self.mute_detector.set_baseline(is_stream_muted(stream))

            await self._resume_polling()
            await self.announce_presence()
            logger.info(f"[Voice] 로컬 스트림 연결 (트랙 {len(stream.audio_tracks)}개)")
        except Exception as e:
            logger.error(f"[Voice] 로컬 스트림 연결 실패: {type(e).__name__}: {e}", exc_info=True)
            self.store.set_connection_error(f"Failed to start voice: {e}")
        finally:
            self.store.set_connecting(False)

    async def remove_local_stream(self) -> None:
        """송신 트랙을 제거합니다. 피어 연결과 수신은 유지됩니다."""
        await self.lifecycle.detach_local_stream()
        await self.levels.clear_local_source()
        self.store.set_local_stream(False)
        logger.info("[Voice] 로컬 스트림 해제")

    async def enable_audio_reception(self) -> None:
        """오디오 수신을 켭니다. 송신 권한이 없는 청취자는 이때 음성 메시에 참여합니다."""
        already_active = self.is_session_active()
        self.store.set_audio_reception(True)
        logger.info("[Voice] 오디오 수신 활성화")

        if self.store.local.can_transmit or already_active:
            return

        self.grace.reactivate(self.signaling.connected)
        self.store.upsert_participant(self.user_id, self.username)
        await self._resume_polling()
        await self.announce_presence()

    async def perform_intentional_cleanup(self) -> None:
        """음성 메시에서 퇴장하고 모든 리소스를 정리합니다."""
        if self.signaling.connected and self.is_session_active():
            await self.signaling.send_leave()
        self.grace.mark_torn_down()
        await self._teardown(True)

    async def announce_presence(self) -> bool:
        """참여 알림 묶음을 보냅니다: join_voice, 현재 음소거 상태, 참가자 목록 요청.

        Returns:
            bool: 모두 전송했으면 True
        """
        if not self.signaling.connected:
            logger.info("[Voice] 릴레이 미연결, 참여 알림은 재연결 후 전송")
            return False

        is_muted = is_stream_muted(self.lifecycle.local_stream)
        joined = await self.signaling.send_join(self.username)
        muted = await self.signaling.send_mute_changed(is_muted)
        requested = await self.signaling.request_participants()
        logger.info(f"[Voice] 참여 알림 전송 (음소거={is_muted})")
        return joined and muted and requested

    # ============================================================
    # 폴링 / 정리
    # ============================================================

    async def _pause_polling(self) -> None:
        await self.health.stop()
        await self.heartbeat.stop()

    async def _resume_polling(self) -> None:
        if not self.is_session_active():
            return
        # 유예 만료로 참가자 목록이 비워졌을 수 있음
        self.store.upsert_participant(self.user_id, self.username)
        self.levels.start()
        self.mute_detector.start()
        # 헬스/하트비트는 릴레이가 연결된 상태에서만 (유예 중 재시작 금지)
        if self.grace.state != GraceState.TRANSPORT_UP:
            logger.debug(f"[Voice] 릴레이 상태 {self.grace.state.value}, 헬스/하트비트 재개 보류")
            return
        self.health.start()
        self.heartbeat.start()

    async def _stop_polling(self) -> None:
        await self.health.stop()
        await self.heartbeat.stop()
        await self.levels.stop()
        await self.mute_detector.stop()

    async def _teardown(self, intentional: bool) -> None:
        """모든 폴링을 멈추고 피어 연결을 해제합니다.

        Args:
            intentional: True면 로컬 스트림/오디오 컨텍스트까지 정리 (퇴장).
                False(유예 만료)면 로컬 스트림은 유지하여 재연결 시 재참여.
        """
        await self._stop_polling()
        self.health.reset()
        await self.signaling.cancel_pending_handlers()
        await self.registry.dispose_all()
        self.levels.reset()

        if intentional:
            await self.levels.clear_local_source()
            await self.lifecycle.detach_local_stream()
            self.mute_detector.reset()
            self.store.reset()
            await close_audio_context()
            logger.info("[Voice] 음성 세션 정리 완료 (퇴장)")
        else:
            self.store.clear_participants()
            self.store.set_connecting(False)
            logger.info("[Voice] 음성 세션 정리 완료 (유예 만료, 로컬 스트림 유지)")

    async def _on_local_mute_changed(self, is_muted: bool) -> None:
        logger.info(f"[Voice] 로컬 음소거 변경: {is_muted}")
        await self.signaling.send_mute_changed(is_muted)

    # ============================================================
    # 시그널링 핸들러
    # ============================================================

    def _register_handlers(self) -> None:
        self.signaling.on(SignalingEvent.VOICE_PARTICIPANTS, self._on_voice_participants)
        self.signaling.on(SignalingEvent.USER_JOINED_VOICE, self._on_user_joined)
        self.signaling.on(SignalingEvent.USER_LEFT_VOICE, self._on_user_left)
        self.signaling.on(SignalingEvent.VOICE_OFFER, self._on_offer)
        self.signaling.on(SignalingEvent.VOICE_ANSWER, self._on_answer)
        self.signaling.on(SignalingEvent.VOICE_ICE_CANDIDATE, self._on_ice_candidate)
        self.signaling.on(SignalingEvent.VOICE_MUTE_CHANGED, self._on_mute_changed)
        self.signaling.on(SignalingEvent.VOICE_CONNECTION_FAILED, self._on_connection_failed)
        self.signaling.on(SignalingEvent.VOICE_RECONNECTION_REQUESTED, self._on_reconnection_requested)
        self.signaling.on(SignalingEvent.ERROR, self._on_error)

    async def _on_voice_participants(self, message: VoiceParticipants) -> None:
        self.store.merge_participants([p.model_dump() for p in message.participants])

    async def _on_user_joined(self, message: UserJoinedVoice) -> None:
        if message.user_id == self.user_id:
            return
        self.store.upsert_participant(message.user_id, message.username)
        self.health.forget(message.user_id)
        if not self.is_session_active():
            return
        # 기존 참가자가 새 참가자에게 offer를 보냄
        await self.lifecycle.initiate(message.user_id)

    async def _on_user_left(self, message: UserLeftVoice) -> None:
        if message.user_id == self.user_id:
            return
        self.health.forget(message.user_id)
        await self.registry.remove_and_dispose(message.user_id)
        self.store.remove_participant(message.user_id)

    async def _on_offer(self, message: VoiceOffer) -> None:
        if not self.is_session_active():
            logger.info(f"[Voice] 음성 미참여 상태, {message.from_user_id[:8]}의 offer 무시")
            return
        self.store.upsert_participant(message.from_user_id)
        await self.lifecycle.accept_offer(message.from_user_id, message.offer)

    async def _on_answer(self, message: VoiceAnswer) -> None:
        await self.lifecycle.apply_answer(message.from_user_id, message.answer)

    async def _on_ice_candidate(self, message: VoiceIceCandidate) -> None:
        await self.lifecycle.apply_ice_candidate(message.from_user_id, message.candidate)

    async def _on_mute_changed(self, message: VoiceMuteChanged) -> None:
        if message.user_id == self.user_id:
            return
        self.store.set_explicit_mute(message.user_id, message.is_muted)

    async def _on_connection_failed(self, message: VoiceConnectionFailed) -> None:
        logger.warning(f"[Voice] 피어 {message.from_user_id[:8]} 연결 실패 보고 수신")
        await self.health.on_peer_failed(message.from_user_id)

    async def _on_reconnection_requested(self, message: VoiceReconnectionRequested) -> None:
        if not self.is_session_active():
            return
        logger.info(f"[Voice] 피어 {message.from_user_id[:8]} 재연결 요청 수신")
        self.health.forget(message.from_user_id)
        await self.registry.remove_and_dispose(message.from_user_id)
        await self.lifecycle.initiate(message.from_user_id)

    async def _on_error(self, message: SignalingError) -> None:
        self.store.set_connection_error(message.message)
