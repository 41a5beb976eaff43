"""피어 연결 수명 주기 관리 모듈.

원격 피어와의 offer/answer/ICE 교환을 수행하고 결과를 레지스트리에
등록합니다. 메시(full-mesh) 구조이므로 원격 참가자마다 하나의
RTCPeerConnection을 가집니다.

주요 기능:
    - 연결 시작(offer 생성) 및 수신 offer 수락(answer 생성)
    - answer / ICE candidate 적용 (remote description 이전 candidate는 버퍼링)
    - 연결 상태 변화 기록 및 failed 전이 시 즉시 헬스 체크 요청
    - 로컬 오디오 트랙 교체 (재협상 없음)

WebRTC Flow:
    1. 기존 참가자가 새 참가자에게 initiate() → voice_offer 전송
    2. 새 참가자가 accept_offer() → voice_answer 전송
    3. 기존 참가자가 apply_answer()
    4. 양쪽이 apply_ice_candidate()로 candidate 교환

Note:
    - 협상 중 await 이후에는 항상 레코드가 여전히 레지스트리의 현재 레코드인지
      재확인하며, 아니면 조용히 중단함
    - 협상 실패는 세션 상태의 connection_error로만 표현되고 전파되지 않음
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..audio.context import AudioProcessingContext, get_audio_context
from ..session.state import VoiceSessionStore
from ..signaling.adapter import SignalingAdapter
from ..signaling.messages import IceCandidatePayload, SessionDescription
from .config import MeshConfig, ice_config, mesh_config
from .registry import PeerConnectionRecord, PeerConnectionRegistry
from .tracks import LocalAudioStream, RemoteAudioSink

logger = logging.getLogger(__name__)

FailureListener = Callable[[str], Union[Awaitable[None], None]]


class NegotiationError(RuntimeError):
    """offer/answer 교환을 완료할 수 없음."""


def parse_ice_candidate(payload: IceCandidatePayload):
    """브라우저 형식(RTCIceCandidateInit)의 candidate를 aiortc 객체로 변환합니다.

    Raises:
        ValueError: candidate 문자열을 해석할 수 없는 경우
    """
    candidate_str = payload.candidate
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    try:
        candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"invalid ICE candidate: {payload.candidate!r}") from e

    candidate.sdpMid = payload.sdp_mid
    candidate.sdpMLineIndex = payload.sdp_m_line_index
    return candidate


async def _replace_track(sender, track: Optional[MediaStreamTrack]) -> None:
    result = sender.replaceTrack(track)
    if inspect.isawaitable(result):
        await result


class ConnectionLifecycleManager:
    """원격 피어 연결의 생성, 협상, 해제를 담당합니다.

    Attributes:
        registry (PeerConnectionRegistry): 연결 레코드 저장소
        signaling (SignalingAdapter): offer/answer/candidate 송신
        store (VoiceSessionStore): connection_error 및 로컬 상태

    Examples:
        >>> lifecycle = ConnectionLifecycleManager(registry, adapter, store)
        >>> await lifecycle.initiate("peer-456")
        True
        >>> await lifecycle.apply_answer("peer-456", answer)
    """

    def __init__(
        self,
        registry: PeerConnectionRegistry,
        signaling: SignalingAdapter,
        store: VoiceSessionStore,
        config: MeshConfig = mesh_config,
        pc_factory: Optional[Callable[[], RTCPeerConnection]] = None,
        audio_context: Callable[[], AudioProcessingContext] = get_audio_context,
    ):
        self.registry = registry
        self.signaling = signaling
        self.store = store
        self.config = config
        self._pc_factory = pc_factory or self._create_peer_connection
        self._audio_context = audio_context
        self._local_stream: Optional[LocalAudioStream] = None
        self._failure_listeners: List[FailureListener] = []

    @staticmethod
    def _create_peer_connection() -> RTCPeerConnection:
        return RTCPeerConnection(configuration=ice_config.build_rtc_configuration())

    @property
    def local_stream(self) -> Optional[LocalAudioStream]:
        return self._local_stream

    def on_connection_failed(self, listener: FailureListener) -> None:
        """연결이 failed로 전이했을 때 호출될 리스너를 등록합니다 (인자: peer_id)."""
        self._failure_listeners.append(listener)

    # ============================================================
    # 레코드 생성
    # ============================================================

    def _build_record(self, peer_id: str, reconnect_attempts: int = 0) -> PeerConnectionRecord:
        pc = self._pc_factory()
        record = PeerConnectionRecord(peer_id=peer_id, pc=pc, reconnect_attempts=reconnect_attempts)
        self._add_audio_transceiver(record)
        self._register_listeners(record)
        return record

    def _add_audio_transceiver(self, record: PeerConnectionRecord) -> None:
        """오디오 transceiver를 하나 추가합니다.

        - 송신 가능 + 로컬 스트림 있음: sendrecv + 로컬 트랙
        - 송신 가능 + 로컬 스트림 없음: sendrecv (트랙은 나중에 교체)
        - 송신 불가 (청취자): recvonly
        """
        if not self.store.local.can_transmit:
            record.pc.addTransceiver("audio", direction="recvonly")
            return

        track = self._outbound_track()
        transceiver = record.pc.addTransceiver(track if track is not None else "audio", direction="sendrecv")
        record.audio_sender = transceiver.sender

    def _outbound_track(self) -> Optional[MediaStreamTrack]:
        if self._local_stream is None or self._local_stream.primary_track is None:
            return None
        return self._audio_context().subscribe(self._local_stream.primary_track)

    def _register_listeners(self, record: PeerConnectionRecord) -> None:
        pc = record.pc
        peer_id = record.peer_id

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            if not self.registry.is_current(record):
                return
            record.connection_state = pc.connectionState
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 상태: {pc.connectionState}")
            if pc.connectionState == "connected":
                self.store.clear_connection_error()
            elif pc.connectionState == "failed":
                await self._notify_failed(peer_id)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            if not self.registry.is_current(record):
                return
            record.ice_connection_state = pc.iceConnectionState
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} ICE 상태: {pc.iceConnectionState}")
            if pc.iceConnectionState == "failed":
                await self._notify_failed(peer_id)

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} {track.kind} 트랙 수신")
            if track.kind != "audio" or record.disposed or not self.registry.is_current(record):
                return
            await self._attach_remote_audio(record, track)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate is None or not self.registry.is_current(record):
                return
            await self.signaling.send_ice_candidate(
                peer_id,
                "candidate:" + candidate_to_sdp(candidate),
                candidate.sdpMid,
                candidate.sdpMLineIndex,
            )

    async def _attach_remote_audio(self, record: PeerConnectionRecord, track: MediaStreamTrack) -> None:
        context = self._audio_context()

        if record.analyser is None:
            record.analyser = context.create_analyser(record.peer_id, track)

        if record.remote_sink is None:
            sink = RemoteAudioSink(record.peer_id, context.subscribe(track), self.config.VOICE_OUTPUT_PATH)
            record.remote_sink = sink
            await sink.start()
            # 시작하는 동안 레코드가 해제되었으면 싱크도 정리
            if record.disposed:
                await sink.stop()

    async def _notify_failed(self, peer_id: str) -> None:
        for listener in list(self._failure_listeners):
            try:
                result = listener(peer_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[WebRTC] failed 리스너 오류 (peer={peer_id[:8]}): {e}", exc_info=True)

    def _mesh_full(self, peer_id: str) -> bool:
        if peer_id in self.registry or len(self.registry) < self.config.MAX_MESH_CONNECTIONS:
            return False
        logger.warning(
            f"[WebRTC] 메시 최대 연결 수 도달 ({self.config.MAX_MESH_CONNECTIONS}), 피어 {peer_id[:8]} 거부"
        )
        self.store.set_connection_error(
            f"Voice mesh is full ({self.config.MAX_MESH_CONNECTIONS} connections)"
        )
        return True

    async def _handle_negotiation_error(self, record: PeerConnectionRecord, stage: str, error: Exception) -> None:
        logger.error(
            f"[WebRTC] 피어 {record.peer_id[:8]} {stage} 실패: {type(error).__name__}: {error}",
            exc_info=not isinstance(error, NegotiationError),
        )
        self.store.set_connection_error(f"Failed to connect to {record.peer_id}: {error}")
        if self.registry.is_current(record):
            await self.registry.remove_and_dispose(record.peer_id)
        else:
            await record.dispose()

    # ============================================================
    # 협상
    # ============================================================

    async def initiate(self, peer_id: str, reconnect_attempts: int = 0) -> bool:
        """원격 피어에게 offer를 보내 연결을 시작합니다.

        이미 레코드가 있으면 아무것도 하지 않습니다. 존재 확인부터 레코드
        등록까지 이벤트 루프에 제어를 넘기지 않으므로 같은 피어에 대한
        동시 호출도 레코드를 하나만 만듭니다.

        Args:
            peer_id: 원격 피어 ID
            reconnect_attempts: 새 레코드에 기록할 재연결 시도 횟수

        Returns:
            bool: offer를 전송했으면 True
        """
        if peer_id in self.registry:
            logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 이미 연결 레코드 있음, initiate 생략")
            return False
        if self._mesh_full(peer_id):
            return False

        try:
            record = self._build_record(peer_id, reconnect_attempts)
        except Exception as e:
            logger.error(f"[WebRTC] 피어 {peer_id[:8]} 연결 생성 실패: {e}", exc_info=True)
            self.store.set_connection_error(f"Failed to connect to {peer_id}: {e}")
            return False

        record.connection_state = "connecting"
        await self.registry.upsert(peer_id, record)
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 시작 (재시도 {reconnect_attempts}회차)")

        pc = record.pc
        try:
            offer = await pc.createOffer()
            if not self.registry.is_current(record):
                return False
            await pc.setLocalDescription(offer)
            if not self.registry.is_current(record):
                return False

            sent = await self.signaling.send_offer(peer_id, pc.localDescription.sdp, pc.localDescription.type)
            if not sent:
                raise NegotiationError("offer could not be sent")
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_negotiation_error(record, "offer", e)
            return False

    async def accept_offer(self, peer_id: str, offer: SessionDescription) -> bool:
        """수신한 offer로 연결을 만들고 answer를 보냅니다.

        기존 레코드가 있으면 교체합니다 (마지막 offer 우선).

        Returns:
            bool: answer를 전송했으면 True
        """
        if self._mesh_full(peer_id):
            return False

        try:
            record = self._build_record(peer_id)
        except Exception as e:
            logger.error(f"[WebRTC] 피어 {peer_id[:8]} 연결 생성 실패: {e}", exc_info=True)
            self.store.set_connection_error(f"Failed to connect to {peer_id}: {e}")
            return False

        record.connection_state = "connecting"
        await self.registry.upsert(peer_id, record)
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} offer 수락")

        pc = record.pc
        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer.sdp, type=offer.type))
            if not self.registry.is_current(record):
                return False
            await self._flush_pending_candidates(record)
            if not self.registry.is_current(record):
                return False

            answer = await pc.createAnswer()
            if not self.registry.is_current(record):
                return False
            await pc.setLocalDescription(answer)
            if not self.registry.is_current(record):
                return False

            sent = await self.signaling.send_answer(peer_id, pc.localDescription.sdp, pc.localDescription.type)
            if not sent:
                raise NegotiationError("answer could not be sent")
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_negotiation_error(record, "answer", e)
            return False

    async def apply_answer(self, peer_id: str, answer: SessionDescription) -> bool:
        """보낸 offer에 대한 answer를 적용합니다.

        레코드가 없거나 offer 대기 상태(have-local-offer)가 아니면 오래된
        answer로 보고 무시합니다.
        """
        record = self.registry.get(peer_id)
        if record is None:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} 레코드 없음, answer 무시")
            return False
        if record.pc.signalingState != "have-local-offer":
            logger.warning(
                f"[WebRTC] 피어 {peer_id[:8]} answer 무시 (signaling={record.pc.signalingState})"
            )
            return False

        try:
            await record.pc.setRemoteDescription(RTCSessionDescription(sdp=answer.sdp, type=answer.type))
            if not self.registry.is_current(record):
                return False
            await self._flush_pending_candidates(record)
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} answer 적용 완료")
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_negotiation_error(record, "answer 적용", e)
            return False

    async def apply_ice_candidate(self, peer_id: str, payload: IceCandidatePayload) -> bool:
        """원격 ICE candidate를 적용합니다.

        remote description이 아직 없으면 레코드에 버퍼링했다가
        description 적용 직후 한꺼번에 추가합니다.

        Returns:
            bool: 적용 또는 버퍼링했으면 True
        """
        record = self.registry.get(peer_id)
        if record is None:
            logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 레코드 없음, ICE candidate 무시")
            return False
        if not payload.candidate:
            # end-of-candidates
            return False

        try:
            candidate = parse_ice_candidate(payload)
        except ValueError as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} ICE candidate 무시: {e}")
            return False

        if not record.has_remote_description:
            record.pending_candidates.append(candidate)
            logger.debug(
                f"[WebRTC] 피어 {peer_id[:8]} ICE candidate 버퍼링 ({len(record.pending_candidates)}개)"
            )
            return True

        try:
            await record.pc.addIceCandidate(candidate)
            return True
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} ICE candidate 추가 실패: {e}")
            return False

    async def _flush_pending_candidates(self, record: PeerConnectionRecord) -> None:
        pending, record.pending_candidates = record.pending_candidates, []
        for candidate in pending:
            if not self.registry.is_current(record):
                return
            try:
                await record.pc.addIceCandidate(candidate)
            except Exception as e:
                logger.warning(f"[WebRTC] 피어 {record.peer_id[:8]} 버퍼 candidate 추가 실패: {e}")
        if pending:
            logger.info(f"[WebRTC] 피어 {record.peer_id[:8]} 버퍼 candidate {len(pending)}개 적용")

    # ============================================================
    # 로컬 트랙
    # ============================================================

    async def attach_local_stream(self, stream: LocalAudioStream) -> None:
        """로컬 스트림을 설정하고 기존 연결의 송신 트랙을 교체합니다."""
        self._local_stream = stream
        await self._replace_outbound_tracks()

    async def detach_local_stream(self) -> None:
        """로컬 스트림을 해제하고 기존 연결의 송신 트랙을 비웁니다."""
        self._local_stream = None
        await self._replace_outbound_tracks()

    async def _replace_outbound_tracks(self) -> None:
        for record in self.registry.records():
            sender = record.audio_sender
            if sender is None or record.disposed:
                continue
            previous = sender.track
            try:
                await _replace_track(sender, self._outbound_track())
            except Exception as e:
                logger.warning(f"[WebRTC] 피어 {record.peer_id[:8]} 송신 트랙 교체 실패: {e}")
                continue
            if previous is not None:
                previous.stop()
        logger.info(
            f"[WebRTC] 송신 트랙 교체 완료 (스트림={'있음' if self._local_stream else '없음'}, "
            f"연결 {len(self.registry)}개)"
        )
