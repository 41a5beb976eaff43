"""시그널링 어댑터 모듈.

전송 계층 위에서 타입이 지정된 음성 시그널링 메시지를 송수신합니다.
수신 메시지를 파싱하고, 다른 사용자/다른 룸을 대상으로 한 메시지를
걸러낸 뒤 이벤트별 핸들러를 별도 태스크로 실행합니다.

Classes:
    SignalingAdapter: 음성 메시 시그널링 송수신 인터페이스

Note:
    - 핸들러는 메시지별 독립 태스크로 실행되므로 협상(await)이 길어져도
      다음 메시지 수신이 막히지 않음
    - 핸들러 예외는 로그로만 남고 어댑터 밖으로 전파되지 않음
    - 전송 실패는 send()가 False를 반환하는 것으로 표현됨
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .messages import (
    IceCandidatePayload,
    JoinVoice,
    LeaveVoice,
    PeerConnectionStates,
    RequestVoiceParticipants,
    SessionDescription,
    SignalingEvent,
    SignalingMessage,
    SignalingMessageError,
    VoiceAnswer,
    VoiceHeartbeat,
    VoiceIceCandidate,
    VoiceMuteChanged,
    VoiceOffer,
    parse_message,
)
from .transport import SignalingTransport, SignalingTransportError

logger = logging.getLogger(__name__)

MessageCallback = Callable[[SignalingMessage], Awaitable[None]]
TransportUpCallback = Callable[[], Awaitable[None]]
TransportDownCallback = Callable[[bool], Awaitable[None]]


class SignalingAdapter:
    """음성 메시 시그널링 어댑터.

    Attributes:
        transport (SignalingTransport): 릴레이 전송 계층
        room_id (str): 현재 음성 룸 ID
        user_id (str): 로컬 사용자 ID

    Examples:
        >>> adapter = SignalingAdapter(transport, room_id="room-1", user_id="alice")
        >>> adapter.on(SignalingEvent.VOICE_OFFER, handle_offer)
        >>> await adapter.send_join("Alice")
    """

    def __init__(self, transport: SignalingTransport, room_id: str, user_id: str):
        self.transport = transport
        self.room_id = room_id
        self.user_id = user_id

        # event -> handler
        self._handlers: Dict[SignalingEvent, MessageCallback] = {}
        self._up_callbacks: List[TransportUpCallback] = []
        self._down_callbacks: List[TransportDownCallback] = []

        # 실행 중인 핸들러 태스크 (GC 방지 및 종료 시 취소용)
        self._handler_tasks: Set[asyncio.Task] = set()

        transport.set_handlers(
            on_message=self._handle_message,
            on_connect=self._handle_connect,
            on_disconnect=self._handle_disconnect,
        )

    @property
    def connected(self) -> bool:
        """릴레이 연결 여부."""
        return self.transport.connected

    def on(self, event: SignalingEvent, handler: MessageCallback) -> None:
        """이벤트 핸들러를 등록합니다. 같은 이벤트에 다시 등록하면 교체됩니다."""
        self._handlers[SignalingEvent(event)] = handler

    def on_transport_up(self, callback: TransportUpCallback) -> None:
        """릴레이 (재)연결 콜백을 등록합니다."""
        self._up_callbacks.append(callback)

    def on_transport_down(self, callback: TransportDownCallback) -> None:
        """릴레이 단절 콜백을 등록합니다. 인자는 의도적 단절 여부입니다."""
        self._down_callbacks.append(callback)

    async def connect(self) -> None:
        await self.transport.connect()

    async def disconnect(self) -> None:
        await self.transport.disconnect()

    # ============================================================
    # 송신
    # ============================================================

    async def send(self, message: SignalingMessage) -> bool:
        """메시지를 릴레이로 전송합니다.

        Returns:
            bool: 전송 성공 여부 (연결 없음/전송 실패 시 False)
        """
        try:
            await self.transport.emit(message.event.value, message.to_payload())
            return True
        except SignalingTransportError as e:
            logger.warning(f"[Signaling] {message.event.value} 전송 실패: {e}")
            return False

    async def send_join(self, username: str) -> bool:
        return await self.send(JoinVoice(room_id=self.room_id, user_id=self.user_id, username=username))

    async def send_leave(self) -> bool:
        return await self.send(LeaveVoice(room_id=self.room_id, user_id=self.user_id))

    async def request_participants(self) -> bool:
        return await self.send(RequestVoiceParticipants(room_id=self.room_id))

    async def send_offer(self, target_user_id: str, sdp: str, sdp_type: str = "offer") -> bool:
        return await self.send(VoiceOffer(
            offer=SessionDescription(sdp=sdp, type=sdp_type),
            target_user_id=target_user_id,
            from_user_id=self.user_id,
            room_id=self.room_id,
        ))

    async def send_answer(self, target_user_id: str, sdp: str, sdp_type: str = "answer") -> bool:
        return await self.send(VoiceAnswer(
            answer=SessionDescription(sdp=sdp, type=sdp_type),
            target_user_id=target_user_id,
            from_user_id=self.user_id,
            room_id=self.room_id,
        ))

    async def send_ice_candidate(
        self,
        target_user_id: str,
        candidate: str,
        sdp_mid: Optional[str],
        sdp_m_line_index: Optional[int],
    ) -> bool:
        return await self.send(VoiceIceCandidate(
            candidate=IceCandidatePayload(
                candidate=candidate,
                sdp_mid=sdp_mid,
                sdp_m_line_index=sdp_m_line_index,
            ),
            target_user_id=target_user_id,
            from_user_id=self.user_id,
            room_id=self.room_id,
        ))

    async def send_mute_changed(self, is_muted: bool) -> bool:
        return await self.send(VoiceMuteChanged(room_id=self.room_id, user_id=self.user_id, is_muted=is_muted))

    async def send_heartbeat(self, connection_states: Dict[str, Dict[str, str]]) -> bool:
        states = {
            peer_id: PeerConnectionStates(
                connection_state=s["connectionState"],
                ice_connection_state=s["iceConnectionState"],
            )
            for peer_id, s in connection_states.items()
        }
        return await self.send(VoiceHeartbeat(
            room_id=self.room_id,
            user_id=self.user_id,
            connection_states=states,
        ))

    # ============================================================
    # 수신
    # ============================================================

    def _is_for_us(self, message: SignalingMessage) -> bool:
        target = getattr(message, "target_user_id", None)
        if target and target != self.user_id:
            return False
        room = getattr(message, "room_id", None)
        if room and room != self.room_id:
            return False
        return True

    async def _handle_message(self, event: str, data: Any) -> None:
        try:
            message = parse_message(event, data)
        except SignalingMessageError as e:
            logger.warning(f"[Signaling] 메시지 무시: {e}")
            return

        if not self._is_for_us(message):
            logger.debug(f"[Signaling] 다른 대상의 {event} 무시")
            return

        handler = self._handlers.get(message.event)
        if handler is None:
            logger.debug(f"[Signaling] 핸들러 없는 이벤트 무시: {event}")
            return

        task = asyncio.create_task(self._run_handler(handler, message), name=f"signaling:{event}")
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _run_handler(self, handler: MessageCallback, message: SignalingMessage) -> None:
        try:
            await handler(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[Signaling] {message.event.value} 처리 오류: {type(e).__name__}: {e}",
                exc_info=True,
            )

    async def _handle_connect(self) -> None:
        for callback in list(self._up_callbacks):
            await callback()

    async def _handle_disconnect(self, intentional: bool) -> None:
        for callback in list(self._down_callbacks):
            await callback(intentional)

    async def cancel_pending_handlers(self) -> None:
        """실행 중인 핸들러 태스크를 모두 취소하고 종료를 기다립니다.

        호출한 태스크 자신은 취소하지 않습니다.
        """
        current = asyncio.current_task()
        tasks = [t for t in self._handler_tasks if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
