"""시그널링 전송 계층 모듈.

외부 릴레이와의 양방향 이벤트 채널을 추상화합니다. 전송 계층은 메시지의
의미를 알지 못하며, (이벤트 이름, 페이로드) 쌍과 연결/단절 이벤트만
상위 계층(SignalingAdapter)에 전달합니다.

Classes:
    SignalingTransport: 전송 계층 추상 기반 클래스
    WebSocketSignalingTransport: websockets 기반 릴레이 클라이언트

Wire Format:
    {"type": "<event>", "data": {...}}  (JSON 텍스트 프레임)

Note:
    - 단절 시 자동 재연결 (지수 백오프)
    - disconnect() 호출로 인한 단절은 intentional=True로 보고됨
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, Any], Awaitable[None]]
ConnectHandler = Callable[[], Awaitable[None]]
DisconnectHandler = Callable[[bool], Awaitable[None]]


class SignalingTransportError(RuntimeError):
    """릴레이에 메시지를 보낼 수 없음 (연결 없음 / 전송 실패)."""


class SignalingTransport(ABC):
    """시그널링 전송 계층 기반 클래스.

    하위 클래스는 connected/connect/disconnect/emit을 구현하고, 수신 메시지와
    연결 상태 변화를 _notify_* 메서드로 전달합니다.
    """

    def __init__(self):
        self._on_message: Optional[MessageHandler] = None
        self._on_connect: Optional[ConnectHandler] = None
        self._on_disconnect: Optional[DisconnectHandler] = None

    def set_handlers(
        self,
        on_message: Optional[MessageHandler] = None,
        on_connect: Optional[ConnectHandler] = None,
        on_disconnect: Optional[DisconnectHandler] = None,
    ) -> None:
        """수신/연결/단절 콜백을 등록합니다."""
        self._on_message = on_message
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect

    @property
    @abstractmethod
    def connected(self) -> bool:
        """릴레이 연결 여부."""

    @abstractmethod
    async def connect(self) -> None:
        """릴레이 연결을 시작합니다."""

    @abstractmethod
    async def disconnect(self) -> None:
        """의도적으로 연결을 종료합니다."""

    @abstractmethod
    async def emit(self, event: str, data: Dict[str, Any]) -> None:
        """이벤트를 릴레이로 전송합니다.

        Raises:
            SignalingTransportError: 연결이 없거나 전송 실패
        """

    async def _notify_message(self, event: str, data: Any) -> None:
        if self._on_message is None:
            return
        try:
            await self._on_message(event, data)
        except Exception as e:
            logger.error(f"[Signaling] 메시지 핸들러 오류 ({event}): {e}", exc_info=True)

    async def _notify_connect(self) -> None:
        if self._on_connect is None:
            return
        try:
            await self._on_connect()
        except Exception as e:
            logger.error(f"[Signaling] 연결 핸들러 오류: {e}", exc_info=True)

    async def _notify_disconnect(self, intentional: bool) -> None:
        if self._on_disconnect is None:
            return
        try:
            await self._on_disconnect(intentional)
        except Exception as e:
            logger.error(f"[Signaling] 단절 핸들러 오류: {e}", exc_info=True)


class WebSocketSignalingTransport(SignalingTransport):
    """websockets 기반 시그널링 릴레이 클라이언트.

    연결이 끊기면 reconnect_delay부터 max_reconnect_delay까지 두 배씩 늘려가며
    재연결을 시도합니다. disconnect()가 호출되기 전까지는 계속 재시도합니다.

    Attributes:
        url (str): 릴레이 WebSocket URL
        reconnect_delay (float): 첫 재연결 대기 시간 (초)
        max_reconnect_delay (float): 최대 재연결 대기 시간 (초)

    Examples:
        >>> transport = WebSocketSignalingTransport("ws://localhost:8000/ws")
        >>> transport.set_handlers(on_message=handle, on_connect=up, on_disconnect=down)
        >>> await transport.connect()
        >>> await transport.emit("join_voice", {"roomId": "r1", "userId": "u1", "username": "kim"})
        >>> await transport.disconnect()
    """

    def __init__(self, url: str, reconnect_delay: float = 1.0, max_reconnect_delay: float = 10.0):
        super().__init__()
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run(), name="signaling-websocket")

    async def disconnect(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except WebSocketException as e:
                logger.warning(f"[Signaling] 연결 종료 중 오류: {e}")
        if task is None:
            return
        if ws is None:
            # 재연결 대기 중이면 바로 취소
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def emit(self, event: str, data: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise SignalingTransportError(f"not connected (event={event})")
        try:
            await ws.send(json.dumps({"type": event, "data": data}, ensure_ascii=False))
        except WebSocketException as e:
            raise SignalingTransportError(f"send failed (event={event}): {e}") from e

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while not self._closing:
            was_connected = False
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    was_connected = True
                    delay = self.reconnect_delay
                    logger.info(f"[Signaling] 릴레이 연결됨: {self.url}")
                    await self._notify_connect()

                    async for raw in ws:
                        await self._handle_raw(raw)
            except (OSError, WebSocketException) as e:
                logger.warning(f"[Signaling] 릴레이 연결 오류: {type(e).__name__}: {e}")
            finally:
                self._ws = None

            if was_connected:
                logger.info(f"[Signaling] 릴레이 연결 끊김 (의도적: {self._closing})")
                await self._notify_disconnect(self._closing)

            if self._closing:
                break

            logger.info(f"[Signaling] {delay:.1f}초 후 재연결 시도")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _handle_raw(self, raw: Any) -> None:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[Signaling] JSON 파싱 실패, 무시: {e}")
            return

        if not isinstance(envelope, dict) or "type" not in envelope:
            logger.warning(f"[Signaling] 잘못된 메시지 형식, 무시: {str(envelope)[:100]}")
            return

        await self._notify_message(envelope["type"], envelope.get("data"))
