"""시그널링 단절 유예 모듈.

시그널링 릴레이 연결이 끊겨도 피어 간 미디어 경로는 살아 있을 수 있으므로,
의도하지 않은 단절은 바로 정리하지 않고 GRACE_PERIOD 동안 기다립니다.

State Machine:
    TRANSPORT_UP --(단절, 의도적)--> TORN_DOWN
    TRANSPORT_UP --(단절, 비의도적)--> TRANSPORT_DOWN_GRACE  (헬스/하트비트 일시 중지, 타이머 시작)
    TRANSPORT_DOWN_GRACE --(재연결)--> TRANSPORT_UP  (타이머 취소, 폴링 재개, 재입장 알림)
    TRANSPORT_DOWN_GRACE --(타이머 만료)--> TORN_DOWN  (전체 정리)
    TORN_DOWN --(재연결, 세션 활성)--> TRANSPORT_UP  (폴링 재개, 재입장 알림)

Note:
    - 유예 타이머는 항상 최대 하나
    - 타이머 콜백은 실행 시점에 자신이 여전히 현재 타이머인지 확인
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..shared.scheduling import DelayedTask
from .config import MeshConfig, mesh_config

logger = logging.getLogger(__name__)

AsyncHook = Callable[[], Awaitable[None]]
TeardownHook = Callable[[bool], Awaitable[None]]


class GraceState(str, Enum):
    TRANSPORT_UP = "transport_up"
    TRANSPORT_DOWN_GRACE = "transport_down_grace"
    TORN_DOWN = "torn_down"


class GracePeriodController:
    """릴레이 단절 시 유예 기간을 관리합니다.

    Attributes:
        state (GraceState): 현재 상태

    Args:
        pause: 헬스 체크/하트비트 일시 중지
        resume: 폴링 재개
        teardown: 전체 정리 (인자: 의도적 정리 여부)
        reannounce: 재입장 알림 (join_voice, 음소거 상태, 참가자 요청)
        is_session_active: 로컬 세션(송신 스트림 또는 청취)이 활성 상태인지
    """

    def __init__(
        self,
        pause: AsyncHook,
        resume: AsyncHook,
        teardown: TeardownHook,
        reannounce: AsyncHook,
        is_session_active: Callable[[], bool],
        config: MeshConfig = mesh_config,
    ):
        self.state = GraceState.TRANSPORT_UP
        self.grace_period = config.GRACE_PERIOD
        self._pause = pause
        self._resume = resume
        self._teardown = teardown
        self._reannounce = reannounce
        self._is_session_active = is_session_active

        self._timer: Optional[DelayedTask] = None
        self._timer_generation = 0

    @property
    def grace_timer(self) -> Optional[DelayedTask]:
        """현재 유예 타이머 (없으면 None)."""
        return self._timer

    async def on_transport_down(self, intentional: bool) -> None:
        if intentional:
            logger.info("[Signaling] 의도적 단절, 음성 세션 정리")
            self._cancel_timer()
            self.state = GraceState.TORN_DOWN
            await self._teardown(True)
            return

        if self.state == GraceState.TRANSPORT_DOWN_GRACE:
            logger.debug("[Signaling] 이미 유예 기간 중, 타이머 유지")
            return
        if self.state == GraceState.TORN_DOWN:
            logger.debug("[Signaling] 이미 정리된 세션, 유예 생략")
            return

        self.state = GraceState.TRANSPORT_DOWN_GRACE
        await self._pause()

        self._timer_generation += 1
        generation = self._timer_generation
        self._timer = DelayedTask("grace-period", self.grace_period, lambda: self._expire(generation))
        logger.warning(f"[Signaling] 릴레이 단절, {self.grace_period}초 유예 시작 (피어 연결 유지)")

    async def on_transport_up(self) -> None:
        previous = self.state

        if previous == GraceState.TRANSPORT_DOWN_GRACE:
            self._cancel_timer()
            self.state = GraceState.TRANSPORT_UP
            logger.info("[Signaling] 유예 기간 중 릴레이 재연결, 세션 복구")
            await self._resume()
            await self._reannounce()
            return

        if previous == GraceState.TORN_DOWN:
            self.state = GraceState.TRANSPORT_UP
            if self._is_session_active():
                logger.info("[Signaling] 정리된 세션에 릴레이 재연결, 재입장")
                await self._resume()
                await self._reannounce()
            return

        if self._is_session_active():
            await self._reannounce()

    def mark_torn_down(self) -> None:
        """의도적 정리(퇴장)를 기록하고 유예 타이머를 취소합니다."""
        self._cancel_timer()
        self.state = GraceState.TORN_DOWN

    def reactivate(self, transport_connected: bool) -> None:
        """정리된 세션이 다시 시작될 때 호출합니다. 릴레이가 연결되어 있으면 TRANSPORT_UP으로 전환합니다."""
        if self.state == GraceState.TORN_DOWN and transport_connected:
            self.state = GraceState.TRANSPORT_UP

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        self._timer_generation += 1
        if timer is not None and timer.cancel():
            logger.debug("[Signaling] 유예 타이머 취소")

    async def _expire(self, generation: int) -> None:
        if generation != self._timer_generation or self.state != GraceState.TRANSPORT_DOWN_GRACE:
            return
        self._timer = None
        self.state = GraceState.TORN_DOWN
        logger.warning(f"[Signaling] 유예 기간({self.grace_period}초) 만료, 음성 세션 정리")
        await self._teardown(False)
