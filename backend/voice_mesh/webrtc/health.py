"""연결 헬스 모니터 모듈.

주기적으로 모든 피어 연결 상태를 확인하고, 실패/단절된 연결을 제한된
횟수만큼 재연결합니다.

Health Check Flow:
    1. 레코드의 last_health_check_at 갱신
    2. 정상(connected + ICE connected/completed) → 재시도 횟수 초기화
    3. failed/disconnected →
       - 재시도 횟수 < MAX_RECONNECT_ATTEMPTS: 횟수 증가, 레코드 해제,
         RECONNECT_DELAY 후 initiate(peer_id, 횟수) 예약
       - 그 외: 세션에 영구 오류 기록, 레코드 해제 (더 이상 재연결 없음)

Note:
    - 재시도 횟수는 레코드가 아니라 모니터가 피어별로 보관하므로
      해제/재생성을 거쳐도 상한이 유지됨
    - 피어당 예약된 재연결은 최대 하나이며, 실행 시점에 레코드가 없고
      모니터가 실행 중인지 다시 확인함
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from ..session.state import VoiceSessionStore
from ..shared.scheduling import DelayedTask, PeriodicTask
from .config import MeshConfig, mesh_config
from .lifecycle import ConnectionLifecycleManager
from .registry import PeerConnectionRecord, PeerConnectionRegistry

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
PENDING = "pending"
RECONNECTING = "reconnecting"
FAILED = "failed"

_UNHEALTHY_STATES = ("failed", "disconnected")


def is_healthy(record: PeerConnectionRecord) -> bool:
    return (
        record.connection_state == "connected"
        and record.ice_connection_state in ("connected", "completed")
    )


def is_unhealthy(record: PeerConnectionRecord) -> bool:
    return (
        record.connection_state in _UNHEALTHY_STATES
        or record.ice_connection_state in _UNHEALTHY_STATES
    )


class HealthMonitor:
    """피어 연결 헬스 체크 및 제한된 재연결.

    Attributes:
        registry (PeerConnectionRegistry): 확인할 레코드 저장소
        lifecycle (ConnectionLifecycleManager): 재연결 시 initiate 호출
        store (VoiceSessionStore): 영구 실패 오류 기록

    Examples:
        >>> monitor = HealthMonitor(registry, lifecycle, store)
        >>> monitor.start()
        >>> await monitor.check_peer("peer-456")
        'healthy'
        >>> await monitor.stop()
    """

    def __init__(
        self,
        registry: PeerConnectionRegistry,
        lifecycle: ConnectionLifecycleManager,
        store: VoiceSessionStore,
        config: MeshConfig = mesh_config,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.store = store
        self.config = config
        self._clock = clock
        self._task = PeriodicTask("health-check", config.HEALTH_CHECK_INTERVAL, self.check_all)

        # peer_id -> 연속 재연결 시도 횟수
        self._attempts: Dict[str, int] = {}

        # peer_id -> 예약된 재연결
        self._reconnects: Dict[str, DelayedTask] = {}

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> bool:
        started = self._task.start()
        if started:
            logger.info(f"[WebRTC] 헬스 모니터 시작 (간격 {self.config.HEALTH_CHECK_INTERVAL}s)")
        return started

    async def stop(self) -> None:
        """주기 체크를 중지하고 예약된 재연결을 모두 취소합니다."""
        await self._task.stop()
        self.cancel_reconnects()

    def cancel_reconnects(self) -> None:
        for peer_id, task in list(self._reconnects.items()):
            if task.cancel():
                logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 예약된 재연결 취소")
        self._reconnects.clear()

    def pending_reconnects(self) -> List[str]:
        return [peer_id for peer_id, task in self._reconnects.items() if task.pending]

    def attempts(self, peer_id: str) -> int:
        return self._attempts.get(peer_id, 0)

    def forget(self, peer_id: str) -> None:
        """피어의 재시도 이력과 예약된 재연결을 제거합니다 (피어 퇴장/재입장 시)."""
        self._attempts.pop(peer_id, None)
        task = self._reconnects.pop(peer_id, None)
        if task is not None:
            task.cancel()

    def reset(self) -> None:
        """모든 피어의 재시도 이력과 예약된 재연결을 제거합니다."""
        self.cancel_reconnects()
        self._attempts.clear()

    async def check_all(self) -> None:
        for record in self.registry.records():
            await self.check_peer(record.peer_id)

    async def on_peer_failed(self, peer_id: str) -> None:
        """연결이 failed로 전이했을 때 즉시 체크합니다. 모니터가 멈춰 있으면 무시합니다."""
        if not self.running:
            logger.debug(f"[WebRTC] 헬스 모니터 중지 상태, 피어 {peer_id[:8]} 즉시 체크 생략")
            return
        await self.check_peer(peer_id)

    async def check_peer(self, peer_id: str) -> Optional[str]:
        """피어 하나의 상태를 확인하고 필요하면 재연결을 예약합니다.

        Returns:
            Optional[str]: healthy | pending | reconnecting | failed (레코드가 없으면 None)
        """
        record = self.registry.get(peer_id)
        if record is None or record.disposed:
            # 같은 실패에 대한 두 번째 이벤트 (ICE/connection 동시 failed)
            return None
        record.last_health_check_at = self._clock()

        if is_healthy(record):
            if self._attempts.pop(peer_id, 0):
                logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 회복, 재시도 횟수 초기화")
            record.reconnect_attempts = 0
            return HEALTHY

        if not is_unhealthy(record):
            return PENDING

        attempts = max(self._attempts.get(peer_id, 0), record.reconnect_attempts)
        if attempts < self.config.MAX_RECONNECT_ATTEMPTS:
            attempts += 1
            self._attempts[peer_id] = attempts
            logger.warning(
                f"[WebRTC] 피어 {peer_id[:8]} 비정상 "
                f"(connection={record.connection_state}, ice={record.ice_connection_state}), "
                f"재연결 {attempts}/{self.config.MAX_RECONNECT_ATTEMPTS}"
            )
            await self.registry.remove_and_dispose(peer_id)
            self._schedule_reconnect(peer_id, attempts)
            return RECONNECTING

        logger.error(
            f"[WebRTC] 피어 {peer_id[:8]} 재연결 {self.config.MAX_RECONNECT_ATTEMPTS}회 실패, 연결 포기"
        )
        self.store.set_connection_error(
            f"Connection to {peer_id} failed after {self.config.MAX_RECONNECT_ATTEMPTS} reconnect attempts"
        )
        self._attempts.pop(peer_id, None)
        await self.registry.remove_and_dispose(peer_id)
        return FAILED

    def _schedule_reconnect(self, peer_id: str, attempts: int) -> None:
        previous = self._reconnects.pop(peer_id, None)
        if previous is not None:
            previous.cancel()

        holder: List[DelayedTask] = []

        async def reconnect() -> None:
            if self._reconnects.get(peer_id) is holder[0]:
                del self._reconnects[peer_id]
            if not self.running:
                logger.debug(f"[WebRTC] 헬스 모니터 중지됨, 피어 {peer_id[:8]} 재연결 생략")
                return
            if peer_id in self.registry:
                logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 이미 재연결됨")
                return
            await self.lifecycle.initiate(peer_id, reconnect_attempts=attempts)

        task = DelayedTask(f"reconnect:{peer_id[:8]}", self.config.RECONNECT_DELAY, reconnect)
        holder.append(task)
        self._reconnects[peer_id] = task
