"""하트비트 발행 모듈.

주기적으로 모든 피어 연결의 상태 스냅샷을 릴레이에 보고합니다.
릴레이(또는 다른 참가자)는 이를 근거로 voice_connection_failed /
voice_reconnection_requested를 보낼 수 있습니다.
"""

import logging
from typing import Dict

from ..shared.scheduling import PeriodicTask
from ..signaling.adapter import SignalingAdapter
from .config import MeshConfig, mesh_config
from .registry import PeerConnectionRegistry

logger = logging.getLogger(__name__)


class HeartbeatPublisher:
    """voice_heartbeat 주기 발행기.

    Examples:
        >>> publisher = HeartbeatPublisher(registry, adapter)
        >>> publisher.build_snapshot()
        {'peer-456': {'connectionState': 'connected', 'iceConnectionState': 'completed'}}
    """

    def __init__(
        self,
        registry: PeerConnectionRegistry,
        signaling: SignalingAdapter,
        config: MeshConfig = mesh_config,
    ):
        self.registry = registry
        self.signaling = signaling
        self._task = PeriodicTask("heartbeat", config.HEARTBEAT_INTERVAL, self.publish_once)

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> bool:
        return self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def build_snapshot(self) -> Dict[str, Dict[str, str]]:
        """peer_id → {connectionState, iceConnectionState} 스냅샷."""
        return {record.peer_id: record.states() for record in self.registry.records()}

    async def publish_once(self) -> bool:
        """스냅샷을 한 번 발행합니다. 연결이 없으면 보내지 않습니다.

        Returns:
            bool: 전송했으면 True
        """
        snapshot = self.build_snapshot()
        if not snapshot:
            return False
        sent = await self.signaling.send_heartbeat(snapshot)
        if sent:
            logger.debug(f"[WebRTC] 하트비트 전송 (연결 {len(snapshot)}개)")
        return sent
