"""피어 연결 레지스트리 모듈.

원격 피어 ID별로 하나의 살아 있는 연결 레코드를 보관하고, 레코드가 소유한
리소스(RTCPeerConnection, 원격 오디오 싱크, 분석기)의 해제를 책임집니다.

Classes:
    PeerConnectionRecord: 원격 피어 하나와의 연결 상태 및 리소스
    PeerConnectionRegistry: peer_id → 레코드 매핑

Invariants:
    - peer_id당 살아 있는 레코드는 최대 하나
    - 기존 레코드가 있는 peer_id에 upsert하면 기존 레코드를 먼저 해제한 뒤
      새 레코드를 등록 (해제 도중 기존 레코드의 이벤트는 is_current 검사에서 걸러짐)
    - remove_and_dispose는 레코드를 맵에서 먼저 빼고 해제하므로, 해제 중인
      레코드는 get()/records()에 보이지 않음
    - 해제(dispose)는 연결 종료, 싱크 중지, 분석기 해제를 모두 시도함
      (한 단계의 실패가 나머지 단계를 막지 않고, 호출자가 취소되어도 끝까지 진행)
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set

from aiortc import RTCPeerConnection, RTCRtpSender

from ..audio.context import AudioAnalyser
from .tracks import RemoteAudioSink

logger = logging.getLogger(__name__)

_generations = itertools.count(1)


@dataclass(eq=False)
class PeerConnectionRecord:
    """원격 피어 하나와의 연결 레코드.

    Attributes:
        peer_id (str): 원격 피어 ID
        pc (RTCPeerConnection): 피어 연결
        connection_state (str): new | connecting | connected | disconnected | failed | closed
        ice_connection_state (str): new | checking | connected | completed | failed | disconnected | closed
        reconnect_attempts (int): 이 피어에 대한 연속 재연결 시도 횟수
        last_health_check_at (float): 마지막 헬스 체크 시각 (monotonic, 0.0이면 없음)
        remote_sink (Optional[RemoteAudioSink]): 원격 오디오 소비자 (레코드가 소유)
        analyser (Optional[AudioAnalyser]): 원격 오디오 분석기 (레코드가 소유)
        audio_sender (Optional[RTCRtpSender]): 로컬 오디오 송신자 (트랙 교체용)
        pending_candidates (list): remote description 적용 전에 도착한 ICE candidate
        generation (int): 레코드 식별 번호 (재생성 시 증가)
    """

    peer_id: str
    pc: RTCPeerConnection
    connection_state: str = "new"
    ice_connection_state: str = "new"
    reconnect_attempts: int = 0
    last_health_check_at: float = 0.0
    remote_sink: Optional[RemoteAudioSink] = None
    analyser: Optional[AudioAnalyser] = None
    audio_sender: Optional[RTCRtpSender] = None
    pending_candidates: List = field(default_factory=list)
    generation: int = field(default_factory=lambda: next(_generations))
    disposed: bool = False
    _release_task: Optional[asyncio.Future] = field(default=None, init=False, repr=False)

    @property
    def has_remote_description(self) -> bool:
        return self.pc.remoteDescription is not None

    def states(self) -> Dict[str, str]:
        """하트비트용 상태 딕셔너리."""
        return {
            "connectionState": self.connection_state,
            "iceConnectionState": self.ice_connection_state,
        }

    async def dispose(self) -> None:
        """레코드가 소유한 리소스를 모두 해제합니다. 여러 번 호출해도 안전합니다.

        해제 작업은 별도 태스크에서 shield로 실행되므로, 호출자가 취소되어도
        중단되지 않습니다. 이후의 dispose() 호출은 같은 작업의 완료를 기다립니다.
        """
        if self._release_task is None:
            self.disposed = True
            self.pending_candidates.clear()
            self._release_task = asyncio.ensure_future(self._release())
        await asyncio.shield(self._release_task)

    @property
    def released(self) -> bool:
        """해제 작업이 끝났는지 여부."""
        return self._release_task is not None and self._release_task.done()

    async def _release(self) -> None:
        try:
            await self.pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {self.peer_id[:8]} 연결 종료 실패: {type(e).__name__}: {e}")

        if self.remote_sink is not None:
            try:
                await self.remote_sink.stop()
            except Exception as e:
                logger.warning(f"[WebRTC] 피어 {self.peer_id[:8]} 오디오 싱크 중지 실패: {type(e).__name__}: {e}")

        if self.analyser is not None:
            try:
                await self.analyser.disconnect()
            except Exception as e:
                logger.warning(f"[WebRTC] 피어 {self.peer_id[:8]} 분석기 해제 실패: {type(e).__name__}: {e}")

        self.connection_state = "closed"
        self.ice_connection_state = "closed"


class PeerConnectionRegistry:
    """peer_id → PeerConnectionRecord 매핑.

    이벤트 루프 하나에서만 사용되며, 이 레지스트리가 레코드의 유일한 소유자입니다.

    Examples:
        >>> registry = PeerConnectionRegistry()
        >>> await registry.upsert("peer-123", record)
        >>> registry.get("peer-123") is record
        True
        >>> await registry.remove_and_dispose("peer-123")
        True
    """

    def __init__(self):
        self._records: Dict[str, PeerConnectionRecord] = {}

        # 맵에서 빠졌지만 해제가 아직 끝나지 않은 레코드
        self._disposing: Set[PeerConnectionRecord] = set()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._records

    def get(self, peer_id: str) -> Optional[PeerConnectionRecord]:
        return self._records.get(peer_id)

    def is_current(self, record: PeerConnectionRecord) -> bool:
        """record가 해당 피어의 현재 레코드인지 여부 (지연 작업의 재검증용)."""
        return self._records.get(record.peer_id) is record

    def peer_ids(self) -> List[str]:
        return list(self._records.keys())

    def records(self) -> Iterator[PeerConnectionRecord]:
        """현재 레코드들의 스냅샷을 순회합니다."""
        return iter(list(self._records.values()))

    def for_each(self, fn: Callable[[PeerConnectionRecord], None]) -> None:
        """모든 레코드에 fn을 적용합니다. 순회 중 맵이 바뀌어도 안전합니다."""
        for record in list(self._records.values()):
            fn(record)

    async def upsert(self, peer_id: str, record: PeerConnectionRecord) -> None:
        """레코드를 등록합니다.

        기존 레코드가 없으면 이벤트 루프에 제어를 넘기지 않고 즉시 등록합니다.
        기존 레코드가 있으면 먼저 해제한 뒤 새 레코드를 등록합니다.

        Args:
            peer_id: 원격 피어 ID
            record: 등록할 레코드 (record.peer_id와 같아야 함)
        """
        if record.peer_id != peer_id:
            raise ValueError(f"record.peer_id mismatch: {record.peer_id!r} != {peer_id!r}")

        previous = self._records.get(peer_id)
        while previous is not None and previous is not record:
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 기존 연결 교체")
            del self._records[peer_id]
            await self._dispose(previous)
            # 해제하는 동안 다른 레코드가 등록되었으면 그것도 해제 (마지막 등록이 우선)
            previous = self._records.get(peer_id)
        self._records[peer_id] = record

    async def remove_and_dispose(self, peer_id: str) -> bool:
        """레코드를 맵에서 제거하고 리소스를 해제합니다.

        Returns:
            bool: 제거한 레코드가 있었으면 True
        """
        record = self._records.pop(peer_id, None)
        if record is None:
            return False
        await self._dispose(record)
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 정리 완료 (남은 연결 {len(self._records)}개)")
        return True

    async def dispose_all(self) -> None:
        """모든 레코드를 해제하고 맵을 비웁니다. 진행 중이던 해제도 끝까지 기다립니다."""
        for peer_id in self.peer_ids():
            await self.remove_and_dispose(peer_id)
        for record in list(self._disposing):
            await self._dispose(record)

    async def _dispose(self, record: PeerConnectionRecord) -> None:
        self._disposing.add(record)
        try:
            await record.dispose()
        finally:
            if record.released:
                self._disposing.discard(record)
