"""WebRTC 메시 모듈.

피어 연결 레지스트리, 연결 수명 주기, 헬스 모니터, 하트비트, 릴레이 단절
유예 기능을 제공합니다.

Classes:
    PeerConnectionRegistry: peer_id → 연결 레코드
    ConnectionLifecycleManager: offer/answer/ICE 협상
    HealthMonitor: 주기 헬스 체크 및 제한된 재연결
    HeartbeatPublisher: 연결 상태 보고
    GracePeriodController: 릴레이 단절 유예
    LocalAudioStream: 로컬 마이크 스트림
    RemoteAudioSink: 원격 오디오 소비자

Config:
    ice_config: ICE 서버 설정
    mesh_config: 헬스/재연결/하트비트/유예 설정
"""

from .config import ice_config, mesh_config, ICEServerConfig, MeshConfig
from .tracks import LocalAudioTrack, LocalAudioStream, RemoteAudioSink
from .registry import PeerConnectionRecord, PeerConnectionRegistry
from .lifecycle import ConnectionLifecycleManager, NegotiationError, parse_ice_candidate
from .health import HealthMonitor
from .heartbeat import HeartbeatPublisher
from .grace import GracePeriodController, GraceState

__all__ = [
    # Classes
    "LocalAudioTrack",
    "LocalAudioStream",
    "RemoteAudioSink",
    "PeerConnectionRecord",
    "PeerConnectionRegistry",
    "ConnectionLifecycleManager",
    "NegotiationError",
    "parse_ice_candidate",
    "HealthMonitor",
    "HeartbeatPublisher",
    "GracePeriodController",
    "GraceState",
    # Config
    "ice_config",
    "mesh_config",
    "ICEServerConfig",
    "MeshConfig",
]
