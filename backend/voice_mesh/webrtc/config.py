"""WebRTC 메시 모듈 설정.

TURN/STUN 서버, 헬스 체크/재연결/하트비트/유예 시간 등
음성 메시 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv
from aiortc import RTCConfiguration, RTCIceServer

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _env_float(name: str, default: float) -> float:
    """환경변수를 float로 읽습니다. 잘못된 값이면 기본값 사용."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[WebRTC Config] {name}={value!r} 해석 실패, 기본값 {default} 사용")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
        "stun:stun.cloudflare.com:3478",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def build_ice_servers(self) -> List[RTCIceServer]:
        """aiortc용 ICE 서버 목록을 생성합니다.

        Returns:
            List[RTCIceServer]: 커스텀 STUN → 공개 STUN → TURN 순서의 서버 목록
        """
        ice_servers = []

        if self.STUN_SERVER_URL:
            ice_servers.append(RTCIceServer(urls=[self.STUN_SERVER_URL]))

        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append(RTCIceServer(urls=[stun_url]))

        if self.has_turn_server:
            ice_servers.append(RTCIceServer(
                urls=[self.TURN_SERVER_URL],
                username=self.TURN_USERNAME,
                credential=self.TURN_CREDENTIAL
            ))
        return ice_servers

    def build_rtc_configuration(self) -> RTCConfiguration:
        """RTCPeerConnection 생성용 설정 객체."""
        return RTCConfiguration(iceServers=self.build_ice_servers())


# ============================================================
# 음성 메시 동작 설정
# ============================================================

@dataclass(frozen=True)
class MeshConfig:
    """음성 메시 신뢰성 관련 설정.

    모든 시간 값의 단위는 초입니다. 테스트에서는 필드를 직접 지정하여
    짧은 간격의 인스턴스를 만들어 사용합니다.

    Examples:
        >>> fast = MeshConfig(HEALTH_CHECK_INTERVAL=0.05, RECONNECT_DELAY=0.01)
    """

    # 헬스 체크 주기 / 재연결
    HEALTH_CHECK_INTERVAL: float = field(
        default_factory=lambda: _env_float("VOICE_HEALTH_CHECK_INTERVAL", 15.0)
    )
    RECONNECT_DELAY: float = field(
        default_factory=lambda: _env_float("VOICE_RECONNECT_DELAY", 2.0)
    )
    MAX_RECONNECT_ATTEMPTS: int = field(
        default_factory=lambda: _env_int("VOICE_MAX_RECONNECT_ATTEMPTS", 3)
    )

    # 하트비트
    HEARTBEAT_INTERVAL: float = field(
        default_factory=lambda: _env_float("VOICE_HEARTBEAT_INTERVAL", 30.0)
    )

    # 시그널링 단절 유예 시간
    GRACE_PERIOD: float = field(
        default_factory=lambda: _env_float("VOICE_GRACE_PERIOD", 60.0)
    )

    # 오디오 레벨 샘플링 / 음소거 폴링
    AUDIO_SAMPLE_INTERVAL: float = field(
        default_factory=lambda: _env_float("VOICE_AUDIO_SAMPLE_INTERVAL", 0.2)
    )
    MUTE_POLL_INTERVAL: float = field(
        default_factory=lambda: _env_float("VOICE_MUTE_POLL_INTERVAL", 0.2)
    )

    # 무음 판정 임계값 (명시적 음소거 메시지가 없을 때만 사용)
    SILENCE_THRESHOLD: float = field(
        default_factory=lambda: _env_float("VOICE_SILENCE_THRESHOLD", 0.02)
    )

    # 메시 최대 연결 수 (자신 제외, 총 10명)
    MAX_MESH_CONNECTIONS: int = field(
        default_factory=lambda: _env_int("VOICE_MAX_MESH_CONNECTIONS", 9)
    )

    # 원격 오디오 저장 경로 (없으면 MediaBlackhole로 소비만 함)
    VOICE_OUTPUT_PATH: Optional[str] = field(
        default_factory=lambda: os.getenv("VOICE_OUTPUT_PATH") or None
    )

    def __post_init__(self):
        if self.MAX_RECONNECT_ATTEMPTS < 0:
            raise ValueError("MAX_RECONNECT_ATTEMPTS must be >= 0")
        if self.MAX_MESH_CONNECTIONS < 1:
            raise ValueError("MAX_MESH_CONNECTIONS must be >= 1")


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
mesh_config = MeshConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 공개 STUN 사용")
logger.info(
    f"[WebRTC Config] 헬스체크 {mesh_config.HEALTH_CHECK_INTERVAL}s, "
    f"재연결 {mesh_config.MAX_RECONNECT_ATTEMPTS}회/{mesh_config.RECONNECT_DELAY}s, "
    f"하트비트 {mesh_config.HEARTBEAT_INTERVAL}s, 유예 {mesh_config.GRACE_PERIOD}s"
)
