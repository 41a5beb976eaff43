"""시그널링 모듈 설정.

릴레이 서버 주소, 재연결 백오프, 음성 세션 식별 정보.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _parse_bool(value: Optional[str], default: bool = True) -> bool:
    """문자열을 bool로 변환."""
    if value is None or value == "":
        return default
    return value.lower() in ("true", "1", "yes", "on")


@dataclass(frozen=True)
class SignalingConfig:
    """시그널링 릴레이 및 세션 식별 설정."""

    # 릴레이 WebSocket 주소
    SIGNALING_URL: str = field(
        default_factory=lambda: os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")
    )

    # 재연결 백오프 (초)
    RECONNECT_DELAY: float = field(
        default_factory=lambda: float(os.getenv("SIGNALING_RECONNECT_DELAY", "1"))
    )
    MAX_RECONNECT_DELAY: float = field(
        default_factory=lambda: float(os.getenv("SIGNALING_MAX_RECONNECT_DELAY", "10"))
    )

    # 세션 식별
    ROOM_ID: Optional[str] = field(default_factory=lambda: os.getenv("VOICE_ROOM_ID"))
    USER_ID: Optional[str] = field(default_factory=lambda: os.getenv("VOICE_USER_ID"))
    USERNAME: str = field(default_factory=lambda: os.getenv("VOICE_USERNAME", ""))
    CAN_TRANSMIT: bool = field(
        default_factory=lambda: _parse_bool(os.getenv("VOICE_CAN_TRANSMIT"), True)
    )

    @property
    def has_identity(self) -> bool:
        """룸/사용자 ID 설정 완료 여부."""
        return bool(self.ROOM_ID and self.USER_ID)


signaling_config = SignalingConfig()

logger.info(f"[Signaling Config] 릴레이: {signaling_config.SIGNALING_URL}")
logger.info(
    f"[Signaling Config] 룸={signaling_config.ROOM_ID}, 사용자={signaling_config.USER_ID}, "
    f"송신 가능={signaling_config.CAN_TRANSMIT}"
)
