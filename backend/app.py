"""FastAPI Voice Mesh Node.

이 모듈은 음성 메시 참가자 프로세스 하나를 실행합니다. 시그널링 릴레이에
WebSocket으로 접속하여 같은 룸의 다른 참가자들과 P2P 오디오 연결(풀 메시)을
맺고, 연결 상태를 감시/복구합니다. HTTP로는 세션 상태 조회와 제어
엔드포인트만 제공합니다.

주요 기능:
    - 시그널링 릴레이 접속 및 자동 재연결
    - 참가자별 WebRTC 연결 수립 / 헬스 체크 / 제한된 재연결
    - 릴레이 단절 시 유예 기간 동안 피어 연결 유지
    - 세션 상태(참가자, 음소거, 오디오 레벨) 조회 API

Architecture:
    - Full Mesh: 참가자마다 하나의 RTCPeerConnection
    - VoiceMeshManager: 시그널링/연결/헬스/하트비트/유예/오디오 레벨 통합
    - WebSocketSignalingTransport: 릴레이 클라이언트 (미디어는 전달하지 않음)
"""
import logging
from contextlib import asynccontextmanager
import os
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dotenv import load_dotenv
from pathlib import Path

# Load 환경변수 로드 variables from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")

from voice_mesh import VoiceMeshManager
from voice_mesh.signaling import WebSocketSignalingTransport, signaling_config
from voice_mesh.webrtc import mesh_config
from routes import health_router, voice_router, init_voice_manager


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/voice_{__import__('datetime').datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    import glob
    from datetime import datetime, timedelta

    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "voice_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("voice_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


# 글로벌 음성 세션 매니저 (룸/사용자 설정이 있을 때만 생성)
voice_manager: Optional[VoiceMeshManager] = None


def create_voice_manager() -> Optional[VoiceMeshManager]:
    """환경변수 설정으로 VoiceMeshManager를 생성합니다.

    Returns:
        Optional[VoiceMeshManager]: VOICE_ROOM_ID / VOICE_USER_ID가 없으면 None
    """
    if not signaling_config.has_identity:
        logger.warning("[Voice] VOICE_ROOM_ID / VOICE_USER_ID 미설정, 음성 세션 없이 실행")
        return None

    transport = WebSocketSignalingTransport(
        signaling_config.SIGNALING_URL,
        reconnect_delay=signaling_config.RECONNECT_DELAY,
        max_reconnect_delay=signaling_config.MAX_RECONNECT_DELAY,
    )
    return VoiceMeshManager(
        transport,
        room_id=signaling_config.ROOM_ID,
        user_id=signaling_config.USER_ID,
        username=signaling_config.USERNAME or signaling_config.USER_ID,
        can_transmit=signaling_config.CAN_TRANSMIT,
        config=mesh_config,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    서버 시작 시 음성 세션을 만들고 릴레이에 접속하며, 종료 시 퇴장 처리와
    모든 피어 연결 정리를 수행합니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환
    """
    global voice_manager

    logger.info("음성 메시 노드 시작 중...")

    # 오래된 로그 파일 정리 (2개월 이상)
    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    voice_manager = create_voice_manager()
    init_voice_manager(voice_manager)
    if voice_manager is not None:
        await voice_manager.start()

    yield

    logger.info("서버 종료 중...")

    # 퇴장 처리 및 피어 연결 정리
    if voice_manager is not None:
        await voice_manager.shutdown()
    init_voice_manager(None)


app = FastAPI(title="Voice Mesh Node", lifespan=lifespan)

# CORS - 개발 환경에서는 모든 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}|172\.\d{1,3}\.\d{1,3}\.\d{1,3}):\d+$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(voice_router)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (liveness).

    Returns:
        dict: 서버 상태 정보를 포함하는 딕셔너리
            - status (str): 서버 상태
            - service (str): 서비스 이름
    """
    return {"status": "ok", "service": "Voice Mesh Node"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")), log_level="info")
