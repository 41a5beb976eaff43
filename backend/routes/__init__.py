"""FastAPI 라우터 모듈.

app.py에서 분리된 API 엔드포인트들을 제공합니다.
"""

from .health import router as health_router
from .voice import router as voice_router
from .deps import verify_auth_header, init_voice_manager, get_voice_manager

__all__ = [
    "health_router",
    "voice_router",
    "verify_auth_header",
    "init_voice_manager",
    "get_voice_manager",
]
