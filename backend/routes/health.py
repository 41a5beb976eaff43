"""Health Check API 라우터.

음성 세션 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from typing import Optional

from fastapi import APIRouter

from voice_mesh import VoiceMeshManager

from . import deps

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """릴레이 연결, 유예 상태, 연결 수, 주기 작업 상태를 확인합니다.

    Returns:
        dict: 음성 세션 상태 요약
            - status (str): ok | degraded | not_configured
            - voice (dict): VoiceMeshManager.status() 결과
    """
    manager: Optional[VoiceMeshManager] = deps._voice_manager
    if manager is None:
        return {"status": "not_configured", "voice": None}

    voice = manager.status()
    overall = "ok" if voice["transport_connected"] else "degraded"
    return {"status": overall, "voice": voice}
