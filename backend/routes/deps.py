"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 의존성을 정의합니다.
"""

import os
from typing import Optional

from fastapi import Header, HTTPException

from voice_mesh import VoiceMeshManager

# 접근 비밀번호 설정
ACCESS_PASSWORD = os.getenv("ACCESS_PASSWORD", "")

# app.py에서 주입되는 음성 세션 매니저
_voice_manager: Optional[VoiceMeshManager] = None


def init_voice_manager(manager: Optional[VoiceMeshManager]) -> None:
    """라우터가 사용할 VoiceMeshManager를 설정합니다 (None이면 해제)."""
    global _voice_manager
    _voice_manager = manager


def get_voice_manager() -> VoiceMeshManager:
    """현재 VoiceMeshManager를 반환합니다.

    Raises:
        HTTPException: 음성 세션이 구성되지 않은 경우 (503)
    """
    if _voice_manager is None:
        raise HTTPException(status_code=503, detail="Voice session not configured")
    return _voice_manager


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Authorization 헤더를 검증합니다.

    Args:
        authorization: Authorization 헤더 값

    Returns:
        bool: 검증 성공 시 True

    Raises:
        HTTPException: 인증 실패 시
    """
    if not ACCESS_PASSWORD:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if parts[1] != ACCESS_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid password")
    return True
