"""음성 세션 API 라우터.

음성 세션 상태 조회와 수신 활성화/퇴장 제어 엔드포인트를 제공합니다.
"""

import logging

from fastapi import APIRouter, Depends

from voice_mesh import VoiceMeshManager
from voice_mesh.shared.dto import ConnectionStatesDTO, VoiceSessionStateDTO

from .deps import get_voice_manager, verify_auth_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/voice", tags=["voice"])


@router.get("/state", response_model=VoiceSessionStateDTO)
async def get_state(manager: VoiceMeshManager = Depends(get_voice_manager)):
    """현재 음성 세션 상태(참가자, 음소거, 레벨, 연결 오류)를 반환합니다."""
    return VoiceSessionStateDTO.from_state(manager.state)


@router.get("/connections", response_model=ConnectionStatesDTO)
async def get_connections(manager: VoiceMeshManager = Depends(get_voice_manager)):
    """피어별 연결 상태 스냅샷을 반환합니다."""
    return ConnectionStatesDTO(connections=manager.connection_snapshot())


@router.post("/reception", response_model=VoiceSessionStateDTO)
async def enable_reception(
    manager: VoiceMeshManager = Depends(get_voice_manager),
    _: bool = Depends(verify_auth_header),
):
    """오디오 수신을 활성화합니다. 청취자는 이때 음성 메시에 참여합니다."""
    await manager.enable_audio_reception()
    return VoiceSessionStateDTO.from_state(manager.state)


@router.post("/cleanup", response_model=VoiceSessionStateDTO)
async def cleanup(
    manager: VoiceMeshManager = Depends(get_voice_manager),
    _: bool = Depends(verify_auth_header),
):
    """음성 메시에서 퇴장하고 모든 연결을 정리합니다."""
    logger.info("[Voice] API 요청으로 음성 세션 정리")
    await manager.perform_intentional_cleanup()
    return VoiceSessionStateDTO.from_state(manager.state)
