"""음성 세션 모듈.

세션 상태 저장소를 제공합니다. 세션 퍼사드(VoiceMeshManager)는
voice_mesh.session.manager에서 가져옵니다.
"""

from .state import LocalSessionState, VoiceParticipant, VoiceSessionState, VoiceSessionStore

__all__ = [
    "LocalSessionState",
    "VoiceParticipant",
    "VoiceSessionState",
    "VoiceSessionStore",
]
