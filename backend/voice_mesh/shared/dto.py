"""Lightweight response DTOs for the voice HTTP surface."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..session.state import VoiceSessionState


class ParticipantDTO(BaseModel):
    """Participant as shown to the UI."""

    user_id: str = Field(description="사용자 ID")
    username: str = Field(default="", description="표시 이름")
    is_muted: bool = Field(default=False, description="음소거 여부")
    audio_level: float = Field(default=0.0, ge=0.0, le=1.0, description="평활화된 오디오 레벨")


class VoiceSessionStateDTO(BaseModel):
    """Read model of the voice session."""

    participants: List[ParticipantDTO] = Field(default_factory=list)
    is_connecting: bool = False
    connection_error: Optional[str] = None
    can_transmit: bool = True
    is_audio_enabled: bool = False
    has_local_stream: bool = False

    @classmethod
    def from_state(cls, state: VoiceSessionState) -> "VoiceSessionStateDTO":
        return cls(
            participants=[
                ParticipantDTO(
                    user_id=p.user_id,
                    username=p.username,
                    is_muted=p.is_muted,
                    audio_level=p.audio_level,
                )
                for p in state.participants
            ],
            is_connecting=state.is_connecting,
            connection_error=state.connection_error,
            can_transmit=state.can_transmit,
            is_audio_enabled=state.is_audio_enabled,
            has_local_stream=state.has_local_stream,
        )


class ConnectionStatesDTO(BaseModel):
    """Per-peer connection states (heartbeat snapshot)."""

    connections: Dict[str, Dict[str, str]] = Field(default_factory=dict)
