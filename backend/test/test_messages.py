"""시그널링 메시지 파싱/직렬화 테스트."""

import pytest

from voice_mesh.signaling.messages import (
    ParticipantInfo,
    SignalingEvent,
    SignalingMessageError,
    VoiceHeartbeat,
    VoiceMuteChanged,
    VoiceOffer,
    VoiceParticipants,
    parse_message,
)


class TestParseMessage:
    def test_offer_payload_is_parsed_from_camel_case(self) -> None:
        message = parse_message("voice_offer", {
            "offer": {"sdp": "v=0", "type": "offer"},
            "targetUserId": "alice",
            "fromUserId": "bob",
            "roomId": "room-1",
        })

        assert isinstance(message, VoiceOffer)
        assert message.event is SignalingEvent.VOICE_OFFER
        assert message.offer.sdp == "v=0"
        assert message.target_user_id == "alice"
        assert message.from_user_id == "bob"

    def test_ice_candidate_nested_fields(self) -> None:
        message = parse_message("voice_ice_candidate", {
            "candidate": {"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host", "sdpMid": "0", "sdpMLineIndex": 0},
            "fromUserId": "bob",
        })

        assert message.candidate.sdp_mid == "0"
        assert message.candidate.sdp_m_line_index == 0
        assert message.target_user_id is None

    def test_participants_defaults(self) -> None:
        message = parse_message("voice_participants", {"participants": [{"userId": "bob"}]})

        assert isinstance(message, VoiceParticipants)
        assert message.participants == [ParticipantInfo(user_id="bob", username="", is_muted=False)]

    def test_unknown_fields_are_ignored(self) -> None:
        message = parse_message("user_joined_voice", {"userId": "bob", "username": "Bob", "extra": 1})

        assert message.user_id == "bob"

    def test_missing_payload_uses_defaults(self) -> None:
        message = parse_message("error", None)

        assert message.message == "Voice connection error"

    def test_unknown_event_raises(self) -> None:
        with pytest.raises(SignalingMessageError):
            parse_message("voice_dance", {})

    def test_non_object_payload_raises(self) -> None:
        with pytest.raises(SignalingMessageError):
            parse_message("user_left_voice", ["bob"])

    def test_missing_required_field_raises(self) -> None:
        with pytest.raises(SignalingMessageError):
            parse_message("voice_mute_changed", {"userId": "bob"})


class TestToPayload:
    def test_camel_case_without_none(self) -> None:
        message = VoiceMuteChanged(user_id="alice", is_muted=True)

        assert message.to_payload() == {"userId": "alice", "isMuted": True}

    def test_heartbeat_nested_states(self) -> None:
        message = VoiceHeartbeat(
            room_id="room-1",
            user_id="alice",
            connection_states={"bob": {"connectionState": "connected", "iceConnectionState": "completed"}},
        )

        assert message.to_payload() == {
            "roomId": "room-1",
            "userId": "alice",
            "connectionStates": {
                "bob": {"connectionState": "connected", "iceConnectionState": "completed"},
            },
        }
