"""Tests for wire models, SDP helpers and small utilities."""

import pytest

from peercall import (
    CallConfig,
    CallLogRecord,
    CallStatus,
    IceCandidate,
    IceServer,
    MediaConstraints,
    MediaKind,
    SessionDescription,
    SignalPayloadError,
    describe_sdp,
    parse_sdp,
    sdp_candidates,
)
from peercall._utils import format_duration, logout_message

from conftest import candidate_payload, gathered_sdp, sdp_for


class TestSdp:
    def test_parse_media_kinds(self):
        summary = parse_sdp(sdp_for("video"))
        assert summary.media_kinds() == ["audio", "video"]
        assert summary.ice_ufrag == "abcd"
        assert summary.candidate_count() == 0

    @pytest.mark.parametrize(
        "raw",
        ["", "o=- 1 1 IN IP4 0.0.0.0\r\n", "v=0\r\ns=-\r\n"],
    )
    def test_parse_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_sdp(raw)

    def test_describe_never_raises(self):
        assert describe_sdp("garbage").startswith("<invalid sdp")
        assert describe_sdp(sdp_for("video")) == "audio+video (0 candidates)"

    def test_candidates_carry_their_section(self):
        found = sdp_candidates(gathered_sdp())
        assert [(mid, index) for _, mid, index in found] == [("0", 0), ("0", 0), ("1", 1)]
        assert found[0][0] == "candidate:1 1 udp 2130706431 192.168.1.2 54400 typ host"
        assert sdp_candidates(sdp_for("video")) == []


class TestSessionDescription:
    def test_from_dict(self):
        description = SessionDescription.from_dict(
            {"type": "offer", "sdp": sdp_for()}, expected_type="offer"
        )
        assert description.is_offer

    def test_wrong_type_is_rejected(self):
        with pytest.raises(SignalPayloadError):
            SessionDescription.from_dict({"type": "answer", "sdp": sdp_for()}, "offer")

    @pytest.mark.parametrize(
        "data",
        [None, "v=0", {"type": "offer", "sdp": ""}, {"type": "bogus", "sdp": sdp_for()}],
    )
    def test_malformed_payloads(self, data):
        with pytest.raises(SignalPayloadError):
            SessionDescription.from_dict(data)


class TestIceCandidate:
    def test_wire_form(self):
        candidate = IceCandidate.from_dict(candidate_payload(54400))
        assert candidate.sdp_line.startswith("1 1 udp")
        assert candidate.to_dict() == candidate_payload(54400)

    @pytest.mark.parametrize("data", [None, {}, {"candidate": "   "}, {"candidate": 3}])
    def test_missing_candidate_line(self, data):
        with pytest.raises(SignalPayloadError):
            IceCandidate.from_dict(data)


class TestCallLogRecord:
    def test_wire_keys(self):
        record = CallLogRecord("bob", MediaKind.VIDEO, 42, CallStatus.COMPLETED)
        assert record.to_dict() == {
            "receiverId": "bob",
            "callType": "video",
            "duration": 42,
            "callStatus": "completed",
        }
        assert CallLogRecord.from_dict(record.to_dict()) == record

    def test_unknown_status(self):
        with pytest.raises(SignalPayloadError):
            CallLogRecord.from_dict({"receiverId": "bob", "callType": "voice", "callStatus": "lost"})


class TestConfig:
    def test_defaults_carry_stun_and_turn(self):
        config = CallConfig()
        assert any(server.is_turn for server in config.ice_servers)
        assert config.max_pending_candidates == 50

    def test_turn_relay_is_required(self):
        with pytest.raises(ValueError):
            CallConfig(ice_servers=[IceServer(urls="stun:stun.example.com:3478")])

    def test_constraints_in_browser_shape(self):
        constraints = MediaConstraints().to_dict(MediaKind.VIDEO)
        assert constraints["audio"]["echoCancellation"] is True
        assert constraints["video"]["width"]["ideal"] == 640
        assert constraints["video"]["frameRate"]["ideal"] == 30

    def test_voice_calls_request_no_video(self):
        assert MediaConstraints().to_dict(MediaKind.VOICE)["video"] is False

    def test_player_options(self):
        assert MediaConstraints().player_options() == {"video_size": "640x480", "framerate": "30"}


class TestUtils:
    def test_format_duration(self):
        assert format_duration(0) == "00:00"
        assert format_duration(125) == "02:05"

    def test_logout_message(self):
        assert logout_message("Bob", "session-expired") == "Bob has been logged out due to inactivity"
        assert logout_message("Bob", "logout") == "Bob has logged out"
