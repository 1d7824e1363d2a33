"""Tests for envelope encoding and decoding."""
from __future__ import annotations

import json

import pytest

from pomopair.schemas.signaling import (
    BadEnvelope,
    IceCandidate,
    SdpType,
    SessionDescription,
    SocketEvent,
    TimerAction,
    TimerEvent,
    decode_envelope,
    encode_candidate,
    encode_description,
    encode_timer_event,
    frame,
    parse_frame,
)

CANDIDATE_LINE = "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx"


def test_description_envelope_matches_wire_schema():
    offer = SessionDescription(type=SdpType.OFFER, sdp="v=0\r\no=- 1 2 IN IP4 127.0.0.1")

    envelope = encode_description("r1", offer)

    assert envelope == {"room": "r1", "type": "offer", "sdp": offer.sdp}
    assert decode_envelope(envelope) == offer


def test_candidate_envelope_nests_fields():
    candidate = IceCandidate(candidate=CANDIDATE_LINE, sdp_mline_index=1, sdp_mid="video")

    envelope = encode_candidate("r1", candidate)

    assert envelope["candidate"] == {"candidate": CANDIDATE_LINE, "sdpMLineIndex": 1, "sdpMid": "video"}
    assert decode_envelope(envelope) == candidate


def test_candidate_fields_accepted_flattened_on_envelope():
    envelope = {
        "room": "r1",
        "type": "candidate",
        "candidate": CANDIDATE_LINE,
        "sdpMLineIndex": 0,
        "sdpMid": "audio",
    }

    assert decode_envelope(envelope) == IceCandidate(candidate=CANDIDATE_LINE, sdp_mline_index=0, sdp_mid="audio")


def test_timer_event_written_in_both_legacy_and_typed_form():
    event = TimerEvent(action=TimerAction.START, time_remaining=1500, total_time=1800)

    envelope = encode_timer_event("r1", event)

    assert envelope["type"] == "timer"
    assert json.loads(envelope["sdp"]) == {"action": "start", "totalTime": 1800, "timeRemaining": 1500}
    assert envelope["timer"] == {"action": "start", "totalTime": 1800, "timeRemaining": 1500}
    assert decode_envelope(envelope) == event


def test_legacy_timer_payload_inside_sdp_is_decoded():
    envelope = {"room": "r1", "type": "timer", "sdp": '{"action": "adjust", "totalTime": 1800}'}

    event = decode_envelope(envelope)

    assert event == TimerEvent(action=TimerAction.ADJUST, total_time=1800)
    assert event.time_remaining is None


@pytest.mark.parametrize(
    "envelope",
    [
        {"room": "r1", "type": "offer"},
        {"room": "r1", "type": "answer", "sdp": 42},
        {"room": "r1", "type": "hangup"},
        {"room": "r1", "type": "candidate", "candidate": {"candidate": CANDIDATE_LINE, "sdpMid": "0"}},
        {"room": "r1", "type": "candidate"},
        {"room": "r1", "type": "timer", "sdp": "{not json"},
        {"room": "r1", "type": "timer", "sdp": '["start"]'},
        {"room": "r1", "type": "timer", "sdp": '{"action": "start", "totalTime": 60}'},
        {"room": "r1", "type": "timer", "sdp": '{"action": "pause"}'},
        {"room": "r1", "type": "timer"},
        "offer",
    ],
)
def test_malformed_envelopes_raise_bad_envelope(envelope):
    with pytest.raises(BadEnvelope):
        decode_envelope(envelope)


def test_frames_round_trip_event_names():
    assert frame(SocketEvent.JOIN, "r1") == {"event": "join", "data": "r1"}
    assert frame(SocketEvent.CREATED) == {"event": "created"}
    assert parse_frame({"event": "full", "data": {"room": "r1"}}) == (SocketEvent.FULL, {"room": "r1"})

    with pytest.raises(BadEnvelope):
        parse_frame({"event": "shout"})
    with pytest.raises(BadEnvelope):
        parse_frame("join")
