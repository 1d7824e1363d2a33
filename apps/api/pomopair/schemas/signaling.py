"""Wire contracts for rendezvous frames and signaling envelopes.

Every frame on the rendezvous socket is a JSON object ``{"event": name, "data": payload}``.
The ``signal`` event carries an envelope::

    {"room": str, "type": "offer" | "answer" | "candidate" | "timer",
     "sdp": str?, "candidate": {...}?, "timer": {...}?}

Timer events are written twice: as JSON text inside ``sdp`` (the format older peers
understand) and as a typed ``timer`` object. Readers prefer ``timer``.
"""
from __future__ import annotations

import enum
import json
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class BadEnvelope(ValueError):
    """Raised when a frame or envelope is missing fields its type requires."""


class SocketEvent(str, enum.Enum):
    JOIN = "join"
    LEAVE = "leave"
    SIGNAL = "signal"
    CREATED = "created"
    JOINED = "joined"
    FULL = "full"


class EnvelopeType(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    TIMER = "timer"


class SdpType(str, enum.Enum):
    OFFER = "offer"
    ANSWER = "answer"


class TimerAction(str, enum.Enum):
    START = "start"
    STOP = "stop"
    RESET = "reset"
    ADJUST = "adjust"


class SessionDescription(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SdpType
    sdp: str = Field(..., description="Opaque session description blob")


class IceCandidate(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    candidate: str = Field(..., description="Opaque connectivity descriptor")
    sdp_mline_index: int = Field(..., alias="sdpMLineIndex", ge=0)
    sdp_mid: str = Field(..., alias="sdpMid")


# Fields each action must carry on the wire.
_TIMER_REQUIRED: dict[TimerAction, tuple[str, ...]] = {
    TimerAction.START: ("time_remaining", "total_time"),
    TimerAction.STOP: ("time_remaining",),
    TimerAction.RESET: ("total_time",),
    TimerAction.ADJUST: ("total_time",),
}


class TimerEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    action: TimerAction
    total_time: float | None = Field(default=None, alias="totalTime", ge=0)
    time_remaining: float | None = Field(default=None, alias="timeRemaining", ge=0)

    @model_validator(mode="after")
    def _check_required(self) -> "TimerEvent":
        missing = [name for name in _TIMER_REQUIRED[self.action] if getattr(self, name) is None]
        if missing:
            raise ValueError(f"timer {self.action.value} event missing {', '.join(missing)}")
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


SignalPayload = Union[SessionDescription, IceCandidate, TimerEvent]


def frame(event: SocketEvent, data: Any = None) -> dict[str, Any]:
    """Build a rendezvous socket frame."""

    message: dict[str, Any] = {"event": event.value}
    if data is not None:
        message["data"] = data
    return message


def parse_frame(message: object) -> tuple[SocketEvent, Any]:
    """Split an inbound frame into its event and payload."""

    if not isinstance(message, dict):
        raise BadEnvelope("frame must be a JSON object")
    name = message.get("event")
    try:
        event = SocketEvent(name)
    except ValueError as exc:
        raise BadEnvelope(f"unknown event {name!r}") from exc
    return event, message.get("data")


def encode_description(room: str, description: SessionDescription) -> dict[str, Any]:
    return {"room": room, "type": description.type.value, "sdp": description.sdp}


def encode_candidate(room: str, candidate: IceCandidate) -> dict[str, Any]:
    return {
        "room": room,
        "type": EnvelopeType.CANDIDATE.value,
        "candidate": candidate.model_dump(by_alias=True),
    }


def encode_timer_event(room: str, event: TimerEvent) -> dict[str, Any]:
    payload = event.to_wire()
    return {
        "room": room,
        "type": EnvelopeType.TIMER.value,
        "sdp": json.dumps(payload),
        "timer": payload,
    }


def envelope_type(envelope: object) -> EnvelopeType:
    if not isinstance(envelope, dict):
        raise BadEnvelope("envelope must be a JSON object")
    try:
        return EnvelopeType(envelope.get("type"))
    except ValueError as exc:
        raise BadEnvelope(f"unknown envelope type {envelope.get('type')!r}") from exc


def decode_description(envelope: dict[str, Any]) -> SessionDescription:
    sdp = envelope.get("sdp")
    if not isinstance(sdp, str):
        raise BadEnvelope("description envelope missing sdp")
    try:
        return SessionDescription(type=envelope.get("type"), sdp=sdp)
    except ValidationError as exc:
        raise BadEnvelope(str(exc)) from exc


def decode_candidate(envelope: dict[str, Any]) -> IceCandidate:
    """Read candidate fields nested under ``candidate`` or flattened on the envelope."""

    nested = envelope.get("candidate")
    fields = {
        "sdpMLineIndex": envelope.get("sdpMLineIndex"),
        "sdpMid": envelope.get("sdpMid"),
    }
    if isinstance(nested, dict):
        fields.update({key: value for key, value in nested.items() if value is not None})
    else:
        fields["candidate"] = nested
    try:
        return IceCandidate.model_validate(fields)
    except ValidationError as exc:
        raise BadEnvelope(str(exc)) from exc


def decode_timer_event(envelope: dict[str, Any]) -> TimerEvent:
    payload = envelope.get("timer")
    if not isinstance(payload, dict):
        text = envelope.get("sdp")
        if not isinstance(text, str):
            raise BadEnvelope("timer envelope carries no event")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise BadEnvelope("timer payload is not JSON") from exc
        if not isinstance(payload, dict):
            raise BadEnvelope("timer payload must be an object")
    try:
        return TimerEvent.model_validate(payload)
    except ValidationError as exc:
        raise BadEnvelope(str(exc)) from exc


def decode_envelope(envelope: object) -> SignalPayload:
    """Decode a relayed envelope into its typed payload."""

    kind = envelope_type(envelope)
    if kind is EnvelopeType.CANDIDATE:
        return decode_candidate(envelope)
    if kind is EnvelopeType.TIMER:
        return decode_timer_event(envelope)
    return decode_description(envelope)
