"""Call controller tying signaling, negotiation, media and the shared timer together."""
from __future__ import annotations

import logging
from typing import Callable, Optional
from uuid import uuid4

from ..core.config import settings
from ..schemas.signaling import IceCandidate, SessionDescription, TimerEvent
from .media import MediaEngine, MediaEngineFactory
from .negotiation import NegotiationError, NegotiationMachine
from .rendezvous import Role
from .signaling_client import SignalingSession
from .timer import TimerController

SessionFactory = Callable[..., SignalingSession]

logger = logging.getLogger(__name__)


class CallActiveError(RuntimeError):
    """Raised when a room switch is attempted during a connected call."""


def parse_invite(text: str, prefix: str | None = None) -> Optional[str]:
    """Return the room id carried by an invite URL, or ``None`` if it is not one."""

    prefix = settings.invite_url_prefix if prefix is None else prefix
    candidate = text.strip()
    if not candidate.startswith(prefix):
        return None
    room_id = candidate[len(prefix):].strip("/")
    return room_id or None


class CallController:
    """Per-client call state.

    Created without a room id the controller opens a fresh room and waits as its
    creator; created with one it joins that room. The server has the final say on the
    role: whoever receives ``joined`` sends the offer.
    """

    def __init__(
        self,
        engine_factory: MediaEngineFactory,
        room_id: str | None = None,
        *,
        signaling_url: str | None = None,
        session_factory: SessionFactory = SignalingSession,
        timer: TimerController | None = None,
    ) -> None:
        self.room_id = room_id or str(uuid4())
        self.is_joiner = room_id is not None
        self.room_full = False
        self.is_muted = False
        self.is_video_enabled = True
        self._engine_factory = engine_factory
        self._session_factory = session_factory
        self._signaling_url = signaling_url
        self.timer = timer or TimerController()
        self.timer.on_local_event = self._send_timer_event
        self.engine: MediaEngine
        self.negotiation: NegotiationMachine
        self._start_call_session()
        self.signaling = self._session_factory(self.room_id, self, url=self._signaling_url)
        logger.info("Call controller ready. Room: %s, joiner: %s", self.room_id, self.is_joiner)

    @property
    def share_url(self) -> str:
        return f"{settings.invite_url_prefix}{self.room_id}"

    @property
    def role(self) -> Role | None:
        return self.negotiation.session.role

    @property
    def is_connected(self) -> bool:
        return self.negotiation.is_connected

    async def connect(self) -> None:
        await self.signaling.connect()

    async def disconnect(self) -> None:
        await self.negotiation.close()
        await self.signaling.disconnect()
        await self.timer.close()

    async def attempt_join_from_invite(self, text: str) -> bool:
        """Switch rooms when ``text`` is an invite URL and no call is connected yet."""

        room_id = parse_invite(text)
        if room_id is None or self.is_connected:
            return False
        await self.switch_room(room_id)
        return True

    async def switch_room(self, room_id: str) -> None:
        """Drop the current room and call state, then join ``room_id`` from scratch."""

        if self.is_connected:
            raise CallActiveError("cannot switch rooms during a connected call")
        logger.info("Switching to room: %s", room_id)

        await self.signaling.disconnect()

        self.room_id = room_id
        self.is_joiner = True
        self.room_full = False

        await self.negotiation.close()
        self._start_call_session()

        self.signaling = self._session_factory(self.room_id, self, url=self._signaling_url)
        await self.signaling.connect()

    def toggle_mute(self) -> bool:
        self.is_muted = not self.is_muted
        self.engine.set_audio_enabled(not self.is_muted)
        return self.is_muted

    def toggle_video(self) -> bool:
        self.is_video_enabled = not self.is_video_enabled
        self.engine.set_video_enabled(self.is_video_enabled)
        return self.is_video_enabled

    async def on_joined_room(self, is_initiator: bool) -> None:
        role = Role.CREATOR if is_initiator else Role.JOINER
        self.negotiation.assign_role(role)
        if role is Role.CREATOR:
            return
        try:
            offer = await self.negotiation.create_offer()
        except NegotiationError:
            logger.exception("Could not create offer for room %s", self.room_id)
            return
        await self.signaling.send_description(offer)

    async def on_room_full(self) -> None:
        self.room_full = True
        logger.warning("Room %s is full; not retrying", self.room_id)

    async def on_remote_description(self, description: SessionDescription) -> None:
        try:
            answer = await self.negotiation.set_remote_description(description)
        except NegotiationError:
            logger.exception("Could not apply remote %s", description.type.value)
            return
        if answer is not None:
            await self.signaling.send_description(answer)

    async def on_remote_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self.negotiation.add_remote_candidate(candidate)
        except NegotiationError:
            logger.exception("Could not apply remote candidate")

    async def on_timer_event(self, event: TimerEvent) -> None:
        await self.timer.apply_remote(event)

    async def on_disconnected(self) -> None:
        logger.info("Signaling disconnected from room %s", self.room_id)

    def _start_call_session(self) -> None:
        self.engine = self._engine_factory()
        self.engine.set_audio_enabled(not self.is_muted)
        self.engine.set_video_enabled(self.is_video_enabled)
        self.negotiation = NegotiationMachine(self.engine, on_local_candidate=self._send_candidate)

    async def _send_candidate(self, candidate: IceCandidate) -> None:
        await self.signaling.send_candidate(candidate)

    async def _send_timer_event(self, event: TimerEvent) -> None:
        await self.signaling.send_timer_event(event)
