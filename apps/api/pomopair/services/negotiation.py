"""Offer/answer negotiation driven through a media engine.

Roles come from the rendezvous server: the *joiner* (second arrival) sends the first
offer and the *creator* waits for it. Remote candidates that arrive before a remote
description has been applied are held back and handed to the engine, in arrival
order, once it lands.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..schemas.signaling import IceCandidate, SdpType, SessionDescription
from .media import (
    ConnectionState,
    ConnectionStateChanged,
    LocalCandidateDiscovered,
    MediaEngine,
    MediaEvent,
    RemoteTrackAdded,
)
from .rendezvous import Role

CandidateSender = Callable[[IceCandidate], Awaitable[None]]

logger = logging.getLogger(__name__)

_LINK_LOST = (ConnectionState.FAILED, ConnectionState.DISCONNECTED, ConnectionState.CLOSED)


class NegotiationPhase(str, enum.Enum):
    IDLE = "idle"
    ROLE_ASSIGNED = "role_assigned"
    OFFERING = "offering"
    AWAITING_OFFER = "awaiting_offer"
    DESCRIPTION_EXCHANGED = "description_exchanged"
    CONNECTED = "connected"
    CLOSED = "closed"


class NegotiationError(RuntimeError):
    """Base class for negotiation failures."""


class NegotiationStateError(NegotiationError):
    """Raised when an operation is issued out of order."""


class NegotiationClosedError(NegotiationError):
    """Raised when an operation is issued after close()."""


class MediaEngineError(NegotiationError):
    """Raised when the media engine fails an offer, answer or description step."""


@dataclass
class CallSession:
    role: Optional[Role] = None
    phase: NegotiationPhase = NegotiationPhase.IDLE
    local_description: Optional[SessionDescription] = None
    remote_description: Optional[SessionDescription] = None
    remote_applied: bool = False
    pending_candidates: List[IceCandidate] = field(default_factory=list)
    applied_candidates: int = 0
    remote_tracks: List[str] = field(default_factory=list)
    connection_state: ConnectionState = ConnectionState.NEW


class NegotiationMachine:
    """Enforce offer/answer ordering for one call over one media engine."""

    def __init__(self, engine: MediaEngine, on_local_candidate: CandidateSender | None = None) -> None:
        self._engine = engine
        self._on_local_candidate = on_local_candidate
        self._lock = asyncio.Lock()
        self.session = CallSession()
        self._unsubscribe = engine.events.subscribe(self._on_media_event)

    @property
    def phase(self) -> NegotiationPhase:
        return self.session.phase

    @property
    def is_connected(self) -> bool:
        return self.session.phase is NegotiationPhase.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self.session.phase is NegotiationPhase.CLOSED

    def set_candidate_sender(self, sender: CandidateSender | None) -> None:
        self._on_local_candidate = sender

    def assign_role(self, role: Role) -> None:
        self._ensure_open()
        if self.session.phase is not NegotiationPhase.IDLE:
            raise NegotiationStateError(f"role already assigned ({self.session.role})")
        self.session.role = role
        self.session.phase = NegotiationPhase.ROLE_ASSIGNED
        if role is Role.CREATOR:
            self.session.phase = NegotiationPhase.AWAITING_OFFER
        logger.info("Negotiation role %s, phase %s", role.value, self.session.phase.value)

    async def create_offer(self) -> SessionDescription:
        """Produce and apply the local offer. Only the joiner offers."""

        async with self._lock:
            self._ensure_open()
            if self.session.role is not Role.JOINER:
                raise NegotiationStateError("only the joiner creates the offer")
            if self.session.local_description is not None:
                raise NegotiationStateError("local description already exists")
            offer = await self._call_engine("create offer", self._engine.create_offer())
            await self._call_engine("apply local offer", self._engine.set_local_description(offer))
            self.session.local_description = offer
            self.session.phase = NegotiationPhase.OFFERING
            logger.info("Local offer created")
            return offer

    async def create_answer(self) -> SessionDescription:
        async with self._lock:
            return await self._create_answer()

    async def set_remote_description(self, description: SessionDescription) -> SessionDescription | None:
        """Apply the peer's description.

        A remote offer is answered before this returns; the answer is handed back for
        the caller to transmit. A remote answer returns ``None``.
        """

        async with self._lock:
            self._ensure_open()
            session = self.session
            if description.type is SdpType.OFFER:
                if session.remote_description is not None or session.local_description is not None:
                    raise NegotiationStateError("offer received after negotiation started")
            else:
                local = session.local_description
                if local is None or local.type is not SdpType.OFFER or session.remote_description is not None:
                    raise NegotiationStateError("answer received without an outstanding offer")

            await self._call_engine(
                f"apply remote {description.type.value}", self._engine.set_remote_description(description)
            )
            session.remote_description = description
            logger.info("Remote %s applied", description.type.value)
            await self._flush_candidates()

            if description.type is SdpType.OFFER:
                return await self._create_answer()
            if session.phase is not NegotiationPhase.CONNECTED:
                session.phase = NegotiationPhase.DESCRIPTION_EXCHANGED
            return None

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        self._ensure_open()
        if not self.session.remote_applied:
            self.session.pending_candidates.append(candidate)
            logger.debug("Buffered remote candidate (%d pending)", len(self.session.pending_candidates))
            return
        await self._call_engine("add remote candidate", self._engine.add_ice_candidate(candidate))
        self.session.applied_candidates += 1

    async def close(self) -> None:
        if self.is_closed:
            return
        self.session.phase = NegotiationPhase.CLOSED
        self.session.pending_candidates.clear()
        self._unsubscribe()
        try:
            await self._engine.close()
        except Exception:  # noqa: BLE001
            logger.exception("Media engine failed to close cleanly")
        logger.info("Negotiation closed")

    async def _create_answer(self) -> SessionDescription:
        self._ensure_open()
        session = self.session
        remote = session.remote_description
        if remote is None or remote.type is not SdpType.OFFER:
            raise NegotiationStateError("no remote offer to answer")
        if session.local_description is not None:
            raise NegotiationStateError("local description already exists")
        answer = await self._call_engine("create answer", self._engine.create_answer())
        await self._call_engine("apply local answer", self._engine.set_local_description(answer))
        session.local_description = answer
        if session.phase is not NegotiationPhase.CONNECTED:
            session.phase = NegotiationPhase.DESCRIPTION_EXCHANGED
        logger.info("Local answer created")
        return answer

    async def _flush_candidates(self) -> None:
        # Candidates arriving mid-flush are appended and drained by this loop, so
        # remote_applied only flips once the backlog is empty.
        pending = self.session.pending_candidates
        while pending:
            candidate = pending.pop(0)
            try:
                await self._engine.add_ice_candidate(candidate)
            except Exception as exc:  # noqa: BLE001 - skip the bad candidate, keep the rest
                logger.warning("Dropping buffered candidate %s: %s", candidate.candidate, exc)
                continue
            self.session.applied_candidates += 1
        self.session.remote_applied = True

    async def _call_engine(self, step: str, operation: Awaitable):
        try:
            return await operation
        except Exception as exc:
            raise MediaEngineError(f"media engine failed to {step}: {exc}") from exc

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise NegotiationClosedError("negotiation is closed")

    async def _on_media_event(self, event: MediaEvent) -> None:
        if self.is_closed:
            return
        if isinstance(event, LocalCandidateDiscovered):
            if self._on_local_candidate is not None:
                await self._on_local_candidate(event.candidate)
        elif isinstance(event, RemoteTrackAdded):
            self.session.remote_tracks.append(event.kind)
            logger.info("Remote %s track added", event.kind)
        elif isinstance(event, ConnectionStateChanged):
            self.session.connection_state = event.state
            logger.info("Connection state %s", event.state.value)
            if event.state in (ConnectionState.CONNECTED, ConnectionState.COMPLETED):
                self.session.phase = NegotiationPhase.CONNECTED
            elif event.state in _LINK_LOST and self.session.phase is NegotiationPhase.CONNECTED:
                # Descriptions stay applied; only the link is gone.
                self.session.phase = NegotiationPhase.DESCRIPTION_EXCHANGED
