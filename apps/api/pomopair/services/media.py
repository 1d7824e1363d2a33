"""Media engine contract and its outbound notification channel.

The core never touches media. It drives an engine through the async operations of
:class:`MediaEngine` and listens to what the engine reports on its :class:`MediaEventBus`.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Protocol, Union

from ..schemas.signaling import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    NEW = "new"
    CHECKING = "checking"
    CONNECTED = "connected"
    COMPLETED = "completed"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class LocalCandidateDiscovered:
    candidate: IceCandidate


@dataclass(frozen=True, slots=True)
class RemoteTrackAdded:
    kind: str
    track: Any = None


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    state: ConnectionState


MediaEvent = Union[LocalCandidateDiscovered, RemoteTrackAdded, ConnectionStateChanged]
MediaEventHandler = Callable[[MediaEvent], Awaitable[None]]


class MediaEventBus:
    """Deliver engine notifications to subscribers in subscription order."""

    def __init__(self) -> None:
        self._handlers: List[MediaEventHandler] = []

    def subscribe(self, handler: MediaEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: MediaEvent) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:  # noqa: BLE001 - keep delivering to the other subscribers
                logger.exception("Media event handler failed for %s", type(event).__name__)


class MediaEngine(Protocol):
    events: MediaEventBus

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    def set_audio_enabled(self, enabled: bool) -> None: ...

    def set_video_enabled(self, enabled: bool) -> None: ...

    async def close(self) -> None: ...


MediaEngineFactory = Callable[[], MediaEngine]
