"""Client side of the rendezvous protocol."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Protocol

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..core.config import settings
from ..schemas.signaling import (
    BadEnvelope,
    IceCandidate,
    SessionDescription,
    SocketEvent,
    TimerEvent,
    decode_envelope,
    encode_candidate,
    encode_description,
    encode_timer_event,
    frame,
    parse_frame,
)

logger = logging.getLogger(__name__)


class SignalingHandler(Protocol):
    async def on_joined_room(self, is_initiator: bool) -> None: ...

    async def on_room_full(self) -> None: ...

    async def on_remote_description(self, description: SessionDescription) -> None: ...

    async def on_remote_candidate(self, candidate: IceCandidate) -> None: ...

    async def on_timer_event(self, event: TimerEvent) -> None: ...

    async def on_disconnected(self) -> None: ...


class SignalingSession:
    """One channel to the rendezvous server, bound to one room.

    Inbound frames are handled one at a time, in arrival order, by a single receive
    task; each handler call is awaited before the next frame is read.
    """

    def __init__(self, room_id: str, handler: SignalingHandler, *, url: str | None = None) -> None:
        self.room_id = room_id
        self._url = url or settings.signaling_url
        self._handler = handler
        self._ws: ClientConnection | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._close_tasks: set[asyncio.Task[None]] = set()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closing

    async def connect(self) -> None:
        """Open the channel and ask to join the room."""

        self._closing = False
        self._ws = await websockets.connect(self._url)
        logger.info("Signaling connected to %s", self._url)
        self._receive_task = asyncio.create_task(self._receive_loop())
        await self._emit(frame(SocketEvent.JOIN, self.room_id))

    async def disconnect(self) -> None:
        """Leave the room and close the channel without waiting for the server to acknowledge.

        The closing handshake runs in a background task; this coroutine only yields once
        so the close frame can be written.
        """

        if self.connected:
            try:
                await self._emit(frame(SocketEvent.LEAVE, self.room_id))
            except ConnectionClosed:
                logger.debug("Channel already closed; skipping leave for room %s", self.room_id)
        self._closing = True
        if self._receive_task and self._receive_task is not asyncio.current_task():
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
        self._receive_task = None
        ws, self._ws = self._ws, None
        if ws is None:
            return
        task = asyncio.create_task(ws.close())
        self._close_tasks.add(task)
        task.add_done_callback(self._close_finished)
        await asyncio.sleep(0)
        logger.info("Signaling disconnected from room %s", self.room_id)

    def _close_finished(self, task: asyncio.Task[None]) -> None:
        self._close_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Signaling close for room %s failed: %s", self.room_id, exc)

    async def send_description(self, description: SessionDescription) -> bool:
        return await self._emit(frame(SocketEvent.SIGNAL, encode_description(self.room_id, description)))

    async def send_candidate(self, candidate: IceCandidate) -> bool:
        return await self._emit(frame(SocketEvent.SIGNAL, encode_candidate(self.room_id, candidate)))

    async def send_timer_event(self, event: TimerEvent) -> bool:
        return await self._emit(frame(SocketEvent.SIGNAL, encode_timer_event(self.room_id, event)))

    async def _emit(self, message: dict[str, Any]) -> bool:
        if not self.connected:
            logger.warning("Dropping %s frame: signaling is not connected", message.get("event"))
            return False
        await self._ws.send(json.dumps(message))
        return True

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    await self._dispatch(json.loads(message))
                except (BadEnvelope, json.JSONDecodeError) as exc:
                    logger.warning("BadEnvelope dropped: %s", exc)
                except Exception:  # noqa: BLE001 - a failed handler must not end the session
                    logger.exception("Signaling handler failed")
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            logger.info("Signaling channel closed: %s", exc)
        if self._closing:
            return
        self._closing = True
        await self._handler.on_disconnected()

    async def _dispatch(self, message: object) -> None:
        event, data = parse_frame(message)
        if event is SocketEvent.CREATED:
            logger.info("Room %s created; waiting for the joiner to offer", self.room_id)
            await self._handler.on_joined_room(is_initiator=True)
        elif event is SocketEvent.JOINED:
            logger.info("Room %s joined; sending the offer", self.room_id)
            await self._handler.on_joined_room(is_initiator=False)
        elif event is SocketEvent.FULL:
            logger.info("Room %s is full", self.room_id)
            await self._handler.on_room_full()
        elif event is SocketEvent.SIGNAL:
            payload = decode_envelope(data)
            if isinstance(payload, SessionDescription):
                await self._handler.on_remote_description(payload)
            elif isinstance(payload, IceCandidate):
                await self._handler.on_remote_candidate(payload)
            else:
                await self._handler.on_timer_event(payload)
        else:
            raise BadEnvelope(f"unexpected {event.value} frame from server")


@asynccontextmanager
async def connect_session(
    room_id: str,
    handler: SignalingHandler,
    *,
    url: str | None = None,
) -> AsyncIterator[SignalingSession]:
    """Open a signaling session for the lifetime of the context."""

    session = SignalingSession(room_id, handler, url=url)
    await session.connect()
    try:
        yield session
    finally:
        await session.disconnect()
