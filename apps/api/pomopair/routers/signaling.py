"""Rendezvous WebSocket endpoint and room inspection."""
from __future__ import annotations

import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.config import settings
from ..schemas.rooms import RoomStatus
from ..schemas.signaling import BadEnvelope, SocketEvent, frame, parse_frame
from ..services.rendezvous import RoomRegistry, SignalingConnection, registry

router = APIRouter()

logger = logging.getLogger(__name__)


def _room_from(data: object) -> str | None:
    if isinstance(data, str) and data:
        return data
    if isinstance(data, dict):
        room = data.get("room")
        if isinstance(room, str) and room:
            return room
    return None


async def dispatch_frame(
    rooms: RoomRegistry,
    connection: SignalingConnection,
    message: object,
) -> dict[str, Any] | None:
    """Apply one client frame to the registry and return the direct reply, if any.

    Raises :class:`BadEnvelope` for frames the server cannot act on.
    """

    event, data = parse_frame(message)

    if event is SocketEvent.JOIN:
        room = _room_from(data)
        if room is None:
            raise BadEnvelope("join without room")
        result = await rooms.join(room, connection)
        return frame(SocketEvent(result.value), {"room": room})

    if event is SocketEvent.LEAVE:
        room = _room_from(data)
        if room is None:
            await rooms.disconnect(connection.connection_id)
        else:
            await rooms.leave(room, connection.connection_id)
        return None

    if event is SocketEvent.SIGNAL:
        room = _room_from(data) if isinstance(data, dict) else None
        if room is None:
            raise BadEnvelope("signal without room")
        await rooms.relay(room, connection.connection_id, frame(SocketEvent.SIGNAL, dict(data)))
        return None

    raise BadEnvelope(f"{event.value} is a server-only event")


@router.get("/api/rooms/{room_id}", response_model=RoomStatus, tags=["rooms"])
async def room_status(room_id: str) -> RoomStatus:
    """Report how many participants currently occupy a room."""

    occupancy = registry.occupancy(room_id)
    return RoomStatus(room=room_id, occupancy=occupancy, full=occupancy >= registry.capacity)


@router.websocket("/ws")
async def rendezvous_endpoint(websocket: WebSocket) -> None:
    """Pair participants by room and relay their signaling envelopes verbatim."""

    connection_id = websocket.query_params.get("participant_id") or str(uuid4())
    await websocket.accept()

    connection = SignalingConnection(connection_id=connection_id, send=websocket.send_json)
    logger.info("Client connected: %s", connection_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                reply = await dispatch_frame(registry, connection, json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("BadEnvelope from %s: frame is not JSON", connection_id)
                continue
            except BadEnvelope as exc:
                logger.warning("BadEnvelope from %s: %s", connection_id, exc)
                continue
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", connection_id)
    finally:
        if settings.prune_on_disconnect:
            await registry.disconnect(connection_id)
