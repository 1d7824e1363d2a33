"""In-memory rendezvous registry pairing two participants per room."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List

SendCallable = Callable[[dict], Awaitable[None]]

ROOM_CAPACITY = 2

logger = logging.getLogger(__name__)


class JoinResult(str, enum.Enum):
    CREATED = "created"
    JOINED = "joined"
    FULL = "full"


class Role(str, enum.Enum):
    CREATOR = "creator"
    JOINER = "joiner"


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for signaling participants."""

    connection_id: str
    send: SendCallable


@dataclass(slots=True)
class Member:
    connection: SignalingConnection
    role: Role
    join_order: int


@dataclass
class Room:
    room_id: str
    members: List[Member] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def find(self, connection_id: str) -> Member | None:
        for member in self.members:
            if member.connection.connection_id == connection_id:
                return member
        return None


class RoomRegistry:
    """Arbitrate room membership and fan out envelopes between room occupants.

    Each room owns a lock that serializes its check-then-add join sequence, so two
    concurrent joins to the same empty room cannot both become the creator.
    """

    def __init__(self, capacity: int = ROOM_CAPACITY) -> None:
        self._capacity = capacity
        self._rooms: Dict[str, Room] = {}
        self._registry_lock = asyncio.Lock()

    async def _room(self, room_id: str) -> Room:
        async with self._registry_lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room
            return room

    async def join(self, room_id: str, connection: SignalingConnection) -> JoinResult:
        """Admit a connection to the room and report the role it was given."""

        while True:
            room = await self._room(room_id)
            async with room.lock:
                # The room may have been dropped while we waited for its lock.
                if self._rooms.get(room_id) is not room:
                    continue

                existing = room.find(connection.connection_id)
                if existing is not None:
                    return JoinResult.CREATED if existing.role is Role.CREATOR else JoinResult.JOINED

                occupancy = len(room.members)
                if occupancy >= self._capacity:
                    logger.info("Room %s is full; rejected %s", room_id, connection.connection_id)
                    return JoinResult.FULL

                role = Role.CREATOR if occupancy == 0 else Role.JOINER
                room.members.append(Member(connection=connection, role=role, join_order=occupancy))
                logger.info("%s joined room %s as %s", connection.connection_id, room_id, role.value)
                return JoinResult.CREATED if role is Role.CREATOR else JoinResult.JOINED

    async def leave(self, room_id: str, connection_id: str) -> None:
        """Remove a connection from the room, cleaning up empty rooms."""

        room = self._rooms.get(room_id)
        if room is None:
            return
        async with room.lock:
            member = room.find(connection_id)
            if member is not None:
                room.members.remove(member)
                logger.info("%s left room %s", connection_id, room_id)
            if not room.members:
                async with self._registry_lock:
                    if self._rooms.get(room_id) is room:
                        self._rooms.pop(room_id, None)

    async def disconnect(self, connection_id: str) -> None:
        """Prune a closed connection from every room it occupies."""

        for room_id in [room_id for room_id, room in list(self._rooms.items()) if room.find(connection_id)]:
            await self.leave(room_id, connection_id)

    async def relay(self, room_id: str, sender_id: str, message: dict) -> None:
        """Send a message unmodified to every member of the room except the sender."""

        room = self._rooms.get(room_id)
        if room is None:
            return
        async with room.lock:
            recipients = [member.connection for member in room.members if member.connection.connection_id != sender_id]

        if not recipients:
            return

        results = await asyncio.gather(*(connection.send(message) for connection in recipients), return_exceptions=True)
        for connection, result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning("Relay to %s in room %s failed: %s", connection.connection_id, room_id, result)

    def occupancy(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return len(room.members) if room else 0

    def members(self, room_id: str) -> list[Member]:
        room = self._rooms.get(room_id)
        return list(room.members) if room else []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def room_count(self) -> int:
        return len(self._rooms)


registry = RoomRegistry()
