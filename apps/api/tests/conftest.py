"""Shared fakes for call, negotiation and signaling tests."""
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Callable

import pytest

from pomopair.routers.signaling import dispatch_frame
from pomopair.schemas.signaling import IceCandidate, SdpType, SessionDescription
from pomopair.services import signaling_client
from pomopair.services.media import (
    ConnectionState,
    ConnectionStateChanged,
    LocalCandidateDiscovered,
    MediaEventBus,
    RemoteTrackAdded,
)
from pomopair.services.rendezvous import RoomRegistry, SignalingConnection


class FakeMediaEngine:
    """Media engine stand-in that records every call it receives."""

    def __init__(self, name: str = "engine", fail_on: tuple[str, ...] = ()) -> None:
        self.name = name
        self.events = MediaEventBus()
        self.calls: list[str] = []
        self.local: SessionDescription | None = None
        self.remote: SessionDescription | None = None
        self.candidates: list[IceCandidate] = []
        self.audio_enabled = True
        self.video_enabled = True
        self.closed = False
        self.fail_on = set(fail_on)
        self.remote_gate: asyncio.Event | None = None

    def _record(self, step: str) -> None:
        self.calls.append(step)
        if step in self.fail_on:
            raise RuntimeError(f"{step} failed")

    async def create_offer(self) -> SessionDescription:
        self._record("create_offer")
        return SessionDescription(type=SdpType.OFFER, sdp=f"v=0 offer {self.name}")

    async def create_answer(self) -> SessionDescription:
        self._record("create_answer")
        return SessionDescription(type=SdpType.ANSWER, sdp=f"v=0 answer {self.name}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self._record("set_local_description")
        self.local = description

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._record("set_remote_description")
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        self.remote = description

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        self._record("add_ice_candidate")
        self.candidates.append(candidate)

    def set_audio_enabled(self, enabled: bool) -> None:
        self.audio_enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        self.video_enabled = enabled

    async def close(self) -> None:
        self.closed = True

    async def discover(self, candidate: IceCandidate) -> None:
        await self.events.publish(LocalCandidateDiscovered(candidate))

    async def add_remote_track(self, kind: str) -> None:
        await self.events.publish(RemoteTrackAdded(kind=kind))

    async def change_state(self, state: ConnectionState) -> None:
        await self.events.publish(ConnectionStateChanged(state))


class MemoryClientSocket:
    """In-process WebSocket wired straight into a room registry.

    Frames the client sends are dispatched exactly as the rendezvous endpoint would;
    replies and relayed envelopes land in this socket's inbound queue.
    """

    def __init__(self, rooms: RoomRegistry, connection_id: str) -> None:
        self.rooms = rooms
        self.connection = SignalingConnection(connection_id, self._deliver)
        self.sent: list[dict] = []
        self.closed = False
        self._inbound: asyncio.Queue[str | None] = asyncio.Queue()

    async def _deliver(self, message: dict) -> None:
        await self._inbound.put(json.dumps(message))

    async def send(self, text: str) -> None:
        message = json.loads(text)
        self.sent.append(message)
        reply = await dispatch_frame(self.rooms, self.connection, message)
        if reply is not None:
            await self._deliver(reply)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.rooms.disconnect(self.connection.connection_id)
        await self._inbound.put(None)

    def __aiter__(self) -> "MemoryClientSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbound.get()
        if item is None:
            raise StopAsyncIteration
        return item


class MemoryNetwork:
    """Replacement for ``websockets.connect`` handing out registry-backed sockets."""

    def __init__(self) -> None:
        self.rooms = RoomRegistry()
        self.sockets: list[MemoryClientSocket] = []

    async def connect(self, url: str, **kwargs) -> MemoryClientSocket:
        socket = MemoryClientSocket(self.rooms, f"client-{len(self.sockets)}")
        self.sockets.append(socket)
        return socket


async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually():
    return _eventually


@pytest.fixture
def make_engine():
    engines: list[FakeMediaEngine] = []

    def factory(name: str | None = None, **kwargs) -> FakeMediaEngine:
        engine = FakeMediaEngine(name or f"engine-{len(engines)}", **kwargs)
        engines.append(engine)
        return engine

    factory.engines = engines  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def network(monkeypatch):
    memory = MemoryNetwork()
    monkeypatch.setattr(signaling_client, "websockets", SimpleNamespace(connect=memory.connect))
    return memory
