"""Tests for the rendezvous room registry."""
from __future__ import annotations

import asyncio

import pytest

from pomopair.services.rendezvous import JoinResult, Role, RoomRegistry, SignalingConnection


class DummyConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def handle(self) -> SignalingConnection:
        return SignalingConnection(self.connection_id, self.send)


class BrokenConnection(DummyConnection):
    async def send(self, message: dict) -> None:
        raise ConnectionError("socket gone")


@pytest.mark.asyncio
async def test_first_join_creates_second_joins_third_is_full():
    rooms = RoomRegistry()
    conn_a, conn_b, conn_c = DummyConnection("a"), DummyConnection("b"), DummyConnection("c")

    assert await rooms.join("r1", conn_a.handle()) is JoinResult.CREATED
    assert await rooms.join("r1", conn_b.handle()) is JoinResult.JOINED
    assert await rooms.join("r1", conn_c.handle()) is JoinResult.FULL

    members = rooms.members("r1")
    assert [member.connection.connection_id for member in members] == ["a", "b"]
    assert [member.role for member in members] == [Role.CREATOR, Role.JOINER]
    assert [member.join_order for member in members] == [0, 1]
    assert rooms.occupancy("r1") == 2


@pytest.mark.asyncio
async def test_concurrent_joins_to_empty_room_assign_each_role_once():
    rooms = RoomRegistry()
    connections = [DummyConnection(f"peer-{index}") for index in range(12)]

    results = await asyncio.gather(*(rooms.join("race", conn.handle()) for conn in connections))

    assert results.count(JoinResult.CREATED) == 1
    assert results.count(JoinResult.JOINED) == 1
    assert results.count(JoinResult.FULL) == 10
    assert rooms.occupancy("race") == 2


@pytest.mark.asyncio
async def test_rejoin_with_same_connection_is_idempotent():
    rooms = RoomRegistry()
    conn_a = DummyConnection("a")

    assert await rooms.join("r1", conn_a.handle()) is JoinResult.CREATED
    assert await rooms.join("r1", conn_a.handle()) is JoinResult.CREATED
    assert rooms.occupancy("r1") == 1


@pytest.mark.asyncio
async def test_relay_reaches_only_the_other_member_unmodified():
    rooms = RoomRegistry()
    conn_a, conn_b, conn_c = DummyConnection("a"), DummyConnection("b"), DummyConnection("c")
    await rooms.join("r1", conn_a.handle())
    await rooms.join("r1", conn_b.handle())
    await rooms.join("r1", conn_c.handle())

    message = {"event": "signal", "data": {"room": "r1", "type": "offer", "sdp": "v=0 blob"}}
    await rooms.relay("r1", "b", message)

    assert conn_a.messages == [message]
    assert conn_b.messages == []
    assert conn_c.messages == []


@pytest.mark.asyncio
async def test_relay_failure_is_logged_and_does_not_raise(caplog):
    rooms = RoomRegistry()
    broken = BrokenConnection("a")
    await rooms.join("r1", broken.handle())
    await rooms.join("r1", DummyConnection("b").handle())

    await rooms.relay("r1", "b", {"event": "signal", "data": {"room": "r1"}})

    assert "Relay to a in room r1 failed" in caplog.text


@pytest.mark.asyncio
async def test_leave_and_disconnect_free_the_room():
    rooms = RoomRegistry()
    conn_a, conn_b, conn_c = DummyConnection("a"), DummyConnection("b"), DummyConnection("c")
    await rooms.join("r1", conn_a.handle())
    await rooms.join("r1", conn_b.handle())

    await rooms.disconnect("b")
    assert rooms.occupancy("r1") == 1

    assert await rooms.join("r1", conn_c.handle()) is JoinResult.JOINED

    await rooms.leave("r1", "a")
    await rooms.leave("r1", "c")
    assert rooms.occupancy("r1") == 0

    conn_d = DummyConnection("d")
    assert await rooms.join("r1", conn_d.handle()) is JoinResult.CREATED


@pytest.mark.asyncio
async def test_relay_to_unknown_room_is_a_no_op():
    rooms = RoomRegistry()

    await rooms.relay("nowhere", "a", {"event": "signal"})
    await rooms.leave("nowhere", "a")

    assert rooms.members("nowhere") == []
