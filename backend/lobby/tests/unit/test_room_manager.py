"""Tests for creating, joining and leaving rooms."""

from __future__ import annotations

import random
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from game.logic.rules import GameRules
from lobby.rooms.exceptions import (
    CreationExhaustedError,
    InvalidDisplayNameError,
    InvalidRoomCodeError,
    RoomFullError,
    RoomNotFoundError,
)
from lobby.rooms.manager import RoomManager
from lobby.rooms.models import LeaveOutcome
from shared.dal.errors import StoreError
from shared.dal.models import Room, RoomStatus, utcnow
from shared.db import MemoryStore


@pytest.fixture
def rooms(memory_store, rng):
    return RoomManager(memory_store, rng=rng)


class TestCreateRoom:
    async def test_creates_lobby_with_host(self, rooms, memory_store):
        result = await rooms.create_room("  Alice ")

        assert result.room.status is RoomStatus.LOBBY
        assert result.room.current_round == 0
        assert result.room.host_player_id == result.player.id
        assert result.player.display_name == "Alice"
        assert result.player.is_host
        assert result.player.is_connected
        assert await memory_store.list_players(result.room.id) == [result.player]

    async def test_retries_on_code_collision(self, memory_store):
        await memory_store.insert_room(Room(code="AAAA", host_player_id="someone"))
        rng = random.Random()
        codes = iter(["AAAA", "BBBB"])
        manager = RoomManager(memory_store, rng=rng)

        with patch("lobby.rooms.manager.generate_room_code", side_effect=lambda *_: next(codes)):
            result = await manager.create_room("Alice")

        assert result.room.code == "BBBB"

    async def test_gives_up_after_max_attempts(self, memory_store):
        await memory_store.insert_room(Room(code="AAAA", host_player_id="someone"))
        manager = RoomManager(memory_store, GameRules(max_room_code_attempts=3))

        with (
            patch("lobby.rooms.manager.generate_room_code", return_value="AAAA") as generate,
            pytest.raises(CreationExhaustedError, match="after 3 attempts"),
        ):
            await manager.create_room("Alice")

        assert generate.call_count == 3

    async def test_failed_host_insert_removes_room(self, rooms, memory_store):
        memory_store.insert_player = AsyncMock(side_effect=StoreError("boom"))

        with pytest.raises(StoreError):
            await rooms.create_room("Alice")

        assert memory_store._rooms == {}

    @pytest.mark.parametrize("name", ["", "A", " B ", "x" * 21])
    async def test_rejects_bad_display_names(self, rooms, name):
        with pytest.raises(InvalidDisplayNameError, match="Name must be 2-20 characters"):
            await rooms.create_room(name)


class TestJoinRoom:
    async def test_join_adds_connected_player(self, rooms):
        created = await rooms.create_room("Alice")

        joined = await rooms.join_room(created.room.code.lower(), "Bob")

        assert not joined.player.is_host
        assert not joined.reconnected
        assert [p.display_name for p in joined.players] == ["Alice", "Bob"]

    async def test_unknown_code(self, rooms):
        with pytest.raises(RoomNotFoundError, match="Check the code"):
            await rooms.join_room("ZZZZ", "Bob")

    async def test_malformed_code(self, rooms):
        with pytest.raises(InvalidRoomCodeError):
            await rooms.join_room("Z!", "Bob")

    async def test_full_room(self, memory_store, rng):
        manager = RoomManager(memory_store, GameRules(max_players_per_room=2), rng)
        created = await manager.create_room("Alice")
        await manager.join_room(created.room.code, "Bob")

        with pytest.raises(RoomFullError, match=r"max 2 players"):
            await manager.join_room(created.room.code, "Carol")

    async def test_store_capacity_guard_surfaces_as_room_full(self, rng):
        # The store allows fewer players than the rules, as when two joins race past the pre-check.
        manager = RoomManager(MemoryStore(max_connected_players=2), rng=rng)
        created = await manager.create_room("Alice")
        await manager.join_room(created.room.code, "Bob")

        with pytest.raises(RoomFullError):
            await manager.join_room(created.room.code, "Carol")

    async def test_reconnect_blocked_by_store_capacity_guard(self, rng):
        store = MemoryStore(max_connected_players=2)
        manager = RoomManager(store, rng=rng)
        created = await manager.create_room("Alice")
        bob = (await manager.join_room(created.room.code, "Bob")).player
        await manager.leave_room(bob.id, created.room.id)
        await manager.join_room(created.room.code, "Carol")

        with pytest.raises(RoomFullError):
            await manager.join_room(created.room.code, "Bob", existing_player_id=bob.id)

        assert (await store.get_player(bob.id)).is_connected is False

    async def test_reconnect_reuses_row(self, rooms, memory_store):
        created = await rooms.create_room("Alice")
        bob = (await rooms.join_room(created.room.code, "Bob")).player
        await rooms.leave_room(bob.id, created.room.id)

        rejoined = await rooms.join_room(created.room.code, "Bobby", existing_player_id=bob.id)

        assert rejoined.reconnected
        assert rejoined.player.id == bob.id
        assert rejoined.player.is_connected
        assert rejoined.player.display_name == "Bobby"
        assert len(await memory_store.list_players(created.room.id)) == 2

    async def test_reconnect_into_full_room_does_not_count_itself(self, memory_store, rng):
        manager = RoomManager(memory_store, GameRules(max_players_per_room=2), rng)
        created = await manager.create_room("Alice")
        bob = (await manager.join_room(created.room.code, "Bob")).player

        rejoined = await manager.join_room(created.room.code, "Bob", existing_player_id=bob.id)

        assert rejoined.player.id == bob.id

    async def test_unknown_existing_id_joins_as_new(self, rooms):
        created = await rooms.create_room("Alice")

        joined = await rooms.join_room(created.room.code, "Bob", existing_player_id="not-a-player")

        assert not joined.reconnected
        assert joined.player.id != "not-a-player"


class TestLeaveRoom:
    async def test_last_player_deletes_room(self, rooms, memory_store):
        created = await rooms.create_room("Alice")

        outcome = await rooms.leave_room(created.player.id, created.room.id)

        assert outcome is LeaveOutcome.ROOM_DELETED
        assert await memory_store.get_room(created.room.id) is None
        assert await memory_store.list_players(created.room.id) == []

    async def test_host_passes_to_earliest_joined(self, rooms, memory_store):
        created = await rooms.create_room("Alice")
        code, room_id = created.room.code, created.room.id
        bob = (await rooms.join_room(code, "Bob")).player
        carol = (await rooms.join_room(code, "Carol")).player
        await memory_store.update_player(carol.id, joined_at=bob.joined_at - timedelta(seconds=1))

        outcome = await rooms.leave_room(created.player.id, room_id)

        assert outcome is LeaveOutcome.PLAYER_DISCONNECTED
        hosts = [p.id for p in await memory_store.list_players(room_id) if p.is_host]
        assert hosts == [carol.id]
        assert (await memory_store.get_room(room_id)).host_player_id == carol.id

    async def test_leave_is_idempotent(self, rooms, memory_store):
        created = await rooms.create_room("Alice")
        bob = (await rooms.join_room(created.room.code, "Bob")).player

        await rooms.leave_room(created.player.id, created.room.id)
        again = await rooms.leave_room(created.player.id, created.room.id)

        assert again is LeaveOutcome.PLAYER_DISCONNECTED
        players = await memory_store.list_players(created.room.id)
        assert [p.id for p in players if p.is_host] == [bob.id]

    async def test_unknown_player(self, rooms):
        created = await rooms.create_room("Alice")

        assert await rooms.leave_room("stranger", created.room.id) is LeaveOutcome.NOT_IN_ROOM

    async def test_leave_refreshes_last_seen(self, rooms, memory_store):
        created = await rooms.create_room("Alice")
        bob = (await rooms.join_room(created.room.code, "Bob")).player
        before = utcnow()

        await rooms.leave_room(bob.id, created.room.id)

        row = await memory_store.get_player(bob.id)
        assert not row.is_connected
        assert row.last_seen_at >= before
