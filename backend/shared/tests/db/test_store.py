"""Behaviour every Store implementation must share, run against both backends."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from shared.dal.changes import ChangeKind, Topic
from shared.dal.errors import CapacityViolationError, StoreError, UniqueViolationError
from shared.dal.models import Player, RankingEntry, Room, RoomStatus, Round, RoundPhase
from shared.db import Database, MemoryStore, SqliteStore

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from shared.dal.store import Store

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[Store]:
    if request.param == "memory":
        yield MemoryStore(max_connected_players=3)
        return
    db = Database(tmp_path / "store.db", max_connected_players=3)
    db.connect()
    yield SqliteStore(db)
    db.close()


async def _room(store: Store, code: str = "ABCD") -> Room:
    return await store.insert_room(Room(code=code, host_player_id="host"))


class TestRooms:
    async def test_insert_and_lookup(self, store: Store) -> None:
        room = await _room(store)

        assert await store.get_room(room.id) == room
        assert await store.get_room_by_code("ABCD") == room
        assert await store.get_room_by_code("WXYZ") is None

    async def test_duplicate_code_rejected(self, store: Store) -> None:
        await _room(store)

        with pytest.raises(UniqueViolationError):
            await _room(store)

    async def test_update_returns_new_row(self, store: Store) -> None:
        room = await _room(store)

        updated = await store.update_room(room.id, status=RoomStatus.PLAYING, current_round=1)

        assert updated is not None
        assert updated.status is RoomStatus.PLAYING
        assert updated.current_round == 1
        assert await store.get_room(room.id) == updated

    async def test_update_missing_room_is_noop(self, store: Store) -> None:
        assert await store.update_room("missing", current_round=1) is None

    async def test_update_rejects_unknown_field(self, store: Store) -> None:
        room = await _room(store)

        with pytest.raises(ValueError, match="Unknown Room fields"):
            await store.update_room(room.id, colour="red")

    async def test_delete_cascades(self, store: Store) -> None:
        room = await _room(store)
        player = await store.insert_player(Player(room_id=room.id, display_name="Alice"))
        round_ = await store.insert_round(Round(room_id=room.id, round_number=1, card_ids=["a"]))

        assert await store.delete_room(room.id) is True

        assert await store.get_room_by_code("ABCD") is None
        assert await store.get_player(player.id) is None
        assert await store.get_round(round_.id) is None
        assert await store.delete_room(room.id) is False


class TestPlayers:
    async def test_list_orders_by_join_time(self, store: Store) -> None:
        room = await _room(store)
        late = await store.insert_player(Player(room_id=room.id, display_name="Late", joined_at=T0 + timedelta(1)))
        early = await store.insert_player(Player(room_id=room.id, display_name="Early", joined_at=T0))

        players = await store.list_players(room.id)

        assert [p.id for p in players] == [early.id, late.id]

    async def test_equal_join_times_keep_insertion_order(self, store: Store) -> None:
        room = await _room(store)
        first = await store.insert_player(Player(room_id=room.id, display_name="First", joined_at=T0))
        second = await store.insert_player(Player(room_id=room.id, display_name="Second", joined_at=T0))

        players = await store.list_players(room.id)

        assert [p.id for p in players] == [first.id, second.id]

    async def test_insert_into_missing_room_fails(self, store: Store) -> None:
        with pytest.raises(StoreError):
            await store.insert_player(Player(room_id="missing", display_name="Alice"))

    async def test_capacity_counts_connected_players_only(self, store: Store) -> None:
        room = await _room(store)
        for name in ("A1", "B2", "C3"):
            await store.insert_player(Player(room_id=room.id, display_name=name))

        with pytest.raises(CapacityViolationError):
            await store.insert_player(Player(room_id=room.id, display_name="D4"))

        # Disconnected rows do not count against the limit.
        await store.insert_player(Player(room_id=room.id, display_name="Gone", is_connected=False))
        players = await store.list_players(room.id)
        await store.update_player(players[0].id, is_connected=False)
        await store.insert_player(Player(room_id=room.id, display_name="D4"))

    async def test_reconnect_update_respects_capacity(self, store: Store) -> None:
        room = await _room(store)
        gone = await store.insert_player(Player(room_id=room.id, display_name="Gone", is_connected=False))
        for name in ("A1", "B2", "C3"):
            await store.insert_player(Player(room_id=room.id, display_name=name))

        with pytest.raises(CapacityViolationError):
            await store.update_player(gone.id, is_connected=True)

        assert (await store.get_player(gone.id)).is_connected is False
        connected = [p for p in await store.list_players(room.id) if p.is_connected]
        assert len(connected) == 3

    async def test_updates_to_connected_players_ignore_capacity(self, store: Store) -> None:
        room = await _room(store)
        players = [await store.insert_player(Player(room_id=room.id, display_name=name)) for name in ("A1", "B2", "C3")]

        updated = await store.update_player(players[0].id, is_connected=True, display_name="Renamed")

        assert updated.display_name == "Renamed"

    async def test_update_player(self, store: Store) -> None:
        room = await _room(store)
        player = await store.insert_player(Player(room_id=room.id, display_name="Alice"))

        updated = await store.update_player(player.id, is_connected=False)

        assert updated is not None
        assert updated.is_connected is False
        assert (await store.get_player(player.id)) == updated
        assert await store.update_player("missing", is_connected=False) is None


class TestRounds:
    async def test_one_round_per_number(self, store: Store) -> None:
        room = await _room(store)
        await store.insert_round(Round(room_id=room.id, round_number=1))

        with pytest.raises(UniqueViolationError):
            await store.insert_round(Round(room_id=room.id, round_number=1))

    async def test_lookup_by_number(self, store: Store) -> None:
        room = await _room(store)
        round_ = await store.insert_round(Round(room_id=room.id, round_number=2, card_ids=["a", "b"]))

        assert await store.get_round_by_number(room.id, 2) == round_
        assert await store.get_round_by_number(room.id, 3) is None

    async def test_update_round_validates_nested_rows(self, store: Store) -> None:
        room = await _room(store)
        round_ = await store.insert_round(Round(room_id=room.id, round_number=1, card_ids=["a"]))

        updated = await store.update_round(
            round_.id,
            phase=RoundPhase.GUESSING,
            actual_ranking=[{"id": "a", "position": 1}],
        )

        assert updated is not None
        assert updated.actual_ranking == [RankingEntry(id="a", position=1)]
        assert (await store.get_round(round_.id)) == updated


class TestChangeEvents:
    async def test_writes_are_published_to_room_subscribers(self, store: Store) -> None:
        room = await _room(store)
        rooms = store.subscribe(Topic.ROOMS, room.id)
        players = store.subscribe(Topic.PLAYERS, room.id)

        player = await store.insert_player(Player(room_id=room.id, display_name="Alice"))
        await store.update_room(room.id, current_round=1)

        player_event = await asyncio.wait_for(anext(players), 1)
        room_event = await asyncio.wait_for(anext(rooms), 1)
        assert (player_event.kind, player_event.row) == (ChangeKind.INSERT, player)
        assert room_event.kind is ChangeKind.UPDATE
        assert room_event.row.current_round == 1

    async def test_other_rooms_are_not_delivered(self, store: Store) -> None:
        room = await _room(store)
        other = await _room(store, "WXYZ")
        subscription = store.subscribe(Topic.ROOMS, room.id)

        await store.update_room(other.id, current_round=1)
        await store.update_room(room.id, current_round=2)

        event = await asyncio.wait_for(anext(subscription), 1)
        assert event.room_id == room.id

    async def test_delete_publishes_cascaded_rows(self, store: Store) -> None:
        room = await _room(store)
        player = await store.insert_player(Player(room_id=room.id, display_name="Alice"))
        subscription = store.subscribe(Topic.PLAYERS, room.id)

        await store.delete_room(room.id)

        event = await asyncio.wait_for(anext(subscription), 1)
        assert event.kind is ChangeKind.DELETE
        assert event.row.id == player.id

    async def test_failed_write_publishes_nothing(self, store: Store) -> None:
        room = await _room(store)
        subscription = store.subscribe(Topic.ROOMS, room.id)

        with pytest.raises(UniqueViolationError):
            await store.insert_room(Room(code="ABCD", host_player_id="other"))
        subscription.close()

        assert [event async for event in subscription] == []
