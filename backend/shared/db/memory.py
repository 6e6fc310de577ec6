"""In-process store backed by dictionaries."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from shared.dal.changes import ChangeKind, Topic
from shared.dal.errors import CapacityViolationError, StoreError, UniqueViolationError
from shared.dal.models import apply_changes
from shared.dal.store import DEFAULT_MAX_CONNECTED_PLAYERS, Store

if TYPE_CHECKING:
    from shared.dal.changes import ChangeFeed
    from shared.dal.models import Player, Room, Round


class MemoryStore(Store):
    """Dictionary implementation of Store.

    Writes are serialised with an asyncio lock so constraint checks and the
    insert that follows them cannot interleave with another writer.
    """

    def __init__(
        self,
        feed: ChangeFeed | None = None,
        max_connected_players: int = DEFAULT_MAX_CONNECTED_PLAYERS,
    ) -> None:
        super().__init__(feed, max_connected_players)
        self._rooms: dict[str, Room] = {}
        self._players: dict[str, Player] = {}
        self._rounds: dict[str, Round] = {}
        self._lock = asyncio.Lock()

    # --- rooms ---

    async def insert_room(self, room: Room) -> Room:
        async with self._lock:
            if room.id in self._rooms:
                raise UniqueViolationError(f"Room with id '{room.id}' already exists")
            if any(r.code == room.code for r in self._rooms.values()):
                raise UniqueViolationError(f"Room code '{room.code}' already in use")
            self._rooms[room.id] = room
        self._publish(Topic.ROOMS, ChangeKind.INSERT, room)
        return room

    async def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    async def get_room_by_code(self, code: str) -> Room | None:
        return next((r for r in self._rooms.values() if r.code == code), None)

    async def update_room(self, room_id: str, **changes: Any) -> Room | None:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                return None
            updated = apply_changes(room, changes)
            self._rooms[room_id] = updated
        self._publish(Topic.ROOMS, ChangeKind.UPDATE, updated)
        return updated

    async def delete_room(self, room_id: str) -> bool:
        async with self._lock:
            room = self._rooms.pop(room_id, None)
            if room is None:
                return False
            players = [p for p in self._players.values() if p.room_id == room_id]
            rounds = [r for r in self._rounds.values() if r.room_id == room_id]
            for player in players:
                del self._players[player.id]
            for round_ in rounds:
                del self._rounds[round_.id]
        for player in players:
            self._publish(Topic.PLAYERS, ChangeKind.DELETE, player)
        for round_ in rounds:
            self._publish(Topic.ROUNDS, ChangeKind.DELETE, round_)
        self._publish(Topic.ROOMS, ChangeKind.DELETE, room)
        return True

    # --- players ---

    async def insert_player(self, player: Player) -> Player:
        async with self._lock:
            if player.room_id not in self._rooms:
                raise StoreError(f"Room '{player.room_id}' does not exist")
            if player.id in self._players:
                raise UniqueViolationError(f"Player with id '{player.id}' already exists")
            if player.is_connected:
                connected = sum(1 for p in self._players.values() if p.room_id == player.room_id and p.is_connected)
                if connected >= self.max_connected_players:
                    raise CapacityViolationError(f"Room '{player.room_id}' is at capacity")
            self._players[player.id] = player
        self._publish(Topic.PLAYERS, ChangeKind.INSERT, player)
        return player

    async def get_player(self, player_id: str) -> Player | None:
        return self._players.get(player_id)

    async def list_players(self, room_id: str) -> list[Player]:
        players = [p for p in self._players.values() if p.room_id == room_id]
        return sorted(players, key=lambda p: p.joined_at)

    async def update_player(self, player_id: str, **changes: Any) -> Player | None:
        async with self._lock:
            player = self._players.get(player_id)
            if player is None:
                return None
            updated = apply_changes(player, changes)
            if updated.is_connected and not player.is_connected:
                connected = sum(1 for p in self._players.values() if p.room_id == player.room_id and p.is_connected)
                if connected >= self.max_connected_players:
                    raise CapacityViolationError(f"Room '{player.room_id}' is at capacity")
            self._players[player_id] = updated
        self._publish(Topic.PLAYERS, ChangeKind.UPDATE, updated)
        return updated

    # --- rounds ---

    async def insert_round(self, round_: Round) -> Round:
        async with self._lock:
            if round_.room_id not in self._rooms:
                raise StoreError(f"Room '{round_.room_id}' does not exist")
            if round_.id in self._rounds:
                raise UniqueViolationError(f"Round with id '{round_.id}' already exists")
            if any(
                r.room_id == round_.room_id and r.round_number == round_.round_number for r in self._rounds.values()
            ):
                raise UniqueViolationError(f"Round {round_.round_number} already exists in room '{round_.room_id}'")
            self._rounds[round_.id] = round_
        self._publish(Topic.ROUNDS, ChangeKind.INSERT, round_)
        return round_

    async def get_round(self, round_id: str) -> Round | None:
        return self._rounds.get(round_id)

    async def get_round_by_number(self, room_id: str, round_number: int) -> Round | None:
        return next(
            (r for r in self._rounds.values() if r.room_id == room_id and r.round_number == round_number),
            None,
        )

    async def update_round(self, round_id: str, **changes: Any) -> Round | None:
        async with self._lock:
            round_ = self._rounds.get(round_id)
            if round_ is None:
                return None
            updated = apply_changes(round_, changes)
            self._rounds[round_id] = updated
        self._publish(Topic.ROUNDS, ChangeKind.UPDATE, updated)
        return updated
