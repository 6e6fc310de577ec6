"""SQLite-backed store."""

from __future__ import annotations

import asyncio
import sqlite3
from typing import TYPE_CHECKING, Any

from shared.dal.changes import ChangeKind, Topic
from shared.dal.errors import CapacityViolationError, StoreError, UniqueViolationError
from shared.dal.models import Player, Room, Round, apply_changes
from shared.dal.store import Store
from shared.db.connection import CAPACITY_ERROR

if TYPE_CHECKING:
    from shared.dal.changes import ChangeFeed
    from shared.db.connection import Database


class SqliteStore(Store):
    """SQLite implementation of Store.

    Rows are stored as JSON in a data column next to the key columns the
    constraints and lookups need. Writes run under an asyncio lock and
    IntegrityError is mapped to the store error hierarchy.
    """

    def __init__(self, db: Database, feed: ChangeFeed | None = None) -> None:
        super().__init__(feed, db.max_connected_players)
        self._db = db
        self._lock = asyncio.Lock()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        conn = self._db.connection
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise _map_integrity_error(exc) from exc
        return cursor

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> str | None:
        row = self._db.connection.execute(sql, params).fetchone()
        return None if row is None else row[0]

    # --- rooms ---

    async def insert_room(self, room: Room) -> Room:
        async with self._lock:
            self._execute(
                "INSERT INTO rooms (id, code, data) VALUES (?, ?, ?)",
                (room.id, room.code, room.model_dump_json()),
            )
        self._publish(Topic.ROOMS, ChangeKind.INSERT, room)
        return room

    async def get_room(self, room_id: str) -> Room | None:
        data = self._fetch_one("SELECT data FROM rooms WHERE id = ?", (room_id,))
        return None if data is None else Room.model_validate_json(data)

    async def get_room_by_code(self, code: str) -> Room | None:
        data = self._fetch_one("SELECT data FROM rooms WHERE code = ?", (code,))
        return None if data is None else Room.model_validate_json(data)

    async def update_room(self, room_id: str, **changes: Any) -> Room | None:
        async with self._lock:
            room = await self.get_room(room_id)
            if room is None:
                return None
            updated = apply_changes(room, changes)
            self._execute(
                "UPDATE rooms SET code = ?, data = ? WHERE id = ?",
                (updated.code, updated.model_dump_json(), room_id),
            )
        self._publish(Topic.ROOMS, ChangeKind.UPDATE, updated)
        return updated

    async def delete_room(self, room_id: str) -> bool:
        async with self._lock:
            room = await self.get_room(room_id)
            if room is None:
                return False
            players = await self.list_players(room_id)
            rounds = [
                Round.model_validate_json(data)
                for (data,) in self._db.connection.execute(
                    "SELECT data FROM rounds WHERE room_id = ? ORDER BY round_number",
                    (room_id,),
                ).fetchall()
            ]
            self._execute("DELETE FROM rooms WHERE id = ?", (room_id,))
        for player in players:
            self._publish(Topic.PLAYERS, ChangeKind.DELETE, player)
        for round_ in rounds:
            self._publish(Topic.ROUNDS, ChangeKind.DELETE, round_)
        self._publish(Topic.ROOMS, ChangeKind.DELETE, room)
        return True

    # --- players ---

    async def insert_player(self, player: Player) -> Player:
        async with self._lock:
            self._execute(
                "INSERT INTO players (id, room_id, is_connected, joined_at, data) VALUES (?, ?, ?, ?, ?)",
                (
                    player.id,
                    player.room_id,
                    int(player.is_connected),
                    player.joined_at.isoformat(timespec="microseconds"),
                    player.model_dump_json(),
                ),
            )
        self._publish(Topic.PLAYERS, ChangeKind.INSERT, player)
        return player

    async def get_player(self, player_id: str) -> Player | None:
        data = self._fetch_one("SELECT data FROM players WHERE id = ?", (player_id,))
        return None if data is None else Player.model_validate_json(data)

    async def list_players(self, room_id: str) -> list[Player]:
        rows = self._db.connection.execute(
            "SELECT data FROM players WHERE room_id = ? ORDER BY joined_at, rowid",
            (room_id,),
        ).fetchall()
        return [Player.model_validate_json(data) for (data,) in rows]

    async def update_player(self, player_id: str, **changes: Any) -> Player | None:
        async with self._lock:
            player = await self.get_player(player_id)
            if player is None:
                return None
            updated = apply_changes(player, changes)
            self._execute(
                "UPDATE players SET is_connected = ?, data = ? WHERE id = ?",
                (int(updated.is_connected), updated.model_dump_json(), player_id),
            )
        self._publish(Topic.PLAYERS, ChangeKind.UPDATE, updated)
        return updated

    # --- rounds ---

    async def insert_round(self, round_: Round) -> Round:
        async with self._lock:
            self._execute(
                "INSERT INTO rounds (id, room_id, round_number, data) VALUES (?, ?, ?, ?)",
                (round_.id, round_.room_id, round_.round_number, round_.model_dump_json()),
            )
        self._publish(Topic.ROUNDS, ChangeKind.INSERT, round_)
        return round_

    async def get_round(self, round_id: str) -> Round | None:
        data = self._fetch_one("SELECT data FROM rounds WHERE id = ?", (round_id,))
        return None if data is None else Round.model_validate_json(data)

    async def get_round_by_number(self, room_id: str, round_number: int) -> Round | None:
        data = self._fetch_one(
            "SELECT data FROM rounds WHERE room_id = ? AND round_number = ?",
            (room_id, round_number),
        )
        return None if data is None else Round.model_validate_json(data)

    async def update_round(self, round_id: str, **changes: Any) -> Round | None:
        async with self._lock:
            round_ = await self.get_round(round_id)
            if round_ is None:
                return None
            updated = apply_changes(round_, changes)
            self._execute(
                "UPDATE rounds SET data = ? WHERE id = ?",
                (updated.model_dump_json(), round_id),
            )
        self._publish(Topic.ROUNDS, ChangeKind.UPDATE, updated)
        return updated


def _map_integrity_error(exc: sqlite3.IntegrityError) -> StoreError:
    error_msg = str(exc).lower()
    if CAPACITY_ERROR in error_msg:
        return CapacityViolationError("Room is at capacity")
    if "unique" in error_msg or "primary key" in error_msg:
        return UniqueViolationError(str(exc))
    return StoreError(str(exc))
