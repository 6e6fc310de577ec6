"""Tests for Database connection and schema."""

from __future__ import annotations

import sqlite3
import sys
from typing import TYPE_CHECKING

import pytest

from shared.db.connection import CAPACITY_ERROR, Database

if TYPE_CHECKING:
    from pathlib import Path


class TestConnect:
    def test_creates_schema(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()

        tables = db.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name",
        ).fetchall()
        assert [t[0] for t in tables] == ["players", "rooms", "rounds"]
        db.close()

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "nested" / "dir" / "test.db")
        db.connect()

        assert (tmp_path / "nested" / "dir" / "test.db").exists()
        db.close()

    def test_connection_raises_when_closed(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")

        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_reconnect_after_close(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.connection.execute("INSERT INTO rooms (id, code, data) VALUES ('r1', 'ABCD', '{}')")
        db.connection.commit()
        db.close()
        db.connect()

        assert db.connection.execute("SELECT code FROM rooms").fetchone() == ("ABCD",)
        db.close()

    def test_foreign_keys_enforced(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()

        with pytest.raises(sqlite3.IntegrityError):
            db.connection.execute(
                "INSERT INTO players (id, room_id, is_connected, joined_at, data) VALUES ('p1', 'nope', 1, 't', '{}')",
            )
        db.close()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_database_file_is_owner_only(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()

        assert (tmp_path / "test.db").stat().st_mode & 0o777 == 0o600
        db.close()


class TestCapacityTrigger:
    def _insert_player(self, db: Database, player_id: str, *, connected: bool = True) -> None:
        db.connection.execute(
            "INSERT INTO players (id, room_id, is_connected, joined_at, data) VALUES (?, 'r1', ?, 't', '{}')",
            (player_id, int(connected)),
        )

    def test_rejects_connected_player_over_capacity(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db", max_connected_players=2)
        db.connect()
        db.connection.execute("INSERT INTO rooms (id, code, data) VALUES ('r1', 'ABCD', '{}')")
        self._insert_player(db, "p1")
        self._insert_player(db, "p2")

        with pytest.raises(sqlite3.IntegrityError, match=CAPACITY_ERROR):
            self._insert_player(db, "p3")
        self._insert_player(db, "p4", connected=False)
        db.close()

    def test_capacity_change_applies_on_reconnect(self, tmp_path: Path) -> None:
        path = tmp_path / "test.db"
        db = Database(path, max_connected_players=1)
        db.connect()
        db.connection.execute("INSERT INTO rooms (id, code, data) VALUES ('r1', 'ABCD', '{}')")
        self._insert_player(db, "p1")
        db.connection.commit()
        db.close()

        db = Database(path, max_connected_players=2)
        db.connect()
        self._insert_player(db, "p2")
        db.close()
