"""SQLite database connection and schema management."""

import os
import sqlite3
from pathlib import Path

import structlog

from shared.dal.store import DEFAULT_MAX_CONNECTED_PLAYERS

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS rooms (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_rooms_code ON rooms (code);

CREATE TABLE IF NOT EXISTS players (
    id TEXT PRIMARY KEY,
    room_id TEXT NOT NULL REFERENCES rooms (id) ON DELETE CASCADE,
    is_connected INTEGER NOT NULL,
    joined_at TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_players_room ON players (room_id, joined_at);

CREATE TABLE IF NOT EXISTS rounds (
    id TEXT PRIMARY KEY,
    room_id TEXT NOT NULL REFERENCES rooms (id) ON DELETE CASCADE,
    round_number INTEGER NOT NULL,
    data TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_rounds_room_number ON rounds (room_id, round_number);
"""

CAPACITY_ERROR = "room_capacity_exceeded"

# Recreated on every connect so a changed capacity takes effect on existing files.
_CAPACITY_TRIGGER_SQL = """\
DROP TRIGGER IF EXISTS trg_players_capacity;
CREATE TRIGGER trg_players_capacity
BEFORE INSERT ON players
WHEN NEW.is_connected = 1
    AND (SELECT COUNT(*) FROM players WHERE room_id = NEW.room_id AND is_connected = 1) >= {capacity}
BEGIN
    SELECT RAISE(ABORT, '{error}');
END;

DROP TRIGGER IF EXISTS trg_players_capacity_reconnect;
CREATE TRIGGER trg_players_capacity_reconnect
BEFORE UPDATE OF is_connected ON players
WHEN NEW.is_connected = 1 AND OLD.is_connected = 0
    AND (SELECT COUNT(*) FROM players WHERE room_id = NEW.room_id AND is_connected = 1) >= {capacity}
BEGIN
    SELECT RAISE(ABORT, '{error}');
END;
"""


class Database:
    """SQLite database wrapper with schema management."""

    def __init__(self, path: str | Path, max_connected_players: int = DEFAULT_MAX_CONNECTED_PLAYERS) -> None:
        self._path = str(path)
        self._max_connected_players = max_connected_players
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    @property
    def max_connected_players(self) -> int:
        return self._max_connected_players

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions."""
        parent = Path(self._path).parent
        parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.executescript(
            _CAPACITY_TRIGGER_SQL.format(capacity=int(self._max_connected_players), error=CAPACITY_ERROR),
        )

        self._harden_permissions()
        logger.info("database connected", path=self._path, max_connected_players=self._max_connected_players)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        """Set owner-only permissions on the database and its WAL/SHM siblings (POSIX, best effort)."""
        if os.name != "posix":  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
