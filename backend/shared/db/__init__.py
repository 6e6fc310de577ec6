"""Store implementations: in-memory and SQLite."""

from shared.db.connection import Database
from shared.db.memory import MemoryStore
from shared.db.store import SqliteStore

__all__ = [
    "Database",
    "MemoryStore",
    "SqliteStore",
]
