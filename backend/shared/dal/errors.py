"""Errors raised by Store implementations.

Implementations map backend-specific integrity failures onto these so
callers never see sqlite3 (or any other driver) exceptions.
"""


class StoreError(Exception):
    """Base class for store failures."""


class UniqueViolationError(StoreError):
    """An insert collided with an existing key (room code, round number, id)."""


class CapacityViolationError(StoreError):
    """An insert would push a room past its connected-player capacity."""
