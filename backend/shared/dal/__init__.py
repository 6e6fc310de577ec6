"""Data access layer: the Store interface, row models and change notifications."""

from shared.dal.changes import ChangeEvent, ChangeFeed, ChangeKind, Subscription, SubscriptionError, Topic
from shared.dal.errors import CapacityViolationError, StoreError, UniqueViolationError
from shared.dal.models import Player, RankingEntry, Room, RoomStatus, Round, RoundPhase, RoundResult, Winner
from shared.dal.store import Store

__all__ = [
    "CapacityViolationError",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeKind",
    "Player",
    "RankingEntry",
    "Room",
    "RoomStatus",
    "Round",
    "RoundPhase",
    "RoundResult",
    "Store",
    "StoreError",
    "Subscription",
    "SubscriptionError",
    "Topic",
    "UniqueViolationError",
    "Winner",
]
