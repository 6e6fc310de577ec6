"""Abstract interface for the shared room/player/round store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from shared.dal.changes import ChangeEvent, ChangeFeed, ChangeKind, Topic

if TYPE_CHECKING:
    from shared.dal.changes import Subscription
    from shared.dal.models import Player, Room, Round

DEFAULT_MAX_CONNECTED_PLAYERS = 10


class Store(ABC):
    """Row store with per-room change notifications.

    Only row-level atomicity is assumed: there are no multi-row
    transactions, so callers that issue several writes must tolerate any
    prefix of them having been applied.

    Implementations enforce:
    - unique room codes
    - unique (room_id, round_number) for rounds
    - at most max_connected_players connected players per room on insert
    - cascading delete of a room's players and rounds
    """

    def __init__(
        self,
        feed: ChangeFeed | None = None,
        max_connected_players: int = DEFAULT_MAX_CONNECTED_PLAYERS,
    ) -> None:
        self.feed = feed or ChangeFeed()
        self.max_connected_players = max_connected_players

    def subscribe(self, topic: Topic, room_id: str) -> Subscription:
        return self.feed.subscribe(topic, room_id)

    def _publish(self, topic: Topic, kind: ChangeKind, row: Room | Player | Round) -> None:
        room_id = row.id if topic is Topic.ROOMS else row.room_id  # type: ignore[union-attr]
        self.feed.publish(ChangeEvent(topic=topic, kind=kind, room_id=room_id, row=row))

    # --- rooms ---

    @abstractmethod
    async def insert_room(self, room: Room) -> Room: ...

    @abstractmethod
    async def get_room(self, room_id: str) -> Room | None: ...

    @abstractmethod
    async def get_room_by_code(self, code: str) -> Room | None: ...

    @abstractmethod
    async def update_room(self, room_id: str, **changes: Any) -> Room | None: ...

    @abstractmethod
    async def delete_room(self, room_id: str) -> bool: ...

    # --- players ---

    @abstractmethod
    async def insert_player(self, player: Player) -> Player: ...

    @abstractmethod
    async def get_player(self, player_id: str) -> Player | None: ...

    @abstractmethod
    async def list_players(self, room_id: str) -> list[Player]:
        """Return a room's players ordered by join time (insertion order breaks ties)."""

    @abstractmethod
    async def update_player(self, player_id: str, **changes: Any) -> Player | None: ...

    # --- rounds ---

    @abstractmethod
    async def insert_round(self, round_: Round) -> Round: ...

    @abstractmethod
    async def get_round(self, round_id: str) -> Round | None: ...

    @abstractmethod
    async def get_round_by_number(self, room_id: str, round_number: int) -> Round | None: ...

    @abstractmethod
    async def update_round(self, round_id: str, **changes: Any) -> Round | None: ...
