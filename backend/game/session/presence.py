"""Player liveness: heartbeat writes, out-of-band departures, staleness queries."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from shared.dal.models import utcnow

if TYPE_CHECKING:
    from datetime import timedelta

    from lobby.rooms.manager import RoomManager
    from lobby.rooms.models import LeaveOutcome
    from shared.dal.models import Player
    from shared.dal.store import Store

logger = structlog.get_logger()


class PresenceTracker:
    """Records that players are still around and routes departures to the room manager.

    Nothing here evicts anyone. A player whose client vanished without
    signalling stays connected with an ageing last_seen_at until something
    external acts on stale_players().
    """

    def __init__(self, store: Store, rooms: RoomManager) -> None:
        self._store = store
        self._rooms = rooms

    async def touch(self, player_id: str, room_id: str) -> None:
        """Refresh the player's last_seen_at and the room's last_activity_at.

        The two writes are independent and issued together.
        """
        now = utcnow()
        await asyncio.gather(
            self._store.update_player(player_id, last_seen_at=now),
            self._store.update_room(room_id, last_activity_at=now),
        )

    async def handle_departure(self, player_id: str, room_id: str) -> LeaveOutcome:
        """Apply a fire-and-forget departure signal.

        Delivery may be duplicated, so this must be safe to repeat; leave_room is.
        """
        outcome = await self._rooms.leave_room(player_id, room_id)
        logger.info("departure signal handled", player_id=player_id, room_id=room_id, outcome=outcome)
        return outcome

    async def stale_players(self, room_id: str, max_age: timedelta) -> list[Player]:
        """Connected players who have not been seen within max_age."""
        cutoff = utcnow() - max_age
        players = await self._store.list_players(room_id)
        return [p for p in players if p.is_connected and p.last_seen_at < cutoff]
