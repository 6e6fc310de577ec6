"""Room lifecycle: create, join (or reconnect), and leave."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from game.logic.rules import DEFAULT_RULES, GameRules
from lobby.rooms.codes import generate_room_code, normalize_room_code
from lobby.rooms.exceptions import CreationExhaustedError, InvalidDisplayNameError, RoomFullError, RoomNotFoundError
from lobby.rooms.models import CreateRoomResult, JoinRoomResult, LeaveOutcome
from shared.dal.errors import CapacityViolationError, StoreError, UniqueViolationError
from shared.dal.models import Player, Room, new_id, utcnow

if TYPE_CHECKING:
    import random

    from shared.dal.store import Store

logger = structlog.get_logger()


class RoomManager:
    """Manages room rows and player membership in the shared store.

    Every method is a read-modify-write against the store with no
    transaction around it. Multi-write operations (host transfer) can be
    interrupted between writes; the next leave, join or reconciliation pass
    converges the state.
    """

    def __init__(
        self,
        store: Store,
        rules: GameRules = DEFAULT_RULES,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._rules = rules
        self._rng = rng

    @property
    def rules(self) -> GameRules:
        return self._rules

    def validate_display_name(self, display_name: str) -> str:
        """Return the trimmed name, or raise if its length is out of bounds."""
        name = display_name.strip()
        low, high = self._rules.display_name_min_length, self._rules.display_name_max_length
        if not low <= len(name) <= high:
            raise InvalidDisplayNameError(f"Name must be {low}-{high} characters")
        return name

    async def create_room(self, host_name: str) -> CreateRoomResult:
        """Create a lobby room with the caller as host and only connected player.

        Retries with a fresh code when the code is already taken, up to
        max_room_code_attempts times.
        """
        name = self.validate_display_name(host_name)
        attempts = self._rules.max_room_code_attempts

        for attempt in range(1, attempts + 1):
            code = generate_room_code(self._rules, self._rng)
            host_id = new_id()
            try:
                room = await self._store.insert_room(Room(code=code, host_player_id=host_id))
            except UniqueViolationError:
                logger.info("room code collision, retrying", code=code, attempt=attempt)
                continue

            try:
                host = await self._store.insert_player(
                    Player(id=host_id, room_id=room.id, display_name=name, is_host=True),
                )
            except StoreError:
                logger.exception("host player insert failed, removing room", room_id=room.id)
                await self._store.delete_room(room.id)
                raise

            logger.info("room created", room_id=room.id, code=code, host_id=host_id)
            return CreateRoomResult(room=room, player=host)

        raise CreationExhaustedError(attempts)

    async def join_room(
        self,
        code: str,
        display_name: str,
        existing_player_id: str | None = None,
    ) -> JoinRoomResult:
        """Join a room by code.

        When existing_player_id names a player already recorded in the room
        this is a reconnection: the row is flipped back to connected (and
        renamed) instead of inserting a new one.
        """
        normalized = normalize_room_code(code, self._rules)
        name = self.validate_display_name(display_name)

        room = await self._store.get_room_by_code(normalized)
        if room is None:
            raise RoomNotFoundError(normalized)

        players = await self._store.list_players(room.id)
        existing = None
        if existing_player_id is not None:
            existing = next((p for p in players if p.id == existing_player_id), None)

        capacity = self._rules.max_players_per_room
        others_connected = [p for p in players if p.is_connected and (existing is None or p.id != existing.id)]
        if len(others_connected) >= capacity:
            raise RoomFullError(capacity)

        if existing is not None:
            try:
                player = await self._store.update_player(
                    existing.id,
                    is_connected=True,
                    last_seen_at=utcnow(),
                    display_name=name,
                )
            except CapacityViolationError as exc:
                raise RoomFullError(capacity) from exc
            if player is None:
                raise RoomNotFoundError(normalized)
            players = [player if p.id == player.id else p for p in players]
            logger.info("player reconnected", room_id=room.id, player_id=player.id)
        else:
            try:
                player = await self._store.insert_player(Player(room_id=room.id, display_name=name))
            except CapacityViolationError as exc:
                raise RoomFullError(capacity) from exc
            players = [*players, player]
            logger.info("player joined", room_id=room.id, player_id=player.id, players=len(players))

        room = await self._store.update_room(room.id, last_activity_at=utcnow()) or room
        return JoinRoomResult(room=room, player=player, players=players, reconnected=existing is not None)

    async def leave_room(self, player_id: str, room_id: str) -> LeaveOutcome:
        """Mark a player disconnected, transferring host or deleting the room as needed.

        Idempotent: repeating the call for a player that already left changes
        nothing further (the row is no longer host, so no second transfer).
        """
        players = await self._store.list_players(room_id)
        leaving = next((p for p in players if p.id == player_id), None)
        remaining = [p for p in players if p.is_connected and p.id != player_id]

        if not remaining:
            deleted = await self._store.delete_room(room_id)
            logger.info("last connected player left", room_id=room_id, player_id=player_id, room_deleted=deleted)
            return LeaveOutcome.ROOM_DELETED

        if leaving is None:
            logger.warning("leave requested for player not in room", room_id=room_id, player_id=player_id)
            return LeaveOutcome.NOT_IN_ROOM

        await self._store.update_player(player_id, is_connected=False, is_host=False, last_seen_at=utcnow())
        logger.info("player left", room_id=room_id, player_id=player_id)

        if leaving.is_host:
            new_host = min(remaining, key=lambda p: p.joined_at)
            await self._store.update_player(new_host.id, is_host=True)
            await self._store.update_room(room_id, host_player_id=new_host.id)
            logger.info("host transferred", room_id=room_id, old_host_id=player_id, new_host_id=new_host.id)

        return LeaveOutcome.PLAYER_DISCONNECTED

    async def get_players(self, room_id: str) -> list[Player]:
        return await self._store.list_players(room_id)

    async def find_room(self, code: str) -> Room | None:
        return await self._store.get_room_by_code(normalize_room_code(code, self._rules))
