"""Result models returned by the room manager."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from shared.dal.models import Player, Room, RoomStatus


class CreateRoomResult(BaseModel, frozen=True):
    room: Room
    player: Player


class JoinRoomResult(BaseModel, frozen=True):
    """Room snapshot, the joining player's row, and every player row in the room."""

    room: Room
    player: Player
    players: list[Player]
    reconnected: bool = False


class LeaveOutcome(str, Enum):
    ROOM_DELETED = "room_deleted"
    PLAYER_DISCONNECTED = "player_disconnected"
    NOT_IN_ROOM = "not_in_room"


class RoomSummary(BaseModel, frozen=True):
    """Public view of a room for lookups by code."""

    code: str
    status: RoomStatus
    connected_players: int
    current_round: int

    @classmethod
    def from_rows(cls, room: Room, players: list[Player]) -> RoomSummary:
        return cls(
            code=room.code,
            status=room.status,
            connected_players=sum(1 for p in players if p.is_connected),
            current_round=room.current_round,
        )
