"""Row models for the rooms, players and rounds collections."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field

RowT = TypeVar("RowT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return str(uuid4())


def apply_changes(row: RowT, changes: dict[str, Any]) -> RowT:
    """Return a validated copy of row with changes applied.

    Rejects unknown fields and attempts to rewrite the primary key.
    """
    model = type(row)
    unknown = set(changes) - set(model.model_fields)
    if unknown:
        raise ValueError(f"Unknown {model.__name__} fields: {', '.join(sorted(unknown))}")
    if "id" in changes:
        raise ValueError(f"{model.__name__}.id cannot be changed")
    return model.model_validate({**row.model_dump(), **changes})


class RoomStatus(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    FINISHED = "finished"


class RoundPhase(str, Enum):
    PICKING = "picking"
    GUESSING = "guessing"
    RESULTS = "results"


class Winner(str, Enum):
    PLAYERS = "players"
    GAME = "game"


class RankingEntry(BaseModel, frozen=True):
    """One card placed at a position (1 is the top of the ranking)."""

    id: str
    position: int


class RoundResult(BaseModel, frozen=True):
    """Comparison of one card's actual and guessed positions."""

    card_id: str
    actual_position: int
    guessed_position: int
    is_correct: bool


class Room(BaseModel, frozen=True):
    id: str = Field(default_factory=new_id)
    code: str
    host_player_id: str
    status: RoomStatus = RoomStatus.LOBBY
    player_score: int = 0
    game_score: int = 0
    current_round: int = 0
    winner: Winner | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)


class Player(BaseModel, frozen=True):
    id: str = Field(default_factory=new_id)
    room_id: str
    display_name: str
    is_host: bool = False
    is_connected: bool = True
    joined_at: datetime = Field(default_factory=utcnow)
    last_seen_at: datetime = Field(default_factory=utcnow)


class Round(BaseModel, frozen=True):
    """One picker/guesser cycle.

    current_guess is only meaningful while phase is GUESSING; results and
    final_guess are populated once the guesser finalizes.
    """

    id: str = Field(default_factory=new_id)
    room_id: str
    round_number: int
    picker_id: str | None = None
    guesser_id: str | None = None
    phase: RoundPhase = RoundPhase.PICKING
    card_ids: list[str] = Field(default_factory=list)
    actual_ranking: list[RankingEntry] | None = None
    current_guess: list[RankingEntry] | None = None
    final_guess: list[RankingEntry] | None = None
    results: list[RoundResult] | None = None
    player_round_score: int = 0
    game_round_score: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    submitted_at: datetime | None = None
