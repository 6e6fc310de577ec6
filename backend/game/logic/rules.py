"""Centralized game rules shared by solo and multiplayer play."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator

# No I or O: they read as 1 and 0 when a code is shared aloud or on screen.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ"


class GameRules(BaseModel):
    """
    Configuration for room capacity, round size and scoring.

    All fields default to the standard party-game values.
    """

    model_config = ConfigDict(frozen=True)

    # --- Rooms ---
    min_players_to_start: int = 2
    max_players_per_room: int = 10
    room_code_length: int = 4
    room_code_alphabet: str = ROOM_CODE_ALPHABET
    max_room_code_attempts: int = 5

    # --- Players ---
    display_name_min_length: int = 2
    display_name_max_length: int = 20

    # --- Rounds and scoring ---
    cards_per_round: int = 5
    winning_score: int = 10

    @model_validator(mode="after")
    def _check_bounds(self) -> GameRules:
        if self.min_players_to_start < 2:  # noqa: PLR2004
            raise ValueError("min_players_to_start must be at least 2 (a picker and a guesser)")
        if self.max_players_per_room < self.min_players_to_start:
            raise ValueError("max_players_per_room must be >= min_players_to_start")
        if self.room_code_length < 1 or not self.room_code_alphabet:
            raise ValueError("room codes need a positive length and a non-empty alphabet")
        if self.max_room_code_attempts < 1:
            raise ValueError("max_room_code_attempts must be at least 1")
        if not 1 <= self.display_name_min_length <= self.display_name_max_length:
            raise ValueError("display name bounds must satisfy 1 <= min <= max")
        if self.cards_per_round < 1 or self.winning_score < 1:
            raise ValueError("cards_per_round and winning_score must be positive")
        return self


DEFAULT_RULES = GameRules()
