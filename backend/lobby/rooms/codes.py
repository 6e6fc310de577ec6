"""Human-shareable room codes."""

from __future__ import annotations

import random

from game.logic.rules import DEFAULT_RULES, GameRules
from lobby.rooms.exceptions import InvalidRoomCodeError

_system_rng = random.SystemRandom()


def generate_room_code(rules: GameRules = DEFAULT_RULES, rng: random.Random | None = None) -> str:
    """Draw a random code from the reduced alphabet. Uniqueness is the store's job."""
    rng = rng or _system_rng
    return "".join(rng.choice(rules.room_code_alphabet) for _ in range(rules.room_code_length))


def normalize_room_code(code: str, rules: GameRules = DEFAULT_RULES) -> str:
    """Upper-case and trim a typed code, rejecting anything that could never have been generated."""
    normalized = code.strip().upper()
    if len(normalized) != rules.room_code_length or any(c not in rules.room_code_alphabet for c in normalized):
        raise InvalidRoomCodeError(f"Room codes are {rules.room_code_length} letters, e.g. ABCD")
    return normalized
