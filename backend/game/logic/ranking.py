"""
Ranking comparison and scoring.

Everything here is pure and deterministic so any participant can recompute
a round's outcome from the two rankings alone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from game.logic.exceptions import InvalidRankingError
from shared.dal.models import RankingEntry, RoundResult, Winner

if TYPE_CHECKING:
    from collections.abc import Sequence

UNRANKED = -1  # guessed position for a card missing from the guess; never correct

_RANKING = TypeAdapter(list[RankingEntry])


class RoundScore(BaseModel, frozen=True):
    player_round_score: int
    game_round_score: int


def parse_ranking(value: Any) -> list[RankingEntry]:
    """Coerce a list of entries or {"id", "position"} dicts into RankingEntry rows.

    Checks shape only; completeness is validate_ranking's job.
    """
    try:
        return _RANKING.validate_python(value)
    except ValidationError as exc:
        raise InvalidRankingError("Malformed ranking: expected a list of {id, position} entries") from exc


def compare_rankings(actual: Sequence[RankingEntry], guessed: Sequence[RankingEntry]) -> list[RoundResult]:
    """Compare each card of the actual ranking with its position in the guess."""
    guessed_positions = {entry.id: entry.position for entry in guessed}
    results: list[RoundResult] = []
    for entry in actual:
        guessed_position = guessed_positions.get(entry.id, UNRANKED)
        results.append(
            RoundResult(
                card_id=entry.id,
                actual_position=entry.position,
                guessed_position=guessed_position,
                is_correct=guessed_position == entry.position,
            ),
        )
    return results


def calculate_score(results: Sequence[RoundResult]) -> int:
    """One point per card guessed at its exact position."""
    return sum(1 for r in results if r.is_correct)


def score_round(results: Sequence[RoundResult]) -> RoundScore:
    """Split a round's cards between the two sides: hits to players, misses to the game."""
    correct = calculate_score(results)
    return RoundScore(player_round_score=correct, game_round_score=len(results) - correct)


def decide_winner(player_score: int, game_score: int, winning_score: int) -> Winner | None:
    """Return the side whose cumulative score reached the threshold.

    Players are checked first, so they win if both sides cross together.
    """
    if player_score >= winning_score:
        return Winner.PLAYERS
    if game_score >= winning_score:
        return Winner.GAME
    return None


def validate_ranking(ranking: Sequence[RankingEntry], card_ids: Sequence[str]) -> None:
    """Check that ranking maps exactly the given cards onto positions 1..len(card_ids).

    Raises InvalidRankingError for missing, extra or repeated cards and for
    duplicate or out-of-range positions.
    """
    expected_positions = set(range(1, len(card_ids) + 1))
    ids = [entry.id for entry in ranking]
    positions = [entry.position for entry in ranking]

    if len(ranking) != len(card_ids):
        raise InvalidRankingError(f"Ranking must place all {len(card_ids)} cards, got {len(ranking)}")
    if len(set(ids)) != len(ids):
        raise InvalidRankingError("Ranking places the same card more than once")
    if set(ids) != set(card_ids):
        raise InvalidRankingError("Ranking contains cards that are not part of this round")
    if set(positions) != expected_positions:
        raise InvalidRankingError(f"Ranking positions must be exactly 1-{len(card_ids)} with no repeats")


def sort_by_position(ranking: Sequence[RankingEntry]) -> list[RankingEntry]:
    return sorted(ranking, key=lambda entry: entry.position)
