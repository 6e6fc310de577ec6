"""Single-device game: one person ranks the cards, then recalls the ranking."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from game.logic.exceptions import InvalidPhaseError
from game.logic.ranking import compare_rankings, decide_winner, score_round, validate_ranking
from game.logic.rules import DEFAULT_RULES, GameRules

if TYPE_CHECKING:
    from game.logic.deck import Card, Deck
    from shared.dal.models import RankingEntry, RoundResult, Winner

logger = structlog.get_logger()


class SoloPhase(str, Enum):
    RANKING = "ranking"
    GUESSING = "guessing"
    RESULTS = "results"
    GAME_OVER = "game_over"


@dataclass
class SoloGame:
    """Local game state for solo mode.

    Lifecycle: created at game start, mutated once per phase transition,
    discarded by reset_game(), which also starts a fresh first round.
    """

    deck: Deck
    rules: GameRules = DEFAULT_RULES
    rng: random.Random = field(default_factory=random.Random)

    current_round: int = 0
    player_score: int = 0
    game_score: int = 0
    player_round_score: int = 0
    game_round_score: int = 0
    phase: SoloPhase = SoloPhase.RANKING
    selected_cards: list[Card] = field(default_factory=list)
    actual_ranking: list[RankingEntry] = field(default_factory=list)
    guessed_ranking: list[RankingEntry] = field(default_factory=list)
    results: list[RoundResult] = field(default_factory=list)
    winner: Winner | None = None

    @property
    def correct_count(self) -> int:
        return self.player_round_score

    @property
    def card_ids(self) -> list[str]:
        return [card.id for card in self.selected_cards]

    def start_round(self) -> None:
        """Deal a fresh set of cards and return to the ranking phase."""
        self.selected_cards = self.deck.sample(self.rules.cards_per_round, self.rng)
        self.actual_ranking = []
        self.guessed_ranking = []
        self.results = []
        self.player_round_score = 0
        self.game_round_score = 0
        self.current_round += 1
        self.phase = SoloPhase.RANKING

    def submit_ranking(self, ranking: list[RankingEntry]) -> None:
        self._require_phase(SoloPhase.RANKING, "submit a ranking")
        validate_ranking(ranking, self.card_ids)
        self.actual_ranking = list(ranking)
        self.phase = SoloPhase.GUESSING

    def submit_guess(self, guess: list[RankingEntry]) -> None:
        """Score the guess against the stored ranking and check for a winner."""
        self._require_phase(SoloPhase.GUESSING, "submit a guess")
        validate_ranking(guess, self.card_ids)

        self.guessed_ranking = list(guess)
        self.results = compare_rankings(self.actual_ranking, guess)
        score = score_round(self.results)
        self.player_round_score = score.player_round_score
        self.game_round_score = score.game_round_score
        self.player_score += score.player_round_score
        self.game_score += score.game_round_score

        self.winner = decide_winner(self.player_score, self.game_score, self.rules.winning_score)
        self.phase = SoloPhase.GAME_OVER if self.winner is not None else SoloPhase.RESULTS
        logger.debug(
            "solo round scored",
            round=self.current_round,
            correct=self.player_round_score,
            player_score=self.player_score,
            game_score=self.game_score,
            winner=self.winner,
        )

    def next_round(self) -> None:
        self._require_phase(SoloPhase.RESULTS, "start the next round")
        self.start_round()

    def reset_game(self) -> None:
        self.current_round = 0
        self.player_score = 0
        self.game_score = 0
        self.winner = None
        self.start_round()

    def _require_phase(self, phase: SoloPhase, action: str) -> None:
        if self.phase is not phase:
            raise InvalidPhaseError(f"Cannot {action} during the {self.phase.value} phase")
