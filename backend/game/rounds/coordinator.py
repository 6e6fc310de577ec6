"""Round lifecycle: role assignment, round creation, submissions and scoring.

A round moves picking -> guessing -> results and then stays there; the next
round is a new row. Room-level phases (lobby, finished) live on the room's
status instead.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from game.logic.exceptions import InvalidPhaseError, InvalidRankingError, NotAuthorizedError, NotEnoughPlayersError
from game.logic.exceptions import RoundNotFoundError
from game.logic.ranking import compare_rankings, decide_winner, parse_ranking, score_round, validate_ranking
from game.logic.rules import DEFAULT_RULES, GameRules
from shared.dal.errors import StoreError, UniqueViolationError
from shared.dal.models import RoomStatus, Round, RoundPhase, utcnow

if TYPE_CHECKING:
    from collections.abc import Sequence

    from game.logic.deck import Deck
    from game.logic.ranking import RoundScore
    from shared.dal.models import Player, Room
    from shared.dal.store import Store

logger = structlog.get_logger()


class RoleAssignment(BaseModel, frozen=True):
    picker_id: str
    guesser_id: str


def assign_roles(
    players: Sequence[Player],
    previous_picker_id: str | None = None,
    rng: random.Random | None = None,
) -> RoleAssignment:
    """Pick a random picker (not last round's, when possible) and a deterministic guesser.

    The guesser is the longest-tenured connected player other than the
    picker. Everyone else connected spectates.
    """
    connected = [p for p in players if p.is_connected]
    if len(connected) < 2:  # noqa: PLR2004
        raise NotEnoughPlayersError("Need at least 2 players to assign roles")

    eligible = [p for p in connected if p.id != previous_picker_id] if previous_picker_id else connected
    if not eligible:
        eligible = connected

    picker = (rng or random).choice(eligible)
    guesser = min((p for p in connected if p.id != picker.id), key=lambda p: p.joined_at)
    return RoleAssignment(picker_id=picker.id, guesser_id=guesser.id)


class RoundCoordinator:
    """Drives rounds against the shared store.

    Operations accept an optional actor_id. When given, it must hold the
    role the operation needs (picker, guesser or host) or NotAuthorizedError
    is raised; when omitted the caller is trusted to have checked.
    """

    def __init__(
        self,
        store: Store,
        deck: Deck,
        rules: GameRules = DEFAULT_RULES,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._deck = deck
        self._rules = rules
        self._rng = rng or random.Random()

    @property
    def rules(self) -> GameRules:
        return self._rules

    async def get_current_round(self, room_id: str) -> Round | None:
        room = await self._store.get_room(room_id)
        if room is None or room.current_round == 0:
            return None
        return await self._store.get_round_by_number(room_id, room.current_round)

    async def start_round(self, room_id: str, round_number: int, picker_id: str, guesser_id: str) -> Round:
        """Create round round_number, or return it unchanged if it already exists.

        The existing-row check narrows the window in which two callers can
        both insert; the store's unique (room, round_number) constraint
        closes it, and the loser gets the winner's row back.
        """
        existing = await self._store.get_round_by_number(room_id, round_number)
        if existing is not None:
            logger.info("round already exists, returning it", room_id=room_id, round_number=round_number)
            await self._point_room_at(existing)
            return existing

        card_ids = [card.id for card in self._deck.sample(self._rules.cards_per_round, self._rng)]
        try:
            round_ = await self._store.insert_round(
                Round(
                    room_id=room_id,
                    round_number=round_number,
                    picker_id=picker_id,
                    guesser_id=guesser_id,
                    card_ids=card_ids,
                ),
            )
        except UniqueViolationError:
            round_ = await self._store.get_round_by_number(room_id, round_number)
            if round_ is None:
                raise
            logger.info("lost round creation race, returning existing round", room_id=room_id, round_number=round_number)

        logger.info(
            "round started",
            room_id=room_id,
            round_number=round_number,
            picker_id=round_.picker_id,
            guesser_id=round_.guesser_id,
        )
        await self._point_room_at(round_)
        return round_

    async def _point_room_at(self, round_: Round) -> None:
        """Move the room to playing on this round unless it is already there (or past it)."""
        room = await self._store.get_room(round_.room_id)
        if room is None or room.current_round >= round_.round_number:
            return
        try:
            await self._store.update_room(
                round_.room_id,
                status=RoomStatus.PLAYING,
                current_round=round_.round_number,
                last_activity_at=utcnow(),
            )
        except StoreError:
            # The round exists; a retried start_round repairs the room pointer.
            logger.exception("failed to update room for new round", room_id=round_.room_id)

    async def start_game(self, room_id: str, *, actor_id: str | None = None) -> Round:
        """Assign first-round roles and start round 1."""
        room, connected = await self._load_room_for_new_round(room_id, actor_id, "start the game")
        if room.status is not RoomStatus.LOBBY:
            raise InvalidPhaseError("The game has already started")
        roles = assign_roles(connected, rng=self._rng)
        return await self.start_round(room_id, 1, roles.picker_id, roles.guesser_id)

    async def next_round(self, room_id: str, *, actor_id: str | None = None) -> Round:
        """Start the round after the room's current one, rotating the picker."""
        room, connected = await self._load_room_for_new_round(room_id, actor_id, "start the next round")
        if room.status is RoomStatus.FINISHED:
            raise InvalidPhaseError("The game is over")

        previous = await self._store.get_round_by_number(room_id, room.current_round)
        previous_picker_id = previous.picker_id if previous is not None else None
        roles = assign_roles(connected, previous_picker_id, rng=self._rng)
        return await self.start_round(room_id, room.current_round + 1, roles.picker_id, roles.guesser_id)

    async def _load_room_for_new_round(
        self,
        room_id: str,
        actor_id: str | None,
        action: str,
    ) -> tuple[Room, list[Player]]:
        room = await self._store.get_room(room_id)
        if room is None:
            raise RoundNotFoundError(f"Room '{room_id}' not found")
        players = await self._store.list_players(room_id)

        if actor_id is not None:
            actor = next((p for p in players if p.id == actor_id), None)
            is_host = room.host_player_id == actor_id or (actor is not None and actor.is_host)
            if not is_host:
                raise NotAuthorizedError(action=action, player_id=actor_id, required_role="host")

        connected = [p for p in players if p.is_connected]
        minimum = self._rules.min_players_to_start
        if len(connected) < minimum:
            raise NotEnoughPlayersError(f"Need at least {minimum} players")
        return room, connected

    async def submit_picker_ranking(
        self,
        round_id: str,
        ranking: Sequence[Any],
        *,
        actor_id: str | None = None,
    ) -> Round:
        """Record the picker's complete ranking and open the guessing phase."""
        round_ = await self._load_round(round_id)
        _require_role(round_.picker_id, actor_id, "submit the ranking", "picker")
        _require_phase(round_, RoundPhase.PICKING, "submit a ranking")

        entries = parse_ranking(ranking)
        validate_ranking(entries, round_.card_ids)

        updated = await self._store.update_round(round_id, actual_ranking=entries, phase=RoundPhase.GUESSING)
        if updated is None:
            raise RoundNotFoundError(f"Round '{round_id}' not found")
        logger.info("picker ranking submitted", room_id=round_.room_id, round_number=round_.round_number)
        return updated

    async def update_current_guess(
        self,
        round_id: str,
        partial_ranking: Sequence[Any],
        *,
        actor_id: str | None = None,
    ) -> Round:
        """Publish the guesser's work-in-progress ranking for spectators.

        Partial and non-bijective rankings are accepted; only the shape is checked.
        """
        round_ = await self._load_round(round_id)
        _require_role(round_.guesser_id, actor_id, "update the guess", "guesser")
        _require_phase(round_, RoundPhase.GUESSING, "update the guess")

        updated = await self._store.update_round(round_id, current_guess=parse_ranking(partial_ranking))
        if updated is None:
            raise RoundNotFoundError(f"Round '{round_id}' not found")
        return updated

    async def submit_final_guess(
        self,
        round_id: str,
        room_id: str,
        guess: Sequence[Any],
        actual_ranking: Sequence[Any] | None = None,
        *,
        actor_id: str | None = None,
    ) -> RoundScore:
        """Score the guess, close the round, and fold the result into the room totals.

        This is the only place a winner is declared. The round write and the
        room write are separate; if the second fails the round still shows
        its results and the error propagates to the caller.
        """
        round_ = await self._load_round(round_id)
        if round_.room_id != room_id:
            raise RoundNotFoundError(f"Round '{round_id}' does not belong to room '{room_id}'")
        _require_role(round_.guesser_id, actor_id, "submit the guess", "guesser")
        _require_phase(round_, RoundPhase.GUESSING, "submit a guess")

        actual = parse_ranking(actual_ranking) if actual_ranking is not None else round_.actual_ranking
        if not actual:
            raise InvalidRankingError("No ranking to compare against")
        entries = parse_ranking(guess)
        validate_ranking(entries, round_.card_ids)

        results = compare_rankings(actual, entries)
        score = score_round(results)
        await self._store.update_round(
            round_id,
            final_guess=entries,
            results=results,
            player_round_score=score.player_round_score,
            game_round_score=score.game_round_score,
            phase=RoundPhase.RESULTS,
            submitted_at=utcnow(),
        )

        room = await self._store.get_room(room_id)
        if room is None:
            raise RoundNotFoundError(f"Room '{room_id}' not found")
        player_score = room.player_score + score.player_round_score
        game_score = room.game_score + score.game_round_score
        winner = decide_winner(player_score, game_score, self._rules.winning_score)
        await self._store.update_room(
            room_id,
            player_score=player_score,
            game_score=game_score,
            winner=winner,
            status=RoomStatus.FINISHED if winner is not None else RoomStatus.PLAYING,
            last_activity_at=utcnow(),
        )

        logger.info(
            "round scored",
            room_id=room_id,
            round_number=round_.round_number,
            player_round_score=score.player_round_score,
            game_round_score=score.game_round_score,
            player_score=player_score,
            game_score=game_score,
            winner=winner,
        )
        return score

    async def _load_round(self, round_id: str) -> Round:
        round_ = await self._store.get_round(round_id)
        if round_ is None:
            raise RoundNotFoundError(f"Round '{round_id}' not found")
        return round_


def _require_role(role_holder_id: str | None, actor_id: str | None, action: str, role: str) -> None:
    if actor_id is not None and actor_id != role_holder_id:
        raise NotAuthorizedError(action=action, player_id=actor_id, required_role=role)


def _require_phase(round_: Round, phase: RoundPhase, action: str) -> None:
    if round_.phase is not phase:
        raise InvalidPhaseError(f"Cannot {action} during the {round_.phase.value} phase")
