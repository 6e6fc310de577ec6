"""Per-client session: the state machine a player's client runs against the shared store.

The session keeps a local view of its room, the room's players and the
current round. Local actions go through the room manager and round
coordinator and are applied optimistically; the store's change
notifications are authoritative and overwrite whatever the session
believes. The three notification topics are consumed by independent tasks
with no ordering between them, so each handler reconciles only its own
slice of state and tolerates seeing its own writes echoed back.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from game.client.identity import FileIdentityStore, LocalIdentity, MemoryIdentityStore
from game.logic.deck import Deck
from game.logic.exceptions import GameRuleError
from game.logic.ranking import parse_ranking
from game.logic.rules import DEFAULT_RULES, GameRules
from game.rounds.coordinator import RoundCoordinator
from game.session.heartbeat import DEFAULT_HEARTBEAT_INTERVAL, Heartbeat
from game.session.presence import PresenceTracker
from lobby.rooms.exceptions import RoomError, RoomNotFoundError
from lobby.rooms.manager import RoomManager
from shared.dal.changes import ChangeEvent, ChangeKind, SubscriptionError, Topic
from shared.dal.errors import StoreError
from shared.dal.models import RoomStatus, RoundPhase
from shared.logging import bind_session, unbind_session

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence
    from typing import Any

    from game.client.identity import IdentityStore
    from game.client.settings import ClientSettings
    from game.logic.deck import Card
    from shared.dal.changes import Subscription
    from shared.dal.models import Player, RankingEntry, Room, Round
    from shared.dal.store import Store

logger = structlog.get_logger()

CONNECTION_LOST = "Connection lost"
STORE_UNAVAILABLE = "Could not reach the game server. Please try again."

_ACTION_ERRORS = (RoomError, GameRuleError, StoreError)


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ClientPhase(str, Enum):
    LANDING = "landing"
    CREATING = "creating"
    JOINING = "joining"
    LOBBY = "lobby"
    PICKING = "picking"
    GUESSING = "guessing"
    RESULTS = "results"
    GAME_OVER = "game_over"


class PlayerRole(str, Enum):
    PICKER = "picker"
    GUESSER = "guesser"
    SPECTATOR = "spectator"


class ActionResult(BaseModel, frozen=True):
    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ActionResult:
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> ActionResult:
        return cls(success=False, error=reason)


def role_for(round_: Round, player_id: str) -> PlayerRole:
    if round_.picker_id == player_id:
        return PlayerRole.PICKER
    if round_.guesser_id == player_id:
        return PlayerRole.GUESSER
    return PlayerRole.SPECTATOR


def _failure(action: str, exc: Exception) -> ActionResult:
    if isinstance(exc, StoreError):
        logger.error("store failure", action=action, exc_info=exc)
        return ActionResult.failed(STORE_UNAVAILABLE)
    logger.info("action rejected", action=action, reason=str(exc))
    return ActionResult.failed(str(exc))


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class RoomSubscription:
    """One subscription per topic for a room, each drained by its own task.

    A handler that raises is logged and the stream keeps going. If the
    channel itself fails, on_lost is called once per topic and that topic's
    task ends.
    """

    def __init__(
        self,
        store: Store,
        room_id: str,
        handlers: dict[Topic, ChangeHandler],
        on_lost: Callable[[str], None],
    ) -> None:
        self.room_id = room_id
        self._store = store
        self._handlers = handlers
        self._on_lost = on_lost
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task[None]] = []

    def open(self) -> None:
        for topic, handler in self._handlers.items():
            subscription = self._store.subscribe(topic, self.room_id)
            self._subscriptions.append(subscription)
            self._tasks.append(asyncio.create_task(self._drain(subscription, handler)))

    async def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._subscriptions.clear()
        self._tasks.clear()

    async def _drain(self, subscription: Subscription, handler: ChangeHandler) -> None:
        try:
            async for event in subscription:
                try:
                    await handler(event)
                except Exception:
                    logger.exception("failed to reconcile change", topic=event.topic, kind=event.kind)
        except SubscriptionError as exc:
            logger.warning("change subscription lost", topic=subscription.topic, reason=str(exc))
            self._on_lost(str(exc))


class ClientSession:
    """Everything one connected client knows and can do.

    Public attributes are the observable state (what a UI would render).
    Every action returns an ActionResult instead of raising for room, rule
    or store failures.
    """

    def __init__(
        self,
        store: Store,
        *,
        deck: Deck | None = None,
        rules: GameRules = DEFAULT_RULES,
        identity_store: IdentityStore | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._deck = deck or Deck.bundled()
        self._rules = rules
        self._rooms = RoomManager(store, rules, rng)
        self._rounds = RoundCoordinator(store, self._deck, rules, rng)
        self._presence = PresenceTracker(store, self._rooms)
        self._heartbeat = Heartbeat(self._presence, heartbeat_interval)
        self._identity = identity_store if identity_store is not None else MemoryIdentityStore()
        self._subscription: RoomSubscription | None = None
        self._teardown: asyncio.Task[None] | None = None
        self._highest_round_seen = 0

        self.connection_status = ConnectionStatus.DISCONNECTED
        self.connection_error: str | None = None
        self.phase = ClientPhase.LANDING
        self.player: Player | None = None
        self.room: Room | None = None
        self.players: list[Player] = []
        self.round: Round | None = None
        self.role: PlayerRole | None = None
        self.is_host = False
        self.selected_cards: list[Card] = []
        self.local_ranking: list[RankingEntry] = []

    @classmethod
    def from_settings(cls, store: Store, settings: ClientSettings, **kwargs: Any) -> ClientSession:
        deck = Deck.from_file(settings.deck_path) if settings.deck_path is not None else Deck.bundled()
        return cls(
            store,
            deck=deck,
            identity_store=FileIdentityStore(settings.identity_path),
            heartbeat_interval=settings.heartbeat_interval_seconds,
            **kwargs,
        )

    # --- observable helpers ---

    @property
    def player_id(self) -> str | None:
        return self.player.id if self.player is not None else None

    @property
    def connected_players(self) -> list[Player]:
        return [p for p in self.players if p.is_connected]

    @property
    def can_start_game(self) -> bool:
        return (
            self.is_host
            and self.room is not None
            and self.room.status is RoomStatus.LOBBY
            and len(self.connected_players) >= self._rules.min_players_to_start
        )

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat.running

    # --- room actions ---

    async def create_room(self, display_name: str) -> ActionResult:
        self.phase = ClientPhase.CREATING
        self.connection_status = ConnectionStatus.CONNECTING
        try:
            result = await self._rooms.create_room(display_name)
        except _ACTION_ERRORS as exc:
            self._back_to_landing()
            return _failure("create_room", exc)

        await self._enter_room(result.room, result.player, [result.player])
        return ActionResult.ok()

    async def join_room(
        self,
        code: str,
        display_name: str,
        existing_player_id: str | None = None,
    ) -> ActionResult:
        """Join by code, reusing the saved player id when it belongs to the same room."""
        if existing_player_id is None:
            saved = self._identity.load()
            if saved is not None and saved.room_code == code.strip().upper():
                existing_player_id = saved.player_id

        self.phase = ClientPhase.JOINING
        self.connection_status = ConnectionStatus.CONNECTING
        try:
            result = await self._rooms.join_room(code, display_name, existing_player_id)
        except RoomError as exc:
            if isinstance(exc, RoomNotFoundError):
                # The saved room is gone for good; stop trying to rejoin it.
                self._identity.clear()
            self._back_to_landing()
            return _failure("join_room", exc)
        except StoreError as exc:
            self._back_to_landing()
            return _failure("join_room", exc)

        await self._enter_room(result.room, result.player, result.players)
        return ActionResult.ok()

    async def attempt_reconnect(self) -> ActionResult:
        """Rejoin silently from the saved identity, if there is one."""
        identity = self._identity.load()
        if identity is None:
            return ActionResult.failed("No saved session to reconnect to")
        logger.info("attempting reconnect", player_id=identity.player_id, room_code=identity.room_code)
        return await self.join_room(identity.room_code, identity.display_name, identity.player_id)

    async def leave_room(self) -> ActionResult:
        """Leave the room and forget the saved identity.

        Local state is cleared even when the store write fails; the room
        will see the player as connected until they reconnect or are reaped.
        """
        if self.player is None or self.room is None:
            return ActionResult.ok()
        player_id, room_id = self.player.id, self.room.id

        await self._release()
        self._identity.clear()
        self._reset_state()
        try:
            outcome = await self._rooms.leave_room(player_id, room_id)
        except StoreError as exc:
            return _failure("leave_room", exc)
        logger.info("left room", player_id=player_id, room_id=room_id, outcome=outcome)
        return ActionResult.ok()

    async def reset(self) -> None:
        """Drop all local game state and return to the landing screen.

        Does not touch the store or the saved identity; use leave_room for that.
        """
        await self._release()
        self._reset_state()

    async def close(self) -> None:
        """Release the subscription and heartbeat, keeping the identity for a later reconnect."""
        await self._release()
        self.connection_status = ConnectionStatus.DISCONNECTED

    # --- round actions ---

    async def start_game(self) -> ActionResult:
        if self.room is None or self.player is None:
            return ActionResult.failed("Not in a room")
        if not self.is_host:
            return ActionResult.failed("Only the host can start the game")
        minimum = self._rules.min_players_to_start
        if len(self.connected_players) < minimum:
            return ActionResult.failed(f"Need at least {minimum} players")
        try:
            round_ = await self._rounds.start_game(self.room.id, actor_id=self.player.id)
        except _ACTION_ERRORS as exc:
            return _failure("start_game", exc)
        self._accept_round(round_)
        return ActionResult.ok()

    async def next_round(self) -> ActionResult:
        if self.room is None or self.player is None:
            return ActionResult.failed("Not in a room")
        if not self.is_host:
            return ActionResult.failed("Only the host can start the next round")
        if self.round is not None and self.round.phase is not RoundPhase.RESULTS:
            return ActionResult.failed("Finish the current round first")
        try:
            round_ = await self._rounds.next_round(self.room.id, actor_id=self.player.id)
        except _ACTION_ERRORS as exc:
            return _failure("next_round", exc)
        self._accept_round(round_)
        return ActionResult.ok()

    async def submit_picking(self, ranking: Sequence[Any] | None = None) -> ActionResult:
        """Submit the picker's ranking (local_ranking when none is given)."""
        if self.round is None or self.player is None:
            return ActionResult.failed("No round in progress")
        if self.role is not PlayerRole.PICKER:
            return ActionResult.failed("Only the picker can submit the ranking")
        try:
            entries = parse_ranking(self.local_ranking if ranking is None else ranking)
            round_ = await self._rounds.submit_picker_ranking(self.round.id, entries, actor_id=self.player.id)
        except _ACTION_ERRORS as exc:
            return _failure("submit_picking", exc)
        self._accept_round(round_)
        return ActionResult.ok()

    async def update_guess(self, partial_ranking: Sequence[Any]) -> ActionResult:
        """Share the guesser's in-progress ranking with spectators."""
        if self.round is None or self.player is None:
            return ActionResult.failed("No round in progress")
        if self.role is not PlayerRole.GUESSER:
            return ActionResult.failed("Only the guesser can update the guess")
        try:
            entries = parse_ranking(partial_ranking)
            self.local_ranking = entries
            round_ = await self._rounds.update_current_guess(self.round.id, entries, actor_id=self.player.id)
        except _ACTION_ERRORS as exc:
            return _failure("update_guess", exc)
        self._accept_round(round_)
        return ActionResult.ok()

    async def submit_guess(self, guess: Sequence[Any] | None = None) -> ActionResult:
        """Finalize the guess (local_ranking when none is given) and score the round."""
        if self.round is None or self.room is None or self.player is None:
            return ActionResult.failed("No round in progress")
        if self.role is not PlayerRole.GUESSER:
            return ActionResult.failed("Only the guesser can submit the guess")
        round_id, room_id = self.round.id, self.room.id
        try:
            entries = parse_ranking(self.local_ranking if guess is None else guess)
            await self._rounds.submit_final_guess(
                round_id,
                room_id,
                entries,
                self.round.actual_ranking,
                actor_id=self.player.id,
            )
            scored = await self._store.get_round(round_id)
            room = await self._store.get_room(room_id)
        except _ACTION_ERRORS as exc:
            return _failure("submit_guess", exc)
        if room is not None:
            self._apply_room(room)
        if scored is not None:
            self._accept_round(scored)
        return ActionResult.ok()

    # --- reconciliation ---

    async def _on_player_change(self, event: ChangeEvent) -> None:
        """Any player change: re-read the whole list and recompute the host flag."""
        if self.room is None or event.room_id != self.room.id:
            return
        players = await self._store.list_players(event.room_id)
        self.players = players
        me = next((p for p in players if p.id == self.player_id), None)
        if me is not None:
            self.player = me
            self.is_host = me.is_host

    async def _on_room_change(self, event: ChangeEvent) -> None:
        if self.room is None or event.room_id != self.room.id:
            return
        if event.kind is ChangeKind.DELETE:
            logger.info("room deleted", room_id=event.room_id)
            self._identity.clear()
            self._reset_state()
            # Runs outside this handler: releasing cancels the task that is draining this event.
            self._teardown = asyncio.create_task(self._release())
            return
        self._apply_room(event.row)  # type: ignore[arg-type]

    async def _on_round_change(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.DELETE:
            return
        self._accept_round(event.row)  # type: ignore[arg-type]

    def _apply_room(self, room: Room) -> None:
        self.room = room
        if room.winner is not None:
            self.phase = ClientPhase.GAME_OVER
        elif room.status is RoomStatus.LOBBY and self.round is None:
            self.phase = ClientPhase.LOBBY

    def _accept_round(self, round_: Round) -> bool:
        """Adopt a round snapshot unless it is stale.

        Accepted when it is the room's current round, a round newer than any
        seen so far, or an update to the round already being tracked.
        """
        room_round = self.room.current_round if self.room is not None else 0
        is_current = round_.round_number == room_round
        is_newer = round_.round_number > self._highest_round_seen
        is_tracked = self.round is not None and round_.id == self.round.id
        if not (is_current or is_newer or is_tracked):
            logger.debug("ignoring stale round", round_id=round_.id, round_number=round_.round_number)
            return False

        if not is_tracked:
            self.selected_cards = self._deck.resolve(round_.card_ids)
            self.local_ranking = []
        self._highest_round_seen = max(self._highest_round_seen, round_.round_number)
        self.round = round_
        if self.player is not None:
            self.role = role_for(round_, self.player.id)
        if self.room is None or self.room.winner is None:
            self.phase = ClientPhase(round_.phase.value)
        return True

    def _on_subscription_lost(self, reason: str) -> None:
        if self.connection_status is not ConnectionStatus.ERROR:
            logger.warning("lost connection to room", reason=reason)
        self.connection_status = ConnectionStatus.ERROR
        self.connection_error = CONNECTION_LOST

    # --- resources ---

    async def _enter_room(self, room: Room, player: Player, players: list[Player]) -> None:
        await self._release()
        self._reset_state()
        self.room = room
        self.player = player
        self.players = players
        self.is_host = player.is_host
        try:
            self._identity.save(
                LocalIdentity(player_id=player.id, display_name=player.display_name, room_code=room.code),
            )
        except OSError:
            logger.warning("could not save identity, reconnect after restart will not work", exc_info=True)
        bind_session(player.id, room.id)

        self._subscription = RoomSubscription(
            self._store,
            room.id,
            {
                Topic.PLAYERS: self._on_player_change,
                Topic.ROOMS: self._on_room_change,
                Topic.ROUNDS: self._on_round_change,
            },
            self._on_subscription_lost,
        )
        self._subscription.open()
        self._heartbeat.start(player.id, room.id)
        self.connection_status = ConnectionStatus.CONNECTED

        if room.status is RoomStatus.FINISHED:
            self.phase = ClientPhase.GAME_OVER
        else:
            self.phase = ClientPhase.LOBBY
        if room.current_round > 0:
            try:
                current = await self._rounds.get_current_round(room.id)
            except StoreError:
                logger.exception("failed to load current round", room_id=room.id)
                current = None
            if current is not None:
                self._accept_round(current)
        logger.info("entered room", code=room.code, is_host=self.is_host, phase=self.phase)

    async def _release(self) -> None:
        teardown, self._teardown = self._teardown, None
        if teardown is not None and teardown is not asyncio.current_task():
            await teardown
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        await self._heartbeat.stop()

    def _reset_state(self) -> None:
        if self.player is not None:
            unbind_session()
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.connection_error = None
        self.phase = ClientPhase.LANDING
        self.player = None
        self.room = None
        self.players = []
        self.round = None
        self.role = None
        self.is_host = False
        self.selected_cards = []
        self.local_ranking = []
        self._highest_round_seen = 0

    def _back_to_landing(self) -> None:
        self.phase = ClientPhase.LANDING
        self.connection_status = ConnectionStatus.DISCONNECTED
