"""Per-room change notifications for the rooms, players and rounds collections.

Each write a store performs is published as a ChangeEvent. Subscribers listen
to exactly one topic for one room and consume events from their own queue,
so there is no ordering relationship between topics: a player change and a
round change caused by the same action can arrive in either order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from shared.dal.models import Player, Room, Round

logger = structlog.get_logger()


class Topic(str, Enum):
    ROOMS = "rooms"
    PLAYERS = "players"
    ROUNDS = "rounds"


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """Snapshot of a row after (or, for deletes, before) a write."""

    topic: Topic
    kind: ChangeKind
    room_id: str
    row: Room | Player | Round


class SubscriptionError(Exception):
    """The notification channel behind a subscription was lost."""


@dataclass(frozen=True)
class _Terminal:
    reason: str | None = None  # None means a clean close


class Subscription:
    """Async iterator over the change events of one topic in one room.

    Iteration ends cleanly after close() and raises SubscriptionError after
    the feed fails the subscription.
    """

    def __init__(self, feed: ChangeFeed, topic: Topic, room_id: str) -> None:
        self.topic = topic
        self.room_id = room_id
        self._feed = feed
        self._queue: asyncio.Queue[ChangeEvent | _Terminal] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._terminate(_Terminal())

    def fail(self, reason: str) -> None:
        self._terminate(_Terminal(reason))

    def _terminate(self, terminal: _Terminal) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed.discard(self)
        self._queue.put_nowait(terminal)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if isinstance(item, _Terminal):
            # Leave the terminal marker in place so later reads end the same way.
            self._queue.put_nowait(item)
            if item.reason is not None:
                raise SubscriptionError(item.reason)
            raise StopAsyncIteration
        return item


class ChangeFeed:
    """Fan-out hub connecting store writes to room-scoped subscribers."""

    def __init__(self) -> None:
        self._subscriptions: dict[tuple[Topic, str], list[Subscription]] = {}

    def subscribe(self, topic: Topic, room_id: str) -> Subscription:
        subscription = Subscription(self, topic, room_id)
        self._subscriptions.setdefault((topic, room_id), []).append(subscription)
        return subscription

    def discard(self, subscription: Subscription) -> None:
        key = (subscription.topic, subscription.room_id)
        subscribers = self._subscriptions.get(key)
        if subscribers is None:
            return
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            del self._subscriptions[key]

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions.get((event.topic, event.room_id), [])):
            subscription.deliver(event)

    def subscriber_count(self, room_id: str) -> int:
        return sum(len(subs) for (_, rid), subs in self._subscriptions.items() if rid == room_id)

    def fail(self, room_id: str, reason: str = "subscription dropped") -> None:
        """Drop every subscription for a room, surfacing an error to its readers."""
        for (_, rid), subscribers in list(self._subscriptions.items()):
            if rid == room_id:
                for subscription in list(subscribers):
                    subscription.fail(reason)
        logger.warning("change subscriptions failed", room_id=room_id, reason=reason)

    def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                subscription.close()
