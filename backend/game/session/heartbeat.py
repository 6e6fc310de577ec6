"""Periodic liveness writes for one connected client."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from shared.dal.errors import StoreError

if TYPE_CHECKING:
    from game.session.presence import PresenceTracker

DEFAULT_HEARTBEAT_INTERVAL = 30.0  # seconds between liveness writes

logger = structlog.get_logger()


class Heartbeat:
    """Owns at most one background task touching a player's presence on an interval.

    start() replaces any task already running, so reconnecting never leaves
    a second timer behind.
    """

    def __init__(self, presence: PresenceTracker, interval: float = DEFAULT_HEARTBEAT_INTERVAL) -> None:
        if interval <= 0:
            raise ValueError("Heartbeat interval must be positive")
        self._presence = presence
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, player_id: str, room_id: str) -> None:
        self._cancel()
        self._task = asyncio.create_task(self._beat_loop(player_id, room_id))

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _beat_loop(self, player_id: str, room_id: str) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._presence.touch(player_id, room_id)
            except StoreError:
                # A missed beat only ages last_seen_at; keep going.
                logger.warning("heartbeat write failed", player_id=player_id, room_id=room_id, exc_info=True)
