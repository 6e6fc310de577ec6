"""Tests for liveness writes, departures and the heartbeat task."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from game.session.heartbeat import Heartbeat
from game.session.presence import PresenceTracker
from lobby.rooms.manager import RoomManager
from lobby.rooms.models import LeaveOutcome
from shared.dal.errors import StoreError
from shared.dal.models import utcnow


@pytest.fixture
async def lobby(memory_store, rng):
    rooms = RoomManager(memory_store, rng=rng)
    created = await rooms.create_room("Alice")
    joined = await rooms.join_room(created.room.code, "Bob")
    return rooms, created.room, created.player, joined.player


class TestTouch:
    async def test_refreshes_player_and_room(self, memory_store, lobby):
        rooms, room, alice, _ = lobby
        presence = PresenceTracker(memory_store, rooms)
        await memory_store.update_player(alice.id, last_seen_at=utcnow() - timedelta(minutes=5))
        await memory_store.update_room(room.id, last_activity_at=utcnow() - timedelta(minutes=5))

        before = utcnow()
        await presence.touch(alice.id, room.id)

        assert (await memory_store.get_player(alice.id)).last_seen_at >= before
        assert (await memory_store.get_room(room.id)).last_activity_at >= before

    async def test_touch_for_vanished_room_is_harmless(self, memory_store, lobby):
        rooms, _, alice, _ = lobby
        presence = PresenceTracker(memory_store, rooms)

        await presence.touch(alice.id, "missing-room")


class TestDeparture:
    async def test_departure_is_idempotent(self, memory_store, lobby):
        rooms, room, alice, bob = lobby
        presence = PresenceTracker(memory_store, rooms)

        first = await presence.handle_departure(bob.id, room.id)
        second = await presence.handle_departure(bob.id, room.id)

        assert first is LeaveOutcome.PLAYER_DISCONNECTED
        assert second is LeaveOutcome.PLAYER_DISCONNECTED
        players = await memory_store.list_players(room.id)
        assert [p.id for p in players if p.is_connected] == [alice.id]
        assert [p.id for p in players if p.is_host] == [alice.id]

    async def test_last_departure_deletes_room(self, memory_store, lobby):
        rooms, room, alice, bob = lobby
        presence = PresenceTracker(memory_store, rooms)

        await presence.handle_departure(bob.id, room.id)
        outcome = await presence.handle_departure(alice.id, room.id)

        assert outcome is LeaveOutcome.ROOM_DELETED
        assert await memory_store.get_room_by_code(room.code) is None


class TestStalePlayers:
    async def test_lists_connected_players_not_seen_recently(self, memory_store, lobby):
        rooms, room, alice, bob = lobby
        presence = PresenceTracker(memory_store, rooms)
        await memory_store.update_player(bob.id, last_seen_at=utcnow() - timedelta(minutes=10))

        stale = await presence.stale_players(room.id, timedelta(minutes=2))

        assert [p.id for p in stale] == [bob.id]
        assert alice.id not in {p.id for p in stale}

    async def test_disconnected_players_are_not_stale(self, memory_store, lobby):
        rooms, room, _, bob = lobby
        presence = PresenceTracker(memory_store, rooms)
        await memory_store.update_player(bob.id, is_connected=False, last_seen_at=utcnow() - timedelta(hours=1))

        assert await presence.stale_players(room.id, timedelta(minutes=2)) == []


class TestHeartbeat:
    async def test_touches_on_every_interval(self):
        presence = AsyncMock(spec=PresenceTracker)
        heartbeat = Heartbeat(presence, interval=0.01)

        heartbeat.start("p1", "r1")
        await asyncio.sleep(0.05)
        await heartbeat.stop()

        assert presence.touch.await_count >= 2
        presence.touch.assert_awaited_with("p1", "r1")
        assert not heartbeat.running

    async def test_restart_replaces_previous_task(self):
        presence = AsyncMock(spec=PresenceTracker)
        heartbeat = Heartbeat(presence, interval=0.01)

        heartbeat.start("p1", "old-room")
        heartbeat.start("p1", "new-room")
        await asyncio.sleep(0.05)
        await heartbeat.stop()

        rooms_touched = {call.args[1] for call in presence.touch.await_args_list}
        assert rooms_touched == {"new-room"}

    async def test_store_failure_does_not_stop_the_loop(self):
        presence = AsyncMock(spec=PresenceTracker)
        failures = [StoreError("down")]

        async def touch(*_args):
            if failures:
                raise failures.pop()

        presence.touch.side_effect = touch
        heartbeat = Heartbeat(presence, interval=0.01)

        heartbeat.start("p1", "r1")
        await asyncio.sleep(0.05)

        assert heartbeat.running
        await heartbeat.stop()
        assert presence.touch.await_count >= 2

    async def test_stop_without_start(self):
        heartbeat = Heartbeat(AsyncMock(spec=PresenceTracker))

        await heartbeat.stop()

        assert not heartbeat.running

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError, match="positive"):
            Heartbeat(AsyncMock(spec=PresenceTracker), interval=0)
