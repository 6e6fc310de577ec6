from __future__ import annotations

import contextlib
import json
from http import HTTPStatus
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from game.logic.rules import GameRules
from game.session.presence import PresenceTracker
from lobby.rooms.exceptions import InvalidRoomCodeError
from lobby.rooms.manager import RoomManager
from lobby.rooms.models import LeaveOutcome, RoomSummary
from lobby.server.settings import LobbyServerSettings
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.dal.errors import StoreError
from shared.db import Database, SqliteStore
from shared.logging import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request

    from shared.dal.store import Store

logger = structlog.get_logger()


class LeaveRoomRequest(BaseModel):
    """Body of the departure beacon. Browsers send it as text/plain, so it is parsed by hand."""

    model_config = ConfigDict(populate_by_name=True)

    player_id: str = Field(alias="playerId", min_length=1)
    room_id: str = Field(alias="roomId", min_length=1)


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def leave_room(request: Request) -> JSONResponse:
    """Out-of-band departure: the same logic as an explicit leave, safe to repeat."""
    presence: PresenceTracker = request.app.state.presence

    raw_body = await request.body()
    try:
        body = json.loads(raw_body) if raw_body.strip() else {}
        req = LeaveRoomRequest.model_validate(body)
    except (ValueError, ValidationError):
        return JSONResponse({"error": "Missing playerId or roomId"}, status_code=HTTPStatus.BAD_REQUEST)

    try:
        outcome = await presence.handle_departure(req.player_id, req.room_id)
    except StoreError:
        logger.exception("leave-room failed", player_id=req.player_id, room_id=req.room_id)
        return JSONResponse({"error": "Internal server error"}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    # A player who was never in the room leaves nothing behind to clean up.
    action = LeaveOutcome.PLAYER_DISCONNECTED if outcome is LeaveOutcome.NOT_IN_ROOM else outcome
    return JSONResponse({"success": True, "action": action.value})


async def room_summary(request: Request) -> JSONResponse:
    rooms: RoomManager = request.app.state.rooms
    code = request.path_params["code"]
    try:
        room = await rooms.find_room(code)
    except InvalidRoomCodeError as e:
        return JSONResponse({"error": str(e)}, status_code=HTTPStatus.NOT_FOUND)
    if room is None:
        return JSONResponse({"error": "Room not found"}, status_code=HTTPStatus.NOT_FOUND)

    players = await rooms.get_players(room.id)
    return JSONResponse(RoomSummary.from_rows(room, players).model_dump(mode="json"))


def create_app(
    settings: LobbyServerSettings | None = None,
    store: Store | None = None,
) -> Starlette:
    """Build the lobby app. Without a store, opens the SQLite database from settings."""
    if settings is None:  # pragma: no cover
        settings = LobbyServerSettings()

    db: Database | None = None
    if store is None:
        db = Database(settings.database_path, settings.max_players_per_room)
        db.connect()
        store = SqliteStore(db)

    rules = GameRules(max_players_per_room=settings.max_players_per_room)
    rooms = RoomManager(store, rules)
    presence = PresenceTracker(store, rooms)

    routes = [
        Route("/health", health, methods=["GET"], name="health"),
        Route("/api/leave-room", leave_room, methods=["POST"], name="leave_room"),
        Route("/rooms/{code}", room_summary, methods=["GET"], name="room_summary"),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        yield
        store.feed.close()
        if db is not None:
            db.close()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.rooms = rooms
    app.state.presence = presence

    logger.info("lobby server ready", database=settings.database_path if db is not None else None)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory for ASGI servers, e.g. `--factory lobby.server.app:get_app`."""
    settings = LobbyServerSettings()
    setup_logging(log_dir=settings.log_dir, file_prefix="lobby-")
    return create_app(settings=settings)
