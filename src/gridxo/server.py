"""FastAPI service: local/computer game API, matchmaking socket and health check."""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from . import protocol
from .board import MAX_SIZE
from .config import GameConfig, OpponentMode, Settings
from .errors import GameError
from .matchmaking import Coordinator
from .scheduling import Scheduler, ThreadingScheduler
from .session import Session

logger = logging.getLogger(__name__)


class NewGameRequest(GameConfig):
    """Request payload for starting a self-play or computer game."""

    @field_validator("opponent_mode")
    @classmethod
    def ensure_local_mode(cls, value: OpponentMode) -> OpponentMode:
        if value == "human":
            raise ValueError("Games against a human are matched over the /ws socket.")
        return value


class MoveRequest(BaseModel):
    """Request payload for submitting a move on an existing game."""

    row: int = Field(ge=0, lt=MAX_SIZE)
    col: int = Field(ge=0, lt=MAX_SIZE)


def _serialize_session(game_id: str, session: Session) -> Dict[str, object]:
    return {"id": game_id, **session.snapshot()}


def create_app(
    settings: Optional[Settings] = None, scheduler: Optional[Scheduler] = None
) -> FastAPI:
    """Build the application with its own session registry and coordinator."""

    settings = settings or Settings.from_env()
    scheduler = scheduler or ThreadingScheduler()
    coordinator = Coordinator(match_timeout=settings.match_timeout)
    sessions: Dict[str, Session] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await coordinator.close()
        for session in sessions.values():
            session.reset()
        sessions.clear()

    app = FastAPI(
        title="GridXO",
        description="N×N tic-tac-toe with a computer opponent and online matchmaking",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.sessions = sessions

    def _get_session(game_id: str) -> Session:
        try:
            return sessions[game_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Game not found") from exc

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
        return JSONResponse(
            status_code=400, content={"detail": exc.detail, "code": exc.code}
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/game")
    def create_game(request: NewGameRequest) -> Dict[str, object]:
        session = Session.create(
            request,
            computer_delay=settings.computer_move_delay,
            scheduler=scheduler,
        )
        game_id = uuid.uuid4().hex
        sessions[game_id] = session
        logger.info(
            "Created %s game %s on a %dx%d board",
            session.mode.value,
            game_id,
            request.grid_size,
            request.grid_size,
        )
        return _serialize_session(game_id, session)

    @app.get("/api/game/{game_id}")
    def get_game(game_id: str) -> Dict[str, object]:
        return _serialize_session(game_id, _get_session(game_id))

    @app.post("/api/game/{game_id}/move")
    def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
        session = _get_session(game_id)
        session.apply_move(request.row, request.col)
        return _serialize_session(game_id, session)

    @app.post("/api/game/{game_id}/reset")
    def reset_game(game_id: str) -> Dict[str, object]:
        session = _get_session(game_id)
        session.reset()
        return _serialize_session(game_id, session)

    @app.delete("/api/game/{game_id}")
    def delete_game(game_id: str) -> Dict[str, str]:
        session = _get_session(game_id)
        session.reset()
        sessions.pop(game_id, None)
        return {"deleted": game_id}

    @app.websocket("/ws")
    async def matchmaking_socket(websocket: WebSocket) -> None:
        await websocket.accept()

        async def send(message: Dict[str, Any]) -> None:
            try:
                await websocket.send_json(message)
            except WebSocketDisconnect as exc:
                raise ConnectionError("socket closed") from exc

        client_id = coordinator.register(send)
        await send(protocol.message(protocol.CONNECTED, clientId=client_id))

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    frame: Any = json.loads(text)
                except json.JSONDecodeError:
                    frame = None
                await coordinator.handle(client_id, frame)
        except WebSocketDisconnect:
            pass
        finally:
            await coordinator.disconnect(client_id)

    return app


app = create_app()
