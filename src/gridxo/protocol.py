"""Matchmaking protocol: event names, frame envelope and payload models.

Every frame is a JSON object ``{"event": <name>, "data": <object>}``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .board import MARK_A, MARK_B, MAX_SIZE, MIN_SIZE

# client -> coordinator
FIND_MATCH = "findMatch"
CANCEL_MATCHMAKING = "cancelMatchmaking"
MAKE_MOVE = "makeMove"
GAME_END = "gameEnd"

# coordinator -> client
CONNECTED = "connected"
WAITING = "waiting"
MATCH_FOUND = "matchFound"
NO_MATCH_FOUND = "noMatchFound"
MOVE_MADE = "moveMade"
MOVE_REJECTED = "moveRejected"
GAME_OVER = "gameOver"
OPPONENT_DISCONNECTED = "opponentDisconnected"
ERROR = "error"


class Envelope(BaseModel):
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def default_empty_data(cls, value: Any) -> Any:
        return {} if value is None else value


class FindMatchPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grid_size: int = Field(default=3, alias="gridSize", ge=MIN_SIZE, le=MAX_SIZE)


class MakeMovePayload(BaseModel):
    """Proposed move; ``board`` is advisory and never trusted."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    row: int = Field(ge=0, lt=MAX_SIZE)
    col: int = Field(ge=0, lt=MAX_SIZE)
    board: Optional[List[List[Optional[str]]]] = None


class GameEndPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(default=None, alias="roomId")
    status: Literal["won", "draw"]
    winner: Optional[Literal["X", "O"]] = None


def message(event: str, **data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


def seat_mark(index: int) -> str:
    """Seat 0 plays first."""
    return MARK_A if index == 0 else MARK_B
