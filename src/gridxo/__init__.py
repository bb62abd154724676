"""GridXO package exposing the game engine, AI, matchmaking and the web service."""

from .ai import ComputerPlayer, select_move
from .board import Board
from .matchmaking import Coordinator
from .server import app, create_app
from .session import GameMode, GameStatus, Session

__all__ = [
    "Board",
    "ComputerPlayer",
    "Coordinator",
    "GameMode",
    "GameStatus",
    "Session",
    "app",
    "create_app",
    "select_move",
]
