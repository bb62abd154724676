"""Error taxonomy shared by sessions, the coordinator and the remote client."""

from __future__ import annotations


class GameError(Exception):
    """Base class for recoverable game errors; ``code`` is sent on the wire."""

    code = "gameError"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.__class__.__doc__ or self.code)
        self.detail = str(self)


class InvalidMove(GameError):
    """Cell is occupied or outside the board."""

    code = "invalidMove"


class GameFinished(InvalidMove):
    """Game already finished."""

    code = "gameFinished"


class TurnViolation(GameError):
    """Move submitted out of turn."""

    code = "turnViolation"


class MatchmakingTimeout(GameError):
    """No opponent found before the matchmaking timeout."""

    code = "matchmakingTimeout"


class PeerDisconnected(GameError):
    """The opponent left the room."""

    code = "peerDisconnected"


class TransportUnavailable(GameError):
    """Channel to the coordinator cannot be established."""

    code = "transportUnavailable"
