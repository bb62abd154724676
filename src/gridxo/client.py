"""Client half of the matchmaking protocol with optimistic local play."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from . import protocol
from .board import Board, Mark
from .errors import (
    GameError,
    InvalidMove,
    MatchmakingTimeout,
    PeerDisconnected,
    TransportUnavailable,
)
from .matchmaking import ClientState
from .scheduling import Scheduler, ThreadingScheduler, TimerHandle
from .session import GameMode, GameStatus, Session

logger = logging.getLogger(__name__)

NoticeListener = Callable[[str, str, str], None]


class Transport(Protocol):
    """Reliable ordered channel to the coordinator."""

    def send(self, message: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class ConnectionContext:
    """Owns the one transport handle a process uses to reach the coordinator.

    ``open`` builds it through ``factory`` on first use and ``close`` tears it
    down. Failures to connect surface as ``TransportUnavailable``.
    """

    def __init__(self, factory: Callable[[], Transport]) -> None:
        self._factory = factory
        self._transport: Optional[Transport] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            raise TransportUnavailable("Not connected to the matchmaking service")
        return self._transport

    def open(self) -> Transport:
        if self._transport is None:
            try:
                self._transport = self._factory()
            except OSError as exc:
                raise TransportUnavailable(str(exc)) from exc
            logger.info("Connected to the matchmaking service")
        return self._transport

    def close(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            logger.info("Disconnected from the matchmaking service")

    def __enter__(self) -> "ConnectionContext":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MatchmakingClient:
    """Drives one player's remote game.

    Moves are applied to ``local`` straight away and sent to the
    coordinator. ``authoritative`` mirrors what the coordinator broadcasts;
    every authoritative message is copied onto ``local`` as well, and a
    rejected move rolls ``local`` back to the authoritative copy.
    """

    def __init__(
        self,
        connection: ConnectionContext,
        grid_size: int = 3,
        scheduler: Optional[Scheduler] = None,
        disconnect_grace: float = 3.0,
        on_notice: Optional[NoticeListener] = None,
        on_return_to_config: Optional[Callable[[], None]] = None,
    ) -> None:
        self.connection = connection
        self.grid_size = grid_size
        self.scheduler = scheduler or ThreadingScheduler()
        self.disconnect_grace = disconnect_grace
        self.on_notice = on_notice
        self.on_return_to_config = on_return_to_config

        self.client_id: Optional[str] = None
        self.state = ClientState.IDLE
        self.local: Optional[Session] = None
        self.authoritative: Optional[Session] = None
        self.last_error: Optional[GameError] = None
        self._grace_timer: Optional[TimerHandle] = None

    # ---- commands ----

    def find_match(self) -> None:
        transport = self.connection.transport
        if self.state is ClientState.WAITING:
            return
        self._drop_game()
        self.last_error = None
        self.state = ClientState.WAITING
        transport.send(protocol.message(protocol.FIND_MATCH, gridSize=self.grid_size))

    def cancel_matchmaking(self) -> None:
        """Stop waiting for an opponent; safe to repeat."""
        if self.state is ClientState.WAITING and self.connection.is_open:
            cancel = protocol.message(protocol.CANCEL_MATCHMAKING)
            self.connection.transport.send(cancel)
        if self.state is not ClientState.MATCHED:
            self.state = ClientState.IDLE

    def make_move(self, row: int, col: int) -> Mark:
        """Apply a move optimistically and propose it to the coordinator."""
        local = self.local
        if local is None:
            raise InvalidMove("No game in progress")
        if not local.peer_connected:
            raise PeerDisconnected()
        transport = self.connection.transport
        mark = local.apply_move(row, col, local.local_mark)
        transport.send(
            protocol.message(
                protocol.MAKE_MOVE,
                roomId=local.room_id,
                row=row,
                col=col,
                board=local.board.to_rows(),
            )
        )
        if local.is_over:
            transport.send(
                protocol.message(
                    protocol.GAME_END,
                    roomId=local.room_id,
                    status=local.status.value,
                    winner=local.winner,
                )
            )
        return mark

    def return_to_config(self) -> None:
        """Abandon matchmaking or the current game and go back to settings."""
        if self.state is ClientState.WAITING:
            self.cancel_matchmaking()
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None
        self._drop_game()
        self.state = ClientState.IDLE
        if self.on_return_to_config is not None:
            self.on_return_to_config()

    # ---- incoming ----

    def handle(self, frame: Dict[str, Any]) -> None:
        """Apply one frame received from the coordinator."""
        try:
            envelope = protocol.Envelope.model_validate(frame)
        except ValidationError:
            logger.warning("Ignoring malformed frame %r", frame)
            return
        handler = self._handlers().get(envelope.event)
        if handler is None:
            logger.warning("Ignoring unknown event %s", envelope.event)
            return
        handler(envelope.data)

    def _handlers(self) -> Dict[str, Callable[[Dict[str, Any]], None]]:
        return {
            protocol.CONNECTED: self._on_connected,
            protocol.WAITING: self._on_waiting,
            protocol.MATCH_FOUND: self._on_match_found,
            protocol.NO_MATCH_FOUND: self._on_no_match_found,
            protocol.MOVE_MADE: self._on_move_made,
            protocol.MOVE_REJECTED: self._on_move_rejected,
            protocol.GAME_OVER: self._on_game_over,
            protocol.OPPONENT_DISCONNECTED: self._on_opponent_disconnected,
            protocol.ERROR: self._on_error,
        }

    def _on_connected(self, data: Dict[str, Any]) -> None:
        self.client_id = data["clientId"]

    def _on_waiting(self, data: Dict[str, Any]) -> None:
        # Stale confirmation of a request that was already cancelled
        if self.state is not ClientState.WAITING:
            return
        self._notice(
            "info",
            "Waiting for opponent...",
            "Looking for another player to join the game.",
        )

    def _on_no_match_found(self, data: Dict[str, Any]) -> None:
        if self.state is not ClientState.WAITING:
            return
        self.state = ClientState.TIMED_OUT
        self.last_error = MatchmakingTimeout()
        self._notice(
            "error", "No opponent found", "No players are available at the moment."
        )

    def _on_match_found(self, data: Dict[str, Any]) -> None:
        # Crossed a cancel on the wire; the coordinator drops the room
        if self.state is not ClientState.WAITING:
            logger.info("Ignoring match %s after leaving the queue", data.get("roomId"))
            return
        players = list(data["players"])
        if self.client_id not in players:
            logger.error("Match %s does not include this client", data.get("roomId"))
            return
        local_mark = protocol.seat_mark(players.index(self.client_id))
        grid_size = int(data.get("gridSize", self.grid_size))
        self.local = self._new_session(data["roomId"], local_mark, grid_size)
        self.authoritative = self._new_session(data["roomId"], local_mark, grid_size)
        self.local.on_game_end(self._on_local_game_end)
        self.state = ClientState.MATCHED
        whose = "Your" if local_mark == protocol.seat_mark(0) else "Opponent's"
        self._notice(
            "success",
            "Opponent found!",
            f"You are playing as {local_mark}. {whose} turn.",
        )

    def _on_move_made(self, data: Dict[str, Any]) -> None:
        if self.authoritative is None:
            return
        status = data.get("status", GameStatus.PLAYING.value)
        self.authoritative.reconcile(
            data["board"], data.get("nextPlayer"), status, data.get("winner")
        )
        self._sync_local()

    def _on_move_rejected(self, data: Dict[str, Any]) -> None:
        self._sync_local()
        self._notice("error", "Invalid move", data.get("detail", ""))

    def _on_game_over(self, data: Dict[str, Any]) -> None:
        if self.authoritative is None:
            return
        self.authoritative.reconcile(
            self.authoritative.board, None, data["status"], data.get("winner")
        )
        self._sync_local()
        self.state = ClientState.IDLE

    def _on_opponent_disconnected(self, data: Dict[str, Any]) -> None:
        for session in (self.local, self.authoritative):
            if session is not None:
                session.peer_connected = False
        self.last_error = PeerDisconnected()
        self._notice(
            "error", "Opponent disconnected", "Your opponent has left the game."
        )
        if self._grace_timer is None:
            handle = self.scheduler.call_later(
                self.disconnect_grace, self.return_to_config
            )
            if self.state is ClientState.MATCHED:
                self._grace_timer = handle

    def _on_error(self, data: Dict[str, Any]) -> None:
        logger.warning("Coordinator error %s: %s", data.get("code"), data.get("detail"))
        self._notice("error", "Matchmaking error", data.get("detail", ""))

    # ---- helpers ----

    def _new_session(self, room_id: str, local_mark: Mark, grid_size: int) -> Session:
        return Session(
            board=Board(size=grid_size),
            mode=GameMode.REMOTE,
            room_id=room_id,
            local_mark=local_mark,
            peer_connected=True,
        )

    def _sync_local(self) -> None:
        auth = self.authoritative
        if auth is None or self.local is None:
            return
        self.local.reconcile(auth.board, auth.current_mark, auth.status, auth.winner)

    def _on_local_game_end(self, session: Session) -> None:
        if session.status is GameStatus.WON:
            won = session.winner == session.local_mark
            outcome = "You won!" if won else "You lost."
        else:
            outcome = "It's a draw!"
        self._notice("info", "Game over", outcome)

    def _drop_game(self) -> None:
        self.local = None
        self.authoritative = None

    def _notice(self, level: str, title: str, description: str) -> None:
        logger.debug("%s: %s %s", level, title, description)
        if self.on_notice is not None:
            self.on_notice(level, title, description)
