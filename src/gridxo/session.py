"""Authoritative per-game state machine used locally and by the coordinator."""

from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from .ai import ComputerPlayer
from .board import MARK_A, MARK_B, Board, Mark, other_mark
from .config import GameConfig
from .errors import GameFinished, InvalidMove, TurnViolation
from .evaluator import evaluate, winning_line
from .scheduling import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)


class GameStatus(str, Enum):
    PLAYING = "playing"
    WON = "won"
    DRAW = "draw"


class GameMode(str, Enum):
    LOCAL = "local"
    COMPUTER = "computer"
    REMOTE = "remote"


MODE_BY_OPPONENT: Dict[str, GameMode] = {
    "self": GameMode.LOCAL,
    "computer": GameMode.COMPUTER,
    "human": GameMode.REMOTE,
}

COMPUTER_MARK: Mark = MARK_B

EndListener = Callable[["Session"], None]


@dataclass
class Session:
    """One game: board, turn, status and end-of-game signalling.

    ``apply_move`` is the only regular transition. In computer mode a human
    move that hands the turn to the computer schedules exactly one computer
    move through ``scheduler``; the callback re-checks status and turn under
    the lock, so a reset or an interim end of game drops it. Listeners added
    with ``on_game_end`` fire once per game.
    """

    board: Board = field(default_factory=Board)
    mode: GameMode = GameMode.LOCAL
    current_mark: Mark = MARK_A
    status: GameStatus = GameStatus.PLAYING
    winner: Optional[Mark] = None
    # Remote mode only
    room_id: Optional[str] = None
    local_mark: Optional[Mark] = None
    peer_connected: bool = False
    # Computer mode only
    computer: Optional[ComputerPlayer] = None
    computer_delay: float = 0.5
    scheduler: Scheduler = field(default_factory=ThreadingScheduler, repr=False)

    move_log: List[Dict[str, object]] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _listeners: List[EndListener] = field(default_factory=list, repr=False)
    _end_notified: bool = field(default=False, repr=False)
    _computer_pending: bool = field(default=False, repr=False)
    _timer: Optional[TimerHandle] = field(default=None, repr=False)
    _generation: int = field(default=0, repr=False)

    def __post_init__(self) -> None:
        if self.mode is GameMode.COMPUTER and self.computer is None:
            self.computer = ComputerPlayer(mark=COMPUTER_MARK)

    @classmethod
    def create(cls, config: GameConfig, **kwargs: object) -> "Session":
        return cls(
            board=Board(size=config.grid_size),
            mode=MODE_BY_OPPONENT[config.opponent_mode],
            **kwargs,  # type: ignore[arg-type]
        )

    # ---- state ----

    @property
    def grid_size(self) -> int:
        return self.board.size

    @property
    def is_over(self) -> bool:
        return self.status is not GameStatus.PLAYING

    @property
    def computer_pending(self) -> bool:
        return self._computer_pending

    def on_game_end(self, listener: EndListener) -> None:
        self._listeners.append(listener)

    # ---- transitions ----

    def apply_move(
        self, row: int, col: int, acting_mark: Optional[Mark] = None
    ) -> Mark:
        """Place a mark and advance the game; returns the mark placed.

        Raises ``GameFinished``/``InvalidMove``/``TurnViolation`` without
        touching any state when the move is rejected.
        """
        with self.lock:
            mark = self._acting_mark(acting_mark)
            self._check_move(row, col, mark)
            self._place(row, col, mark)
            ended = self._claim_end()
            schedule = self._wants_computer_move()
            if schedule:
                self._computer_pending = True
            generation = self._generation

        if ended:
            self._notify_end()
        if schedule:
            self._schedule_computer(generation)
        return mark

    def reset(self) -> None:
        """Start over on an empty board of the same size."""
        with self.lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._computer_pending = False
            self.board = Board(size=self.board.size)
            if self.computer is not None:
                self.computer.forget()
            self.current_mark = MARK_A
            self.status = GameStatus.PLAYING
            self.winner = None
            self.move_log.clear()
            self._end_notified = False

    def reconcile(
        self,
        board: Union[Board, Sequence[Sequence[Optional[str]]]],
        current_mark: Optional[Mark],
        status: Union[GameStatus, str] = GameStatus.PLAYING,
        winner: Optional[Mark] = None,
    ) -> None:
        """Overwrite local state with an authoritative copy."""
        incoming = board.clone() if isinstance(board, Board) else Board.from_rows(board)
        if incoming.size != self.board.size:
            raise ValueError("Authoritative board has a different size")
        with self.lock:
            self.board = incoming
            self.status = GameStatus(status)
            self.winner = winner if self.status is GameStatus.WON else None
            if current_mark is not None:
                self.current_mark = current_mark
            if not self.is_over:
                self._end_notified = False
            ended = self._claim_end()
        if ended:
            self._notify_end()

    # ---- helpers ----

    def _acting_mark(self, acting_mark: Optional[Mark]) -> Mark:
        if self.mode is GameMode.LOCAL or (
            self.mode is GameMode.REMOTE and acting_mark is None
        ):
            return self.current_mark
        if self.mode is GameMode.COMPUTER and acting_mark is None:
            computer_mark = self.computer.mark if self.computer else COMPUTER_MARK
            return other_mark(computer_mark)
        return acting_mark  # type: ignore[return-value]

    def _check_move(self, row: int, col: int, mark: Mark) -> None:
        if self.is_over:
            raise GameFinished()
        if mark not in (MARK_A, MARK_B):
            raise InvalidMove(f"Unknown mark {mark!r}")
        if mark != self.current_mark:
            if self._computer_pending:
                raise TurnViolation("Computer is completing its move")
            raise TurnViolation(f"It is {self.current_mark}'s turn")
        if not self.board.in_bounds(row, col):
            raise InvalidMove(f"Cell ({row}, {col}) is outside the board")
        if not self.board.is_empty(row, col):
            raise InvalidMove("This cell is already occupied")

    def _place(self, row: int, col: int, mark: Mark) -> None:
        self.board.place(row, col, mark)
        self.move_log.append({"player": mark, "row": row, "col": col})
        if evaluate(self.board, mark):
            self.status = GameStatus.WON
            self.winner = mark
        elif self.board.is_full():
            self.status = GameStatus.DRAW
        else:
            self.current_mark = other_mark(mark)

    def _claim_end(self) -> bool:
        if self.is_over and not self._end_notified:
            self._end_notified = True
            return True
        return False

    def _notify_end(self) -> None:
        logger.info(
            "Game over on %dx%d board: status=%s winner=%s",
            self.board.size,
            self.board.size,
            self.status.value,
            self.winner,
        )
        for listener in list(self._listeners):
            listener(self)

    def _wants_computer_move(self) -> bool:
        return (
            self.mode is GameMode.COMPUTER
            and self.computer is not None
            and not self.is_over
            and not self._computer_pending
            and self.current_mark == self.computer.mark
        )

    def _schedule_computer(self, generation: int) -> None:
        handle = self.scheduler.call_later(
            self.computer_delay, functools.partial(self._run_computer_turn, generation)
        )
        with self.lock:
            if self._computer_pending and generation == self._generation:
                self._timer = handle

    def _run_computer_turn(self, generation: int) -> None:
        ended = False
        with self.lock:
            if generation != self._generation:
                return
            self._computer_pending = False
            self._timer = None
            computer = self.computer
            if computer is None or self.is_over or self.current_mark != computer.mark:
                return
            move = computer.choose(self.board)
            if move is None:
                return
            self._place(move[0], move[1], computer.mark)
            ended = self._claim_end()
        if ended:
            self._notify_end()

    # ---- serialization ----

    def snapshot(self) -> Dict[str, object]:
        with self.lock:
            line = winning_line(self.board, self.winner) if self.winner else None
            state: Dict[str, object] = {
                "gridSize": self.board.size,
                "mode": self.mode.value,
                "board": self.board.to_rows(),
                "currentPlayer": self.current_mark,
                "status": self.status.value,
                "winner": self.winner,
                "winningLine": [list(cell) for cell in line] if line else None,
                "moveLog": list(self.move_log),
                "computerPending": self._computer_pending,
            }
            if self.mode is GameMode.REMOTE:
                state["roomId"] = self.room_id
                state["localMark"] = self.local_mark
                state["peerConnected"] = self.peer_connected
            if self.move_log:
                state["lastMove"] = self.move_log[-1]
            return state
