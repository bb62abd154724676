"""Computer opponent: exact minimax on small grids, rule-based play on large ones."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import logging
import math

from .board import Board, Cell, Mark, other_mark
from .evaluator import evaluate, is_dead

logger = logging.getLogger(__name__)

WIN_SCORE = 10
LOSS_SCORE = -10
DRAW_SCORE = 0

# Largest grid still searched exhaustively
EXACT_SEARCH_LIMIT = 4

# TT entry flags
EXACT, LOWER, UPPER = 0, 1, 2


@dataclass
class TTEntry:
    score: float
    flag: int


@dataclass
class ComputerPlayer:
    """Picks moves for ``mark``.

    Grids up to ``exact_limit`` are searched to the end of the game with
    scores +10 (win), -10 (loss) and 0 (draw) and no depth discount. Among
    equally scored moves the first one in row-major order is kept. The
    alpha-beta window, the transposition table and the dead-position check
    only skip branches that cannot beat the move already held, so the chosen
    move is the one a plain minimax would return.

    Larger grids use the fixed priority: win, block, center, corner, first
    empty cell.
    """

    mark: Mark
    exact_limit: int = EXACT_SEARCH_LIMIT
    _tt: Dict[Tuple[Tuple[str, ...], bool], TTEntry] = field(
        default_factory=dict, repr=False
    )

    @property
    def opponent(self) -> Mark:
        return other_mark(self.mark)

    # ---- public API ----

    def choose(self, board: Board) -> Optional[Cell]:
        """Return the move to play, or None when the board is full."""
        # Trial placements never touch the caller's board
        work = board.clone()
        if not any(True for _ in work.empty_cells()):
            return None
        if work.size <= self.exact_limit:
            move = self._exact(work)
        else:
            move = self._heuristic(work)
        logger.debug(
            "%s picks %s on %dx%d board", self.mark, move, work.size, work.size
        )
        return move

    def forget(self) -> None:
        """Drop the transposition table."""
        self._tt.clear()

    # ---- exact search ----

    def _exact(self, board: Board) -> Optional[Cell]:
        try:
            return self._search_root(board)
        finally:
            # The table only serves one search
            self.forget()

    def _search_root(self, board: Board) -> Optional[Cell]:
        best_score = -math.inf
        best_move: Optional[Cell] = None
        for row, col in list(board.empty_cells()):
            board.cells[row][col] = self.mark
            score = self._minimax(board, False, best_score, WIN_SCORE)
            board.clear(row, col)
            if score > best_score:
                best_score, best_move = score, (row, col)
            if best_score >= WIN_SCORE:
                break
        return best_move

    def _minimax(
        self, board: Board, maximizing: bool, alpha: float, beta: float
    ) -> float:
        if evaluate(board, self.mark):
            return WIN_SCORE
        if evaluate(board, self.opponent):
            return LOSS_SCORE
        if board.is_full() or is_dead(board):
            return DRAW_SCORE

        key = (board.key(), maximizing)
        hit = self._tt.get(key)
        if hit is not None:
            if hit.flag == EXACT:
                return hit.score
            if hit.flag == LOWER and hit.score >= beta:
                return hit.score
            if hit.flag == UPPER and hit.score <= alpha:
                return hit.score

        lo, hi = alpha, beta
        mark = self.mark if maximizing else self.opponent
        value = -math.inf if maximizing else math.inf
        for row, col in list(board.empty_cells()):
            board.cells[row][col] = mark
            score = self._minimax(board, not maximizing, lo, hi)
            board.clear(row, col)
            if maximizing:
                value = max(value, score)
                lo = max(lo, value)
            else:
                value = min(value, score)
                hi = min(hi, value)
            if lo >= hi:
                break

        if value <= alpha:
            flag = UPPER
        elif value >= beta:
            flag = LOWER
        else:
            flag = EXACT
        self._tt[key] = TTEntry(score=value, flag=flag)
        return value

    # ---- heuristic search ----

    def _finishing_cell(self, board: Board, mark: Mark) -> Optional[Cell]:
        # Later cells in scan order replace earlier ones
        found: Optional[Cell] = None
        for row, col in list(board.empty_cells()):
            board.cells[row][col] = mark
            if evaluate(board, mark):
                found = (row, col)
            board.clear(row, col)
        return found

    def _heuristic(self, board: Board) -> Optional[Cell]:
        win = self._finishing_cell(board, self.mark)
        if win is not None:
            return win
        block = self._finishing_cell(board, self.opponent)
        if block is not None:
            return block

        n = board.size
        center = n // 2
        if board.is_empty(center, center):
            return center, center
        for corner in ((0, 0), (0, n - 1), (n - 1, 0), (n - 1, n - 1)):
            if board.is_empty(*corner):
                return corner
        return next(board.empty_cells(), None)


def select_move(
    board: Board, mark: Mark, grid_size: Optional[int] = None
) -> Optional[Cell]:
    """One-shot move selection for ``mark``; see :class:`ComputerPlayer`."""
    if grid_size is not None and grid_size != board.size:
        raise ValueError("grid_size does not match the board")
    return ComputerPlayer(mark=mark).choose(board)
