"""Win and draw detection for square boards of any supported size."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional, Tuple

from .board import MARK_A, MARK_B, Board, Cell, Mark

Line = Tuple[Cell, ...]


@lru_cache(maxsize=None)
def winning_lines(size: int) -> Tuple[Line, ...]:
    """Rows, then columns, then the main and anti diagonals."""
    lines: List[Line] = []
    for i in range(size):
        lines.append(tuple((i, j) for j in range(size)))
    for j in range(size):
        lines.append(tuple((i, j) for i in range(size)))
    lines.append(tuple((i, i) for i in range(size)))
    lines.append(tuple((i, size - 1 - i) for i in range(size)))
    return tuple(lines)


def winning_line(board: Board, mark: Mark) -> Optional[Line]:
    cells = board.cells
    for line in winning_lines(board.size):
        if all(cells[r][c] == mark for r, c in line):
            return line
    return None


def evaluate(board: Board, mark: Mark) -> bool:
    """True when ``mark`` owns a full row, column or diagonal.

    Only ``mark`` is inspected; the other mark may hold a line as well on
    boards that legal play cannot reach.
    """
    return winning_line(board, mark) is not None


def winner(board: Board) -> Optional[Mark]:
    for mark in (MARK_A, MARK_B):
        if evaluate(board, mark):
            return mark
    return None


def is_draw(board: Board) -> bool:
    return board.is_full() and winner(board) is None


def is_dead(board: Board) -> bool:
    """True when no line can still be completed by either mark."""
    cells = board.cells
    for line in winning_lines(board.size):
        values = {cells[r][c] for r, c in line}
        if not (MARK_A in values and MARK_B in values):
            return False
    return True
