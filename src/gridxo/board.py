"""Square N×N board model shared by sessions, the evaluator and the AI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

Mark = str  # "X" or "O"
Cell = Tuple[int, int]

EMPTY = " "
MARK_A: Mark = "X"
MARK_B: Mark = "O"

MIN_SIZE = 3
MAX_SIZE = 10


def other_mark(mark: Mark) -> Mark:
    return MARK_B if mark == MARK_A else MARK_A


def check_size(size: int) -> int:
    if not MIN_SIZE <= size <= MAX_SIZE:
        raise ValueError(f"Grid size must be between {MIN_SIZE} and {MAX_SIZE}")
    return size


@dataclass
class Board:
    size: int = 3
    # Server-internal: 'X', 'O', or ' ' (space) for empty
    cells: List[List[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        check_size(self.size)
        if not self.cells:
            self.cells = [[EMPTY] * self.size for _ in range(self.size)]
        elif len(self.cells) != self.size or any(
            len(row) != self.size for row in self.cells
        ):
            raise ValueError("Board rows must form a square grid")

    # ---- addressing ----

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.size and 0 <= col < self.size

    def get(self, row: int, col: int) -> str:
        return self.cells[row][col]

    def is_empty(self, row: int, col: int) -> bool:
        return self.in_bounds(row, col) and self.cells[row][col] == EMPTY

    def empty_cells(self) -> Iterator[Cell]:
        """Empty cells in row-major scan order."""
        for r, row in enumerate(self.cells):
            for c, value in enumerate(row):
                if value == EMPTY:
                    yield r, c

    def is_full(self) -> bool:
        return all(v != EMPTY for row in self.cells for v in row)

    # ---- mutation ----

    def place(self, row: int, col: int, mark: Mark) -> None:
        if not self.in_bounds(row, col):
            raise ValueError(f"Cell ({row}, {col}) is outside the board")
        if self.cells[row][col] != EMPTY:
            raise ValueError("Cell already occupied")
        self.cells[row][col] = mark

    def clear(self, row: int, col: int) -> None:
        self.cells[row][col] = EMPTY

    def clone(self) -> "Board":
        return Board(size=self.size, cells=[row.copy() for row in self.cells])

    def key(self) -> Tuple[str, ...]:
        """Hashable snapshot of the grid, used by the search cache."""
        return tuple("".join(row) for row in self.cells)

    # ---- wire format ----

    def to_rows(self) -> List[List[Optional[str]]]:
        return [
            [v if v in (MARK_A, MARK_B) else None for v in row] for row in self.cells
        ]

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Optional[str]]]) -> "Board":
        cells: List[List[str]] = []
        for row in rows:
            converted = []
            for value in row:
                if value in (None, "", EMPTY):
                    converted.append(EMPTY)
                elif value in (MARK_A, MARK_B):
                    converted.append(value)
                else:
                    raise ValueError(f"Unknown cell value {value!r}")
            cells.append(converted)
        return cls(size=len(cells), cells=cells)
