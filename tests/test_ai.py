"""Tests for the computer opponent."""

from conftest import board_from
from gridxo.ai import ComputerPlayer, select_move
from gridxo.board import Board, other_mark
from gridxo.evaluator import evaluate


def _immediate_wins(board, mark):
    wins = []
    for row, col in list(board.empty_cells()):
        board.cells[row][col] = mark
        if evaluate(board, mark):
            wins.append((row, col))
        board.clear(row, col)
    return wins


def test_exact_search_takes_immediate_win():
    board = board_from("XX.", "OO.", "...")
    assert select_move(board, "X", 3) == (0, 2)


def test_exact_search_avoids_forkable_corner():
    board = board_from("X..", ".O.", "..X")
    # Either free corner lets X fork; the first edge holds the draw
    assert select_move(board, "O", 3) == (0, 1)


def test_exact_search_tie_break_is_first_in_scan_order():
    # Every opening on an empty 3x3 board scores a draw
    assert select_move(Board(size=3), "X", 3) == (0, 0)


def test_exact_search_on_four_by_four():
    board = board_from("XXX.", "OOO.", "XOXO", "OXOX")
    assert select_move(board, "X", 4) == (0, 3)


def test_exact_search_never_hands_over_an_immediate_win():
    computer = ComputerPlayer(mark="O")

    def explore(board):
        for row, col in list(board.empty_cells()):
            board.cells[row][col] = "X"
            if not evaluate(board, "X") and not board.is_full():
                reply = computer.choose(board)
                assert reply is not None
                board.cells[reply[0]][reply[1]] = "O"
                assert not evaluate(board, "X")
                if not evaluate(board, "O"):
                    assert _immediate_wins(board, "X") == [], board.cells
                    explore(board)
                board.clear(*reply)
            else:
                assert not evaluate(board, "X"), "computer lost a game"
            board.clear(row, col)

    explore(Board(size=3))


def test_heuristic_prefers_win_over_block():
    board = board_from(
        "XXXX.",
        "OOOO.",
        ".....",
        ".....",
        ".....",
    )
    assert select_move(board, "X", 5) == (0, 4)


def test_heuristic_blocks_opponent():
    board = board_from(
        "X....",
        "OOOO.",
        ".....",
        ".....",
        "X...X",
    )
    assert select_move(board, "X", 5) == (1, 4)


def test_heuristic_prefers_center_then_corners():
    assert select_move(Board(size=5), "O", 5) == (2, 2)
    board = board_from(".....", ".....", "..X..", ".....", ".....")
    assert select_move(board, "O", 5) == (0, 0)
    board = board_from("O....", ".....", "..X..", ".....", ".....")
    assert select_move(board, "X", 5) == (0, 4)


def test_heuristic_falls_back_to_first_empty_cell():
    board = board_from(
        "X...O",
        ".....",
        "..X..",
        ".....",
        "O...X",
    )
    assert select_move(board, "O", 5) == (0, 1)


def test_heuristic_keeps_last_winning_cell_in_scan_order():
    board = board_from(
        ".XXXX",
        "OOO..",
        "OOO..",
        ".O...",
        "XXXX.",
    )
    assert _immediate_wins(board, "X") == [(0, 0), (4, 4)]
    assert select_move(board, "X", 5) == (4, 4)


def test_selector_leaves_board_untouched():
    boards = (
        board_from("X..", ".O.", "..."),
        board_from("X....", ".O...", ".....", ".....", "....."),
    )
    for board in boards:
        before = board.key()
        select_move(board, "X")
        assert board.key() == before


def test_full_board_has_no_move():
    board = board_from("XOX", "XOO", "OXX")
    assert select_move(board, "X") is None
    assert ComputerPlayer(mark=other_mark("X")).choose(board) is None


def test_exact_search_releases_its_table():
    player = ComputerPlayer(mark="O")
    assert player.choose(board_from("X..", "...", "...")) is not None
    assert player._tt == {}
