"""Unit tests for the 3x3 board model."""

import itertools

import pytest

from syncxo.errors import IllegalMove
from syncxo.game import (
    EMPTY_BOARD,
    WINNING_LINES,
    Board,
    OutcomeKind,
    apply,
    is_full,
    is_terminal,
    winner,
)


def board_of(text: str) -> Board:
    return Board.from_cells("" if c == "." else c for c in text)


def test_empty_board_is_ongoing():
    outcome = is_terminal(EMPTY_BOARD)
    assert outcome.kind is OutcomeKind.NONE
    assert outcome.winner is None
    assert not is_full(EMPTY_BOARD)
    assert EMPTY_BOARD.empty_cells() == list(range(9))


def test_apply_returns_new_board():
    board = apply(EMPTY_BOARD, 4, "X")
    assert board.cells[4] == "X"
    assert EMPTY_BOARD.cells[4] == ""
    assert board.move_count() == 1


@pytest.mark.parametrize("index", [-1, 9, 42])
def test_off_board_index_rejected(index):
    with pytest.raises(IllegalMove):
        EMPTY_BOARD.apply(index, "X")


def test_occupied_cell_rejected():
    board = EMPTY_BOARD.apply(0, "X")
    with pytest.raises(IllegalMove):
        board.apply(0, "O")
    assert board.cells[0] == "X"


def test_unknown_symbol_rejected():
    with pytest.raises(IllegalMove):
        EMPTY_BOARD.apply(0, "Z")


def test_row_completion_wins():
    board = board_of("XX.OO....")
    assert winner(board) is None
    after = board.apply(2, "X")
    assert winner(after) == "X"
    assert is_terminal(after).kind is OutcomeKind.WIN


@pytest.mark.parametrize("line", WINNING_LINES)
def test_every_line_is_detected(line):
    board = EMPTY_BOARD
    for index in line:
        board = board.apply(index, "O")
    assert board.winner() == "O"


def test_two_in_a_row_is_not_a_win():
    for a, b, _ in WINNING_LINES:
        board = EMPTY_BOARD.apply(a, "X").apply(b, "X")
        assert board.winner() is None


def test_winner_only_after_completing_move():
    # Any single move yields a winner only when it closes a line of its symbol.
    board = board_of("XO.XO....")
    for index in board.empty_cells():
        for symbol in ("X", "O"):
            after = board.apply(index, symbol)
            completes = any(
                index in line and all(after.cells[i] == symbol for i in line)
                for line in WINNING_LINES
            )
            assert (after.winner() == symbol) == completes


def test_full_board_without_line_is_draw():
    board = board_of("XOXXOOOXX")
    assert board.is_full()
    outcome = board.is_terminal()
    assert outcome.kind is OutcomeKind.DRAW
    assert outcome.winner is None


def test_full_boards_are_win_or_draw_never_both():
    for cells in itertools.product("XO", repeat=9):
        if abs(cells.count("X") - cells.count("O")) > 1:
            continue
        board = Board(tuple(cells))
        outcome = board.is_terminal()
        assert outcome.kind in (OutcomeKind.WIN, OutcomeKind.DRAW)
        assert (outcome.winner is not None) == (outcome.kind is OutcomeKind.WIN)


def test_is_terminal_is_pure():
    board = board_of("XXXOO....")
    assert board.is_terminal() == board.is_terminal()
    assert board == board_of("XXXOO....")


def test_from_cells_normalizes_document_values():
    board = Board.from_cells(["x", None, " ", "O", "", "", "", "", ""])
    assert board.cells[:4] == ("X", "", "", "O")


def test_board_must_have_nine_cells():
    with pytest.raises(ValueError):
        Board(("",) * 8)
