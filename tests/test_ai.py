"""Tests for the minimax search opponent."""

import random

import pytest

from syncxo.ai import (
    Difficulty,
    SearchOpponent,
    best_move,
    random_move,
)
from syncxo.errors import NoLegalMove
from syncxo.game import EMPTY_BOARD, Board, OutcomeKind, other_symbol


def board_of(text: str) -> Board:
    return Board.from_cells("" if c == "." else c for c in text)


def play_out(first_symbol="X", opening=None):
    board = EMPTY_BOARD
    turn = first_symbol
    if opening is not None:
        board = board.apply(opening, turn)
        turn = other_symbol(turn)
    while not board.is_terminal().is_over:
        board = board.apply(best_move(board, turn, other_symbol(turn)), turn)
        turn = other_symbol(turn)
    return board


def test_ai_takes_immediate_win():
    board = board_of("XX.OO....")
    assert best_move(board, "X", "O") == 2


def test_ai_prefers_any_forced_win_by_lowest_index():
    # O wins at once on 5, but 2 (block, then the 2-4-6 diagonal) is also a
    # forced win, and scores carry no depth preference.
    board = board_of("XX.OO....")
    assert best_move(board, "O", "X") == 2


def test_ai_blocks_immediate_threat():
    board = board_of("XX..O....")
    assert best_move(board, "O", "X") == 2


def test_ai_avoids_fork_after_opposite_corners():
    # X in opposite corners, O in the centre: a corner reply lets X fork.
    board = board_of("X...O...X")
    move = best_move(board, "O", "X")
    assert move in (1, 3, 5, 7)


def test_ties_break_towards_lowest_index():
    # Every opening move draws with perfect play, so the first cell wins the tie.
    assert best_move(EMPTY_BOARD, "X", "O") == 0


def test_best_move_raises_on_full_board():
    with pytest.raises(NoLegalMove):
        best_move(board_of("XOXXOOOXX"), "X", "O")


def test_random_move_raises_on_full_board():
    with pytest.raises(NoLegalMove):
        random_move(board_of("XOXXOOOXX"))


def test_random_move_picks_an_empty_cell():
    board = board_of("XO.XO.O..")
    rng = random.Random(3)
    for _ in range(20):
        assert random_move(board, rng) in board.empty_cells()


def test_hard_self_play_always_draws():
    for opening in range(9):
        board = play_out(opening=opening)
        assert board.is_terminal().kind is OutcomeKind.DRAW
        assert board.is_full()


def test_centre_opening_plays_out_to_nine_move_draw():
    board = play_out(opening=4)
    assert board.move_count() == 9
    assert board.winner() is None


def test_hard_opponent_never_loses_to_random_play():
    rng = random.Random(11)
    opponent = SearchOpponent(symbol="O", difficulty=Difficulty.HARD)
    for _ in range(25):
        board, turn = EMPTY_BOARD, "X"
        while not board.is_terminal().is_over:
            if turn == "X":
                index = random_move(board, rng)
            else:
                index = opponent.choose(board)
            board = board.apply(index, turn)
            turn = other_symbol(turn)
        assert board.winner() != "X"


def test_easy_opponent_only_plays_random_cells():
    opponent = SearchOpponent(symbol="O", difficulty="easy", rng=random.Random(5))
    board = board_of("XX.......")
    picks = {opponent.choose(board) for _ in range(60)}
    # A best-move player would always block at 2.
    assert len(picks) > 1
    assert picks <= set(board.empty_cells())


def test_medium_opponent_mixes_policies():
    # Probabilistic property: with a seeded rng, roughly 70% of choices are the
    # best move, the rest are uniform among empty cells.
    opponent = SearchOpponent(symbol="O", difficulty=Difficulty.MEDIUM, rng=random.Random(7))
    board = board_of("XX.......")
    picks = [opponent.choose(board) for _ in range(400)]
    blocked = picks.count(2) / len(picks)
    assert 0.6 < blocked < 0.85
    assert len(set(picks)) > 1
