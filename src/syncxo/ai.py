"""Exact minimax opponent for the 3x3 board, plus difficulty policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
import random

from .errors import NoLegalMove
from .game import SYMBOLS, Board, OutcomeKind, Player, other_symbol

MEDIUM_BEST_MOVE_PROBABILITY = 0.7

WIN_SCORE = 1
LOSS_SCORE = -1
DRAW_SCORE = 0


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# Solved positions: (cells, side to move, maximizing symbol) -> exact score.
# The score of a position never depends on how it was reached, so entries
# are valid for every later search.
_TT: Dict[Tuple[Tuple[str, ...], Player, Player], int] = {}


def _minimax(board: Board, mover: Player, maximizer: Player) -> int:
    key = (board.cells, mover, maximizer)
    cached = _TT.get(key)
    if cached is not None:
        return cached

    outcome = board.is_terminal()
    if outcome.kind is OutcomeKind.WIN:
        score = WIN_SCORE if outcome.winner == maximizer else LOSS_SCORE
    elif outcome.kind is OutcomeKind.DRAW:
        score = DRAW_SCORE
    else:
        nxt = other_symbol(mover)
        scores = [
            _minimax(board.apply(i, mover), nxt, maximizer)
            for i in board.empty_cells()
        ]
        score = max(scores) if mover == maximizer else min(scores)

    _TT[key] = score
    return score


def best_move(board: Board, to_move: Player, opponent: Player) -> int:
    """Return the exact best cell for ``to_move``.

    Ties go to the lowest cell index, so the result is deterministic.
    """

    if to_move not in SYMBOLS or opponent != other_symbol(to_move):
        raise ValueError(f"Invalid players {to_move!r} / {opponent!r}")
    moves = board.empty_cells()
    if not moves:
        raise NoLegalMove()

    # max keeps the first of equal scores and moves are in index order.
    return max(
        moves, key=lambda index: _minimax(board.apply(index, to_move), opponent, to_move)
    )


def random_move(board: Board, rng: Optional[random.Random] = None) -> int:
    moves = board.empty_cells()
    if not moves:
        raise NoLegalMove()
    return (rng or random).choice(moves)


@dataclass
class SearchOpponent:
    """Scripted opponent whose strength comes from its difficulty.

    - easy: always a random empty cell
    - medium: best move 70% of the time, random otherwise
    - hard: always the best move (never loses)

    Without an injected ``rng`` every call draws from a freshly seeded
    generator, so medium play is not reproducible.
    """

    symbol: Player = "O"
    difficulty: Difficulty = Difficulty.MEDIUM
    rng: Optional[random.Random] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.difficulty = Difficulty(self.difficulty)

    def choose(self, board: Board) -> int:
        rng = self.rng or random.Random()
        if self.difficulty is Difficulty.EASY:
            return random_move(board, rng)
        if self.difficulty is Difficulty.HARD:
            return best_move(board, self.symbol, other_symbol(self.symbol))
        if rng.random() < MEDIUM_BEST_MOVE_PROBABILITY:
            return best_move(board, self.symbol, other_symbol(self.symbol))
        return random_move(board, rng)
