"""Core rules for the 3x3 board: moves, wins and draws."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .errors import IllegalMove

Player = str  # "X" or "O"

EMPTY = ""
SYMBOLS: Tuple[Player, Player] = ("X", "O")
CELL_COUNT = 9

# Rows, then columns, then diagonals. Enumeration order decides which symbol
# winner() reports first, which only matters for hand-built boards.
WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


def other_symbol(symbol: Player) -> Player:
    return "O" if symbol == "X" else "X"


class OutcomeKind(str, Enum):
    NONE = "none"
    WIN = "win"
    DRAW = "draw"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind = OutcomeKind.NONE
    winner: Optional[Player] = None

    @property
    def is_over(self) -> bool:
        return self.kind is not OutcomeKind.NONE


ONGOING = Outcome()
DRAW = Outcome(OutcomeKind.DRAW)


# ---------- Board ----------


@dataclass(frozen=True)
class Board:
    """Immutable snapshot of the nine cells.

    ``apply`` never mutates; it returns a new board, so search code can share
    snapshots freely.
    """

    cells: Tuple[Player, ...] = field(default=(EMPTY,) * CELL_COUNT)

    def __post_init__(self) -> None:
        if len(self.cells) != CELL_COUNT:
            raise ValueError(f"A board has exactly {CELL_COUNT} cells")

    @classmethod
    def from_cells(cls, cells: Iterable[Optional[str]]) -> "Board":
        """Build a board from a document value, treating None/' ' as empty."""

        normalized = []
        for cell in cells:
            value = (cell or EMPTY).strip().upper()
            if value not in SYMBOLS and value != EMPTY:
                raise ValueError(f"Unknown cell value {cell!r}")
            normalized.append(value)
        return cls(tuple(normalized))

    def to_list(self) -> List[str]:
        return list(self.cells)

    def empty_cells(self) -> List[int]:
        return [i for i, c in enumerate(self.cells) if c == EMPTY]

    def move_count(self) -> int:
        return CELL_COUNT - len(self.empty_cells())

    def is_full(self) -> bool:
        return all(c != EMPTY for c in self.cells)

    def apply(self, index: int, symbol: Player) -> "Board":
        if symbol not in SYMBOLS:
            raise IllegalMove(f"Unknown symbol {symbol!r}")
        if not isinstance(index, int) or not 0 <= index < CELL_COUNT:
            raise IllegalMove(f"Cell {index!r} is off the board")
        if self.cells[index] != EMPTY:
            raise IllegalMove(f"Cell {index} is already occupied")
        cells = list(self.cells)
        cells[index] = symbol
        return Board(tuple(cells))

    def winner(self) -> Optional[Player]:
        for a, b, c in WINNING_LINES:
            v = self.cells[a]
            if v != EMPTY and v == self.cells[b] == self.cells[c]:
                return v
        return None

    def is_terminal(self) -> Outcome:
        symbol = self.winner()
        if symbol is not None:
            return Outcome(OutcomeKind.WIN, symbol)
        if self.is_full():
            return DRAW
        return ONGOING

    def __str__(self) -> str:
        rows = []
        for start in (0, 3, 6):
            rows.append("|".join(c or "." for c in self.cells[start : start + 3]))
        return "\n".join(rows)


EMPTY_BOARD = Board()


# Free-function forms used by callers that pass boards around as values.


def apply(board: Board, index: int, symbol: Player) -> Board:
    return board.apply(index, symbol)


def winner(board: Board) -> Optional[Player]:
    return board.winner()


def is_full(board: Board) -> bool:
    return board.is_full()


def is_terminal(board: Board) -> Outcome:
    return board.is_terminal()
