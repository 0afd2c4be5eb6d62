"""Local match state machine: solo against the search opponent or two players
sharing one device."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from .ai import Difficulty, SearchOpponent
from .errors import IllegalMove, MatchFinished, NotYourTurn
from .events import EventEmitter, EventKind
from .game import EMPTY_BOARD, SYMBOLS, Board, OutcomeKind, Player, other_symbol

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    SOLO = "solo"
    TWO_LOCAL = "two-local"
    ONLINE = "online"


class MatchStatus(str, Enum):
    ACTIVE = "active"
    WON = "won"
    DRAWN = "drawn"


@dataclass(frozen=True)
class Match:
    mode: Mode
    board: Board = field(default=EMPTY_BOARD)
    turn: Player = "X"
    status: MatchStatus = MatchStatus.ACTIVE
    winner: Optional[Player] = None

    @property
    def is_active(self) -> bool:
        return self.status is MatchStatus.ACTIVE

    def play(self, index: int) -> "Match":
        """Return the match after ``turn`` plays ``index``.

        The turn only flips while the match stays active; a finished match
        keeps the winning (or last) mover as ``turn``.
        """

        if not self.is_active:
            raise MatchFinished()
        board = self.board.apply(index, self.turn)
        outcome = board.is_terminal()
        if outcome.kind is OutcomeKind.WIN:
            return replace(
                self, board=board, status=MatchStatus.WON, winner=outcome.winner
            )
        if outcome.kind is OutcomeKind.DRAW:
            return replace(self, board=board, status=MatchStatus.DRAWN)
        return replace(self, board=board, turn=other_symbol(self.turn))


class MatchController(EventEmitter):
    """Drives one local match.

    In solo mode the opponent answers synchronously inside ``play`` once the
    human move leaves it on turn; ``think_delay`` only paces the UI.
    """

    def __init__(
        self,
        mode: Mode = Mode.SOLO,
        human_symbol: Player = "X",
        difficulty: Difficulty = Difficulty.MEDIUM,
        think_delay: float = 0.0,
        opponent: Optional[SearchOpponent] = None,
    ) -> None:
        super().__init__()
        self.mode = Mode(mode)
        if self.mode is Mode.ONLINE:
            raise ValueError("Online matches are driven by RoomSession")
        if human_symbol not in SYMBOLS:
            raise ValueError(f"Unknown symbol {human_symbol!r}")
        self.human_symbol = human_symbol
        self.think_delay = think_delay
        self.opponent: Optional[SearchOpponent] = None
        if self.mode is Mode.SOLO:
            self.opponent = opponent or SearchOpponent(
                symbol=other_symbol(human_symbol), difficulty=Difficulty(difficulty)
            )
        self.move_log: List[Tuple[Player, int]] = []
        self.lock = threading.RLock()
        self.match = Match(mode=self.mode, turn=self.starting_symbol)

    @property
    def starting_symbol(self) -> Player:
        # Two players on one device always open with X.
        return self.human_symbol if self.mode is Mode.SOLO else "X"

    def play(self, index: int) -> Match:
        with self.lock:
            if not self.match.is_active:
                raise MatchFinished()
            if self.mode is Mode.SOLO and self.match.turn != self.human_symbol:
                raise NotYourTurn()
            self._apply(index)
            if self._opponent_on_turn():
                self._opponent_turn()
            return self.match

    def reset(self) -> Match:
        with self.lock:
            self.match = Match(mode=self.mode, turn=self.starting_symbol)
            self.move_log = []
            self._emit(EventKind.BOARD_UPDATED, board=self.match.board.to_list())
            self._emit_status()
            return self.match

    # ---- helpers ----

    def _opponent_on_turn(self) -> bool:
        return (
            self.opponent is not None
            and self.match.is_active
            and self.match.turn == self.opponent.symbol
        )

    def _opponent_turn(self) -> None:
        opponent = self.opponent
        if opponent is None:
            return
        if self.think_delay > 0:
            time.sleep(self.think_delay)
        index = opponent.choose(self.match.board)
        logger.debug("Opponent (%s) plays %d", opponent.difficulty.value, index)
        self._apply(index)

    def _apply(self, index: int) -> None:
        mover = self.match.turn
        try:
            self.match = self.match.play(index)
        except IllegalMove:
            logger.debug("Rejected move %r by %s", index, mover)
            raise
        self.move_log.append((mover, index))
        self._emit(
            EventKind.BOARD_UPDATED,
            board=self.match.board.to_list(),
            lastMove={"symbol": mover, "cellIndex": index},
        )
        self._emit_status()

    def _emit_status(self) -> None:
        self._emit(
            EventKind.STATUS_CHANGED,
            turn=self.match.turn,
            status=self.match.status.value,
            winner=self.match.winner,
        )
