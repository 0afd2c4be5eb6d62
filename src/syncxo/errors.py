"""Error taxonomy shared by the board model, the controllers and the API."""

from __future__ import annotations


class GameError(Exception):
    """Base class for every error the core surfaces to its callers."""

    kind = "game_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)

    @property
    def message(self) -> str:
        return str(self)


class IllegalMove(GameError):
    """Cell index is off the board or already occupied."""

    kind = "illegal_move"


class NoLegalMove(GameError):
    """The board is full, so there is nothing left to play."""

    kind = "no_legal_move"


class NotYourTurn(GameError):
    """It is not this participant's turn."""

    kind = "not_your_turn"


class MatchFinished(GameError):
    """The match is over; no further moves are accepted."""

    kind = "match_finished"


class RoomNotFound(GameError):
    """Room not found."""

    kind = "room_not_found"


class RoomFull(GameError):
    """Room already has two players."""

    kind = "room_full"


class RoomNotJoinable(GameError):
    """Room is no longer accepting players."""

    kind = "room_not_joinable"


class StoreUnavailable(GameError):
    """The shared store could not be reached, try again."""

    kind = "store_unavailable"
