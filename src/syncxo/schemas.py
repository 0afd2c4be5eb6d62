"""
Documents kept in the shared store.

Each model maps to one collection; field aliases are the camelCase keys the
documents carry in the store and on the wire.

- Room        -> "rooms/<roomId>"
- MoveRecord  -> "rooms/<roomId>/moves"     (append-only audit trail)
- ChatMessage -> "rooms/<roomId>/messages"  (append-only)
- GameRecord  -> "rooms/<roomId>/history"   (one entry per finished match)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .game import CELL_COUNT, EMPTY, Board, Player

ROOMS = "rooms"


def moves_collection(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/moves"


def messages_collection(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/messages"


def history_collection(room_id: str) -> str:
    return f"{ROOMS}/{room_id}/history"


@dataclass(frozen=True)
class Participant:
    """Opaque identity handed to the core by the identity provider."""

    id: str
    display_name: str = "Player"


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"


# Fixed for the lifetime of a room.
ROLE_SYMBOLS: Dict[Role, Player] = {Role.HOST: "X", Role.GUEST: "O"}


class RoomStatus(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    PLAYING = "playing"
    FINISHED = "finished"
    EXPIRED = "expired"


CLOSED_STATUSES = frozenset({RoomStatus.FINISHED, RoomStatus.EXPIRED})
ACTIVE_STATUSES = frozenset({RoomStatus.READY, RoomStatus.PLAYING})
EXPIRABLE_STATUSES = (RoomStatus.WAITING, RoomStatus.PLAYING)


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        return cls.model_validate(document)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Room(_Document):
    room_id: str = Field(alias="roomId", min_length=6, max_length=6)
    board: List[str] = Field(default_factory=lambda: [EMPTY] * CELL_COUNT)
    turn: Literal["X", "O"] = "X"
    host_id: Optional[str] = Field(default=None, alias="hostId")
    host_name: Optional[str] = Field(default=None, alias="hostName")
    guest_id: Optional[str] = Field(default=None, alias="guestId")
    guest_name: Optional[str] = Field(default=None, alias="guestName")
    status: RoomStatus = RoomStatus.WAITING
    winner: Optional[Literal["X", "O"]] = None
    created_at: Optional[float] = Field(default=None, alias="createdAt")
    last_activity: Optional[float] = Field(default=None, alias="lastActivity")

    @field_validator("board")
    @classmethod
    def ensure_board_shape(cls, value: List[str]) -> List[str]:
        return Board.from_cells(value).to_list()

    @property
    def game_board(self) -> Board:
        return Board.from_cells(self.board)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def role_of(self, participant_id: str) -> Optional[Role]:
        if participant_id and participant_id == self.host_id:
            return Role.HOST
        if participant_id and participant_id == self.guest_id:
            return Role.GUEST
        return None

    def available_slots(self) -> List[str]:
        slots = []
        if self.host_id is None:
            slots.append(Role.HOST.value)
        if self.guest_id is None:
            slots.append(Role.GUEST.value)
        return slots


class MoveRecord(_Document):
    cell_index: int = Field(alias="cellIndex", ge=0, le=CELL_COUNT - 1)
    symbol: Literal["X", "O"]
    author_id: str = Field(alias="authorId")
    author_name: Optional[str] = Field(default=None, alias="authorName")
    sequence_number: int = Field(alias="sequenceNumber", ge=1)
    timestamp: Optional[float] = None


class ChatMessage(_Document):
    text: str = Field(min_length=1, max_length=500)
    author_id: str = Field(alias="authorId")
    author_name: Optional[str] = Field(default=None, alias="authorName")
    timestamp: Optional[float] = None


class GameRecord(_Document):
    room_id: str = Field(alias="roomId")
    host_id: Optional[str] = Field(default=None, alias="hostId")
    guest_id: Optional[str] = Field(default=None, alias="guestId")
    result: Literal["win", "draw"]
    winner: Optional[Literal["X", "O"]] = None
    final_board: List[str] = Field(alias="finalBoard")
    total_moves: int = Field(alias="totalMoves", ge=0)
    end_time: Optional[float] = Field(default=None, alias="endTime")
