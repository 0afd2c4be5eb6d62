"""Online play: keep one participant's view of a room in step with the store.

Two participants never talk to each other directly. Each one runs a
``RoomSession`` that writes moves into the shared room document and folds
every pushed version of that document back into its local view. The pushed
document always wins: the local cache is replaced wholesale, never merged,
so both views converge after one round trip.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .errors import (
    MatchFinished,
    NotYourTurn,
    RoomNotFound,
    RoomNotJoinable,
    StoreUnavailable,
)
from .events import EventEmitter, EventKind
from .game import EMPTY_BOARD, Board, Outcome, OutcomeKind, Player, other_symbol
from .match import Match, MatchStatus, Mode
from .rooms import RoomManager, normalize_room_code
from .schemas import (
    ACTIVE_STATUSES,
    ROLE_SYMBOLS,
    ROOMS,
    ChatMessage,
    GameRecord,
    MoveRecord,
    Participant,
    Role,
    Room,
    RoomStatus,
    history_collection,
    messages_collection,
    moves_collection,
)
from .store import (
    SERVER_TIMESTAMP,
    Cancel,
    DocumentNotFound,
    DocumentStore,
    StoreError,
    translate_store_errors,
)

logger = logging.getLogger(__name__)

_MATCH_STATUS = {
    OutcomeKind.NONE: MatchStatus.ACTIVE,
    OutcomeKind.WIN: MatchStatus.WON,
    OutcomeKind.DRAW: MatchStatus.DRAWN,
}


class RoomSession(EventEmitter):
    """One participant's synchronized view of a shared room.

    The host always plays X and the guest always plays O.
    """

    def __init__(
        self,
        store: DocumentStore,
        room_id: str,
        participant: Participant,
        role: Role,
    ) -> None:
        super().__init__()
        self.store = store
        self.room_id = normalize_room_code(room_id)
        self.participant = participant
        self.role = Role(role)
        self.symbol: Player = ROLE_SYMBOLS[self.role]
        self.chat: List[ChatMessage] = []
        self.closed = False
        self._room: Optional[Room] = None
        self._lock = threading.RLock()
        self._cancel_room: Optional[Cancel] = None
        self._cancel_chat: Optional[Cancel] = None

    # ---- construction ----

    @classmethod
    def host(cls, manager: RoomManager, participant: Participant) -> "RoomSession":
        room_id = manager.create_room(participant)
        session = cls(manager.store, room_id, participant, Role.HOST)
        session.open()
        return session

    @classmethod
    def join(
        cls, manager: RoomManager, room_id: str, participant: Participant
    ) -> "RoomSession":
        room = manager.join_room(room_id, participant)
        session = cls(manager.store, room.room_id, participant, Role.GUEST)
        session.open()
        return session

    def open(self) -> "RoomSession":
        with translate_store_errors("open session"):
            document = self.store.get(ROOMS, self.room_id)
        if document is None:
            raise RoomNotFound(f"Room {self.room_id} not found")
        room = Room.from_document(document)
        if room.role_of(self.participant.id) is not self.role:
            raise RoomNotJoinable(
                f"{self.participant.id} is not the {self.role.value} of {self.room_id}"
            )
        with self._lock:
            self._room = room

        with translate_store_errors("subscribe to room"):
            self._cancel_room = self.store.subscribe(
                ROOMS, self.room_id, self.on_remote_update
            )
        try:
            self._cancel_chat = self.store.append_subscribe(
                messages_collection(self.room_id), "timestamp", self._on_chat
            )
        except StoreError as exc:
            self._cancel_room()
            self._cancel_room = None
            raise StoreUnavailable() from exc
        logger.info(
            "Session opened: %s is %s in room %s",
            self.participant.id,
            self.role.value,
            self.room_id,
        )
        return self

    # ---- views ----

    @property
    def room(self) -> Room:
        with self._lock:
            if self._room is None:
                raise RoomNotFound(f"Session for {self.room_id} is not open")
            return self._room

    @property
    def is_my_turn(self) -> bool:
        room = self.room
        return (
            not self.closed
            and room.status in ACTIVE_STATUSES
            and room.turn == self.symbol
        )

    @property
    def match(self) -> Match:
        room = self.room
        board = room.game_board
        outcome = board.is_terminal()
        return Match(
            mode=Mode.ONLINE,
            board=board,
            turn=room.turn,
            status=_MATCH_STATUS[outcome.kind],
            winner=outcome.winner,
        )

    # ---- moves ----

    def submit_move(self, index: int, symbol: Optional[Player] = None) -> Match:
        """Play ``index`` as this participant.

        Validation happens against the cached room before anything is
        written, so the shared document only ever holds legal positions.
        """

        symbol = symbol or self.symbol
        with self._lock:
            if self.closed:
                raise RoomNotFound(f"Room {self.room_id} is closed")
            previous = self.room
            if symbol != previous.turn or symbol != self.symbol:
                raise NotYourTurn()
            if previous.is_closed:
                raise MatchFinished()
            if previous.status is RoomStatus.WAITING or previous.guest_id is None:
                raise NotYourTurn("Waiting for an opponent to join")

            board = previous.game_board.apply(index, symbol)
            outcome = board.is_terminal()
            fields = self._move_fields(board, outcome, symbol)
            optimistic = previous.model_copy(
                update={
                    "board": fields["board"],
                    "turn": fields["turn"],
                    "status": RoomStatus(fields["status"]),
                    "winner": fields["winner"],
                }
            )
            self._room = optimistic
        self._emit_changes(previous, optimistic)

        fields["lastActivity"] = SERVER_TIMESTAMP
        try:
            self.store.update(ROOMS, self.room_id, fields)
        except (StoreError, DocumentNotFound) as exc:
            self._rollback(optimistic, previous)
            if isinstance(exc, DocumentNotFound):
                raise RoomNotFound(f"Room {self.room_id} not found") from exc
            logger.warning("Move %d in room %s not written: %s", index, self.room_id, exc)
            raise StoreUnavailable() from exc

        self._record_move(index, symbol, board.move_count())
        if outcome.is_over:
            self._record_result(board, outcome, previous)
        return self.match

    @staticmethod
    def _move_fields(board: Board, outcome: Outcome, symbol: Player) -> Dict[str, Any]:
        if outcome.is_over:
            # The finishing mover stays on turn; the room freezes.
            return {
                "board": board.to_list(),
                "turn": symbol,
                "status": RoomStatus.FINISHED.value,
                "winner": outcome.winner,
            }
        return {
            "board": board.to_list(),
            "turn": other_symbol(symbol),
            "status": RoomStatus.PLAYING.value,
            "winner": None,
        }

    def _rollback(self, optimistic: Room, previous: Room) -> None:
        with self._lock:
            # Only undo if no pushed document replaced the optimistic one.
            if self._room is not optimistic:
                return
            self._room = previous
        self._emit_changes(optimistic, previous)

    def _record_move(self, index: int, symbol: Player, sequence: int) -> None:
        document = MoveRecord(
            cell_index=index,
            symbol=symbol,
            author_id=self.participant.id,
            author_name=self.participant.display_name,
            sequence_number=sequence,
        ).to_document()
        document["timestamp"] = SERVER_TIMESTAMP
        try:
            self.store.add(moves_collection(self.room_id), document)
        except StoreError as exc:
            logger.warning("Move record for room %s not saved: %s", self.room_id, exc)

    def _record_result(self, board: Board, outcome: Outcome, room: Room) -> None:
        document = GameRecord(
            room_id=self.room_id,
            host_id=room.host_id,
            guest_id=room.guest_id,
            result="win" if outcome.kind is OutcomeKind.WIN else "draw",
            winner=outcome.winner,
            final_board=board.to_list(),
            total_moves=board.move_count(),
        ).to_document()
        document["endTime"] = SERVER_TIMESTAMP
        try:
            self.store.add(history_collection(self.room_id), document)
        except StoreError as exc:
            logger.warning("Result for room %s not saved: %s", self.room_id, exc)

    def reset_match(self) -> Room:
        """Start a fresh board in the same room, X to move."""

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                raise RoomNotFound(f"Room {self.room_id} not found")
            room = Room.from_document(current)
            if room.is_closed:
                raise MatchFinished()
            if room.status is RoomStatus.WAITING:
                raise NotYourTurn("Waiting for an opponent to join")
            return {
                "board": EMPTY_BOARD.to_list(),
                "turn": "X",
                "status": RoomStatus.PLAYING.value,
                "winner": None,
                "lastActivity": SERVER_TIMESTAMP,
            }

        with translate_store_errors("reset match"):
            document = self.store.transact(ROOMS, self.room_id, mutate)
        logger.info("Match in room %s reset by %s", self.room_id, self.participant.id)
        return Room.from_document(document)

    # ---- pushed updates ----

    def on_remote_update(self, document: Optional[Dict[str, Any]]) -> None:
        if document is None:
            if not self.detach():
                logger.info("Room %s no longer exists", self.room_id)
                self._emit(EventKind.ROOM_CLOSED, roomId=self.room_id)
            return

        try:
            room = Room.from_document(document)
        except ValidationError as exc:
            logger.warning("Ignoring malformed room document %s: %s", self.room_id, exc)
            self._emit(EventKind.ERROR, error="invalid_document", message=str(exc))
            return

        with self._lock:
            previous = self._room
            self._room = room
        self._emit_changes(previous, room)

    def _emit_changes(self, previous: Optional[Room], current: Room) -> None:
        if previous is None or previous.board != current.board:
            self._emit(EventKind.BOARD_UPDATED, board=list(current.board))
        if (
            previous is None
            or previous.turn != current.turn
            or previous.status != current.status
            or previous.winner != current.winner
        ):
            match = self.match
            self._emit(
                EventKind.STATUS_CHANGED,
                turn=match.turn,
                status=match.status.value,
                winner=match.winner,
                isMyTurn=self.is_my_turn,
            )
        if previous is None or previous.status != current.status:
            self._emit(
                EventKind.ROOM_STATUS_CHANGED,
                status=current.status.value,
                guestName=current.guest_name,
            )

    # ---- chat ----

    def send_chat(self, text: str) -> bool:
        """Append a chat line; failures degrade to an ``error`` event."""

        try:
            message = ChatMessage(
                text=(text or "").strip(),
                author_id=self.participant.id,
                author_name=self.participant.display_name,
            )
        except ValidationError:
            self._emit(EventKind.ERROR, error="invalid_message", message="Empty or too long")
            return False

        document = message.to_document()
        document["timestamp"] = SERVER_TIMESTAMP
        try:
            self.store.add(messages_collection(self.room_id), document)
        except StoreError as exc:
            logger.warning("Chat message in room %s not sent: %s", self.room_id, exc)
            self._emit(
                EventKind.ERROR,
                error=StoreUnavailable.kind,
                message="Message could not be sent",
            )
            return False
        return True

    def _on_chat(self, document: Dict[str, Any]) -> None:
        try:
            message = ChatMessage.from_document(document)
        except ValidationError as exc:
            logger.warning("Ignoring malformed chat message: %s", exc)
            return
        with self._lock:
            self.chat.append(message)
        payload = message.to_document()
        payload["own"] = message.author_id == self.participant.id
        self._emit(EventKind.CHAT_APPENDED, **payload)

    # ---- teardown ----

    def detach(self) -> bool:
        """Cancel both subscriptions and close; returns whether already closed."""

        with self._lock:
            cancels: List[Callable[[], None]] = [
                c for c in (self._cancel_room, self._cancel_chat) if c is not None
            ]
            self._cancel_room = self._cancel_chat = None
            was_closed = self.closed
            self.closed = True

        for cancel in cancels:
            cancel()
        return was_closed

    def leave(self) -> None:
        """Stop listening; the host also removes an unfinished room."""

        with self._lock:
            room = self._room
        was_closed = self.detach()

        if (
            self.role is Role.HOST
            and not was_closed
            and room is not None
            and room.status is not RoomStatus.FINISHED
        ):
            try:
                self.store.delete(ROOMS, self.room_id)
                logger.info("Host left, room %s deleted", self.room_id)
            except StoreError as exc:
                logger.warning("Could not delete room %s: %s", self.room_id, exc)
