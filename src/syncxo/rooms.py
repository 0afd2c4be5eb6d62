"""Room lifecycle: create, join, start, expire and delete shared rooms."""

from __future__ import annotations

import logging
import random
import re
import string
import time
from typing import Any, Callable, Dict, List, Optional

from .config import DEFAULT_ROOM_TTL_SECONDS
from .errors import (
    MatchFinished,
    NotYourTurn,
    RoomFull,
    RoomNotFound,
    RoomNotJoinable,
    StoreUnavailable,
)
from .schemas import (
    CLOSED_STATUSES,
    EXPIRABLE_STATUSES,
    ROOMS,
    Participant,
    Role,
    Room,
    RoomStatus,
)
from .store import (
    SERVER_TIMESTAMP,
    DocumentNotFound,
    DocumentStore,
    StoreError,
    all_of,
    translate_store_errors,
    where,
)

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6
ROOM_CREATE_ATTEMPTS = 10
_ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")

_system_random = random.SystemRandom()


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or _system_random
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_room_code(code: str) -> str:
    normalized = (code or "").strip().upper()
    if not _ROOM_CODE_RE.match(normalized):
        raise RoomNotFound(f"Room {code!r} not found")
    return normalized


def join_url(base_url: str, room_id: str) -> str:
    return f"{base_url.rstrip('/')}/?room={room_id}"


class RoomManager:
    """Creates and garbage-collects rooms in the shared store.

    Code allocation is check-then-create: two processes drawing the same
    code at the same moment both succeed and the later write wins. With
    36**6 codes that is accepted; a backend with a unique-insert primitive
    should use it instead.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], float] = time.time,
        ttl_seconds: float = DEFAULT_ROOM_TTL_SECONDS,
        code_factory: Callable[[], str] = generate_room_code,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._code_factory = code_factory

    # ---- lookups ----

    def get_room(self, room_id: str) -> Room:
        room_id = normalize_room_code(room_id)
        with translate_store_errors("get room"):
            document = self.store.get(ROOMS, room_id)
        if document is None:
            raise RoomNotFound(f"Room {room_id} not found")
        return Room.from_document(document)

    def is_stale(self, room: Room, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        seen = room.last_activity if room.last_activity is not None else room.created_at
        return seen is not None and seen < now - self.ttl_seconds

    # ---- lifecycle ----

    def create_room(self, host: Participant) -> str:
        for _ in range(ROOM_CREATE_ATTEMPTS):
            room_id = normalize_room_code(self._code_factory())
            with translate_store_errors("create room"):
                if self.store.get(ROOMS, room_id) is not None:
                    logger.debug("Room code %s taken, drawing another", room_id)
                    continue
                document = Room(
                    room_id=room_id, host_id=host.id, host_name=host.display_name
                ).to_document()
                document.update(createdAt=SERVER_TIMESTAMP, lastActivity=SERVER_TIMESTAMP)
                self.store.create(ROOMS, room_id, document)
            logger.info("Room %s created by %s", room_id, host.id)
            return room_id
        raise StoreUnavailable("Unable to allocate a room code")

    def join_room(self, room_id: str, guest: Participant) -> Room:
        room_id = normalize_room_code(room_id)
        now = self._clock()
        went_stale = False

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            nonlocal went_stale
            if current is None:
                raise RoomNotFound(f"Room {room_id} not found")
            room = Room.from_document(current)
            if room.status in CLOSED_STATUSES:
                raise RoomNotJoinable(f"Room {room_id} is {room.status.value}")
            if room.status is RoomStatus.WAITING and self.is_stale(room, now):
                went_stale = True
                return {"status": RoomStatus.EXPIRED.value, "lastActivity": SERVER_TIMESTAMP}
            if room.role_of(guest.id) is Role.HOST:
                raise RoomNotJoinable("You are already the host of this room")
            if room.guest_id is not None:
                raise RoomFull()
            if room.status is not RoomStatus.WAITING:
                raise RoomNotJoinable(f"Room {room_id} is {room.status.value}")
            return {
                "guestId": guest.id,
                "guestName": guest.display_name,
                "status": RoomStatus.READY.value,
                "lastActivity": SERVER_TIMESTAMP,
            }

        with translate_store_errors("join room"):
            document = self.store.transact(ROOMS, room_id, mutate)
        if went_stale:
            logger.info("Room %s expired at join time", room_id)
            raise RoomNotJoinable(f"Room {room_id} has expired")
        logger.info("Participant %s joined room %s", guest.id, room_id)
        return Room.from_document(document)

    def start_match(self, room_id: str) -> Room:
        room_id = normalize_room_code(room_id)

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None:
                raise RoomNotFound(f"Room {room_id} not found")
            room = Room.from_document(current)
            if room.is_closed:
                raise MatchFinished()
            if room.status is RoomStatus.WAITING:
                raise NotYourTurn("Waiting for an opponent to join")
            if room.status is RoomStatus.PLAYING:
                return None
            return {"status": RoomStatus.PLAYING.value, "lastActivity": SERVER_TIMESTAMP}

        with translate_store_errors("start match"):
            document = self.store.transact(ROOMS, room_id, mutate)
        return Room.from_document(document)

    def delete_room(self, room_id: str) -> None:
        room_id = normalize_room_code(room_id)
        with translate_store_errors("delete room"):
            self.store.delete(ROOMS, room_id)
        logger.info("Room %s deleted", room_id)

    def expire_stale_rooms(
        self, now: Optional[float] = None, threshold: Optional[float] = None
    ) -> List[str]:
        """Mark idle waiting/playing rooms as expired; return their ids."""

        now = self._clock() if now is None else now
        threshold = self.ttl_seconds if threshold is None else threshold
        cutoff = now - threshold
        predicate = all_of(
            where("status", "in", [s.value for s in EXPIRABLE_STATUSES]),
            where("lastActivity", "<", cutoff),
        )
        with translate_store_errors("expire rooms"):
            stale = self.store.query(ROOMS, predicate)

        def mutate(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            # Another participant may have touched the room since the query.
            if current is None or not predicate(current):
                return None
            return {"status": RoomStatus.EXPIRED.value, "lastActivity": SERVER_TIMESTAMP}

        expired: List[str] = []
        for document in stale:
            room_id = document["roomId"]
            try:
                after = self.store.transact(ROOMS, room_id, mutate)
            except DocumentNotFound:
                continue
            except StoreError as exc:
                logger.warning("Could not expire room %s: %s", room_id, exc)
                continue
            if after.get("status") == RoomStatus.EXPIRED.value:
                expired.append(room_id)

        if expired:
            logger.info("Expired %d stale rooms", len(expired))
        else:
            logger.debug("No stale rooms to expire")
        return expired
