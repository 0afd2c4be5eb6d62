"""FastAPI surface for SyncXO: local matches, shared rooms and live room events."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Literal, Tuple

from fastapi import (
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .ai import Difficulty
from .config import Settings
from .errors import (
    GameError,
    IllegalMove,
    MatchFinished,
    NoLegalMove,
    NotYourTurn,
    RoomFull,
    RoomNotFound,
    RoomNotJoinable,
    StoreUnavailable,
)
from .match import MatchController, Mode
from .rooms import RoomManager, join_url, normalize_room_code
from .schemas import ChatMessage, MoveRecord, Participant, messages_collection, moves_collection
from .session import RoomSession
from .store import DocumentStore, InMemoryDocumentStore, translate_store_errors

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()
STORE: DocumentStore = InMemoryDocumentStore()
ROOM_MANAGER = RoomManager(STORE, ttl_seconds=SETTINGS.room_ttl_seconds)

GAMES: Dict[str, MatchController] = {}
ROOM_SESSIONS: Dict[Tuple[str, str], RoomSession] = {}
SESSIONS_LOCK = threading.Lock()

AI_THINK_DELAY: float = SETTINGS.ai_think_delay
CHAT_HISTORY_LIMIT = 50

ERROR_STATUS: Dict[type, int] = {
    IllegalMove: 400,
    NoLegalMove: 400,
    MatchFinished: 400,
    NotYourTurn: 409,
    RoomFull: 409,
    RoomNotJoinable: 409,
    RoomNotFound: 404,
    StoreUnavailable: 503,
}


async def _sweep_rooms_forever(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(_expire_rooms)
        except StoreUnavailable:
            logger.warning("Room sweep skipped, store unavailable")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    sweeper = asyncio.create_task(_sweep_rooms_forever(SETTINGS.sweep_interval_seconds))
    try:
        yield
    finally:
        sweeper.cancel()


app = FastAPI(
    title="SyncXO",
    description="Tic-tac-toe against the computer, a friend, or a remote opponent",
    lifespan=lifespan,
)


@app.exception_handler(GameError)
async def game_error_handler(_: Request, exc: GameError) -> JSONResponse:
    status = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400
    )
    return JSONResponse(
        status_code=status, content={"detail": exc.message, "error": exc.kind}
    )


# ---------- Request payloads ----------


class NewGameRequest(BaseModel):
    """Request payload for starting a local game."""

    mode: Literal["solo", "two-local"] = "solo"
    difficulty: Difficulty = Difficulty.MEDIUM
    symbol: Literal["X", "O"] = Field(
        default="X", description="Symbol of the human player in solo mode"
    )


class MoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class ParticipantRequest(BaseModel):
    """Identity supplied by the client's identity provider."""

    model_config = ConfigDict(populate_by_name=True)

    participant_id: str = Field(alias="participantId", min_length=1, max_length=64)
    display_name: str = Field(default="Player", alias="displayName", max_length=40)

    def to_participant(self) -> Participant:
        return Participant(id=self.participant_id, display_name=self.display_name)


class RoomMoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    participant_id: str = Field(alias="participantId", min_length=1)
    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    participant_id: str = Field(alias="participantId", min_length=1)
    text: str = Field(min_length=1, max_length=500)


# ---------- Local games ----------


def _get_game(game_id: str) -> MatchController:
    try:
        return GAMES[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _serialize_game(game_id: str, controller: MatchController) -> Dict[str, object]:
    with controller.lock:
        match = controller.match
        state: Dict[str, object] = {
            "id": game_id,
            "mode": controller.mode.value,
            "board": match.board.to_list(),
            "currentPlayer": match.turn,
            "status": match.status.value,
            "winner": match.winner,
            "humanSymbol": controller.human_symbol,
            "difficulty": (
                controller.opponent.difficulty.value if controller.opponent else None
            ),
            "availableMoves": match.board.empty_cells() if match.is_active else [],
            "moveLog": [
                {"player": player, "cellIndex": index}
                for player, index in controller.move_log
            ],
        }
        if controller.move_log:
            state["lastMove"] = state["moveLog"][-1]  # type: ignore[index]
        return state


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    controller = MatchController(
        mode=Mode(request.mode),
        human_symbol=request.symbol,
        difficulty=request.difficulty,
        think_delay=AI_THINK_DELAY,
    )
    game_id = uuid.uuid4().hex
    GAMES[game_id] = controller
    return _serialize_game(game_id, controller)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    return _serialize_game(game_id, _get_game(game_id))


@app.post("/api/game/{game_id}/move")
def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
    controller = _get_game(game_id)
    controller.play(request.cell_index)
    return _serialize_game(game_id, controller)


@app.post("/api/game/{game_id}/reset")
def reset_game(game_id: str) -> Dict[str, object]:
    controller = _get_game(game_id)
    controller.reset()
    return _serialize_game(game_id, controller)


# ---------- Rooms ----------


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable room links."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")

    host = request.headers.get("host")
    if host:
        return f"{request.url.scheme}://{host}".rstrip("/")

    return str(request.base_url).rstrip("/")


def _register(session: RoomSession) -> None:
    with SESSIONS_LOCK:
        ROOM_SESSIONS[(session.room_id, session.participant.id)] = session


def _prune_sessions(room_ids: Iterable[str]) -> None:
    """Drop the sessions of rooms that are gone or expired."""

    room_ids = set(room_ids)
    with SESSIONS_LOCK:
        keys = [key for key in ROOM_SESSIONS if key[0] in room_ids]
        sessions = [ROOM_SESSIONS.pop(key) for key in keys]
    for session in sessions:
        session.detach()


def _expire_rooms() -> List[str]:
    expired = ROOM_MANAGER.expire_stale_rooms()
    _prune_sessions(expired)
    return expired


def _get_session(room_id: str, participant_id: str) -> RoomSession:
    room_id = normalize_room_code(room_id)
    with SESSIONS_LOCK:
        session = ROOM_SESSIONS.get((room_id, participant_id))
    if session is not None and session.closed:
        _prune_sessions([room_id])
        raise RoomNotFound(f"Room {room_id} no longer exists")
    if session is None:
        ROOM_MANAGER.get_room(room_id)  # 404 if the room itself is gone
        raise HTTPException(status_code=403, detail="Not a participant of this room")
    return session


def _serialize_room_state(session: RoomSession) -> Dict[str, object]:
    room = session.room
    match = session.match
    return {
        "roomId": room.room_id,
        "status": room.status.value,
        "board": list(room.board),
        "currentPlayer": room.turn,
        "winner": match.winner,
        "matchStatus": match.status.value,
        "hostName": room.host_name,
        "guestName": room.guest_name,
        "role": session.role.value,
        "symbol": session.symbol,
        "isMyTurn": session.is_my_turn,
        "closed": session.closed,
    }


@app.post("/api/room")
def create_room(body: ParticipantRequest, request: Request) -> Dict[str, object]:
    session = RoomSession.host(ROOM_MANAGER, body.to_participant())
    _register(session)
    base_url = _resolve_join_base_url(request)
    return {
        "roomId": session.room_id,
        "joinUrl": join_url(base_url, session.room_id),
        "room": _serialize_room_state(session),
    }


@app.get("/api/room/{room_id}")
def inspect_room(room_id: str) -> Dict[str, object]:
    room = ROOM_MANAGER.get_room(room_id)
    available_slots = room.available_slots() if not room.is_closed else []
    return {
        "roomId": room.room_id,
        "status": room.status.value,
        "available": room.status.value == "waiting" and bool(available_slots),
        "availableSlots": available_slots,
        "board": list(room.board),
        "currentPlayer": room.turn,
        "hostName": room.host_name,
        "guestName": room.guest_name,
    }


@app.get("/api/room/{room_id}/state")
def room_state(
    room_id: str, participant_id: str = Query(alias="participantId")
) -> Dict[str, object]:
    return _serialize_room_state(_get_session(room_id, participant_id))


@app.post("/api/room/{room_id}/join")
def join_room(room_id: str, body: ParticipantRequest) -> Dict[str, object]:
    session = RoomSession.join(ROOM_MANAGER, room_id, body.to_participant())
    _register(session)
    return _serialize_room_state(session)


@app.post("/api/room/{room_id}/start")
def start_room(room_id: str, body: ParticipantRequest) -> Dict[str, object]:
    session = _get_session(room_id, body.participant_id)
    ROOM_MANAGER.start_match(session.room_id)
    return _serialize_room_state(session)


@app.post("/api/room/{room_id}/move")
def room_move(room_id: str, body: RoomMoveRequest) -> Dict[str, object]:
    session = _get_session(room_id, body.participant_id)
    session.submit_move(body.cell_index)
    return _serialize_room_state(session)


@app.post("/api/room/{room_id}/reset")
def reset_room(room_id: str, body: ParticipantRequest) -> Dict[str, object]:
    session = _get_session(room_id, body.participant_id)
    session.reset_match()
    return _serialize_room_state(session)


@app.post("/api/room/{room_id}/leave")
def leave_room(room_id: str, body: ParticipantRequest) -> Dict[str, object]:
    session = _get_session(room_id, body.participant_id)
    session.leave()
    with SESSIONS_LOCK:
        ROOM_SESSIONS.pop((session.room_id, session.participant.id), None)
    return {"roomId": session.room_id, "left": True}


@app.post("/api/room/{room_id}/chat")
def send_chat(room_id: str, body: ChatRequest) -> Dict[str, object]:
    session = _get_session(room_id, body.participant_id)
    return {"sent": session.send_chat(body.text)}


@app.get("/api/room/{room_id}/chat")
def chat_history(room_id: str) -> List[Dict[str, Any]]:
    room_id = normalize_room_code(room_id)
    with translate_store_errors("load chat"):
        documents = STORE.query(
            messages_collection(room_id), order_by="timestamp", limit=CHAT_HISTORY_LIMIT
        )
    return [ChatMessage.from_document(d).to_document() for d in documents]


@app.get("/api/room/{room_id}/moves")
def move_history(room_id: str) -> List[Dict[str, Any]]:
    room_id = normalize_room_code(room_id)
    with translate_store_errors("load moves"):
        documents = STORE.query(moves_collection(room_id), order_by="sequenceNumber")
    return [MoveRecord.from_document(d).to_document() for d in documents]


@app.post("/api/rooms/sweep")
def sweep_rooms() -> Dict[str, object]:
    return {"expired": _expire_rooms()}


# ---------- Live events ----------


async def _handle_client_message(
    session: RoomSession, message: Dict[str, Any], websocket: WebSocket
) -> None:
    kind = message.get("type")
    try:
        if kind == "move":
            await asyncio.to_thread(session.submit_move, int(message["cellIndex"]))
        elif kind == "chat":
            await asyncio.to_thread(session.send_chat, str(message.get("text", "")))
        else:
            await websocket.send_json(
                {"type": "error", "error": "unknown_message", "message": str(kind)}
            )
    except GameError as exc:
        await websocket.send_json(
            {"type": "error", "error": exc.kind, "message": exc.message}
        )
    except (KeyError, TypeError, ValueError):
        await websocket.send_json(
            {"type": "error", "error": "bad_request", "message": "Malformed message"}
        )


@app.websocket("/ws/room/{room_id}")
async def room_events(
    websocket: WebSocket,
    room_id: str,
    participant_id: str = Query(alias="participantId"),
) -> None:
    await websocket.accept()
    try:
        session = _get_session(room_id, participant_id)
    except (GameError, HTTPException) as exc:
        detail = exc.message if isinstance(exc, GameError) else str(exc.detail)
        await websocket.send_json({"type": "error", "message": detail})
        await websocket.close()
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    remove = session.add_listener(
        lambda event: loop.call_soon_threadsafe(queue.put_nowait, event.to_json())
    )

    async def pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    await websocket.send_json({"type": "snapshot", **_serialize_room_state(session)})
    pump_task = asyncio.create_task(pump())
    try:
        while True:
            message = await websocket.receive_json()
            await _handle_client_message(session, message, websocket)
    except WebSocketDisconnect:
        pass
    finally:
        remove()
        pump_task.cancel()
