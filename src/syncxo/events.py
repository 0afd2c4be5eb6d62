"""Render-relevant events the core emits towards the presentation layer."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    BOARD_UPDATED = "board_updated"
    STATUS_CHANGED = "status_changed"
    ROOM_STATUS_CHANGED = "room_status_changed"
    CHAT_APPENDED = "chat_appended"
    ROOM_CLOSED = "room_closed"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {"type": self.kind.value, **self.payload}


Listener = Callable[[Event], None]


class EventEmitter:
    """Minimal observer hub: listeners in, events out."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _emit(self, kind: EventKind, **payload: Any) -> None:
        event = Event(kind, payload)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # A broken view must not take the match down with it.
                logger.exception("Listener failed on %s event", kind.value)
