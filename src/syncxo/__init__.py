"""SyncXO package exposing the board model, opponent, controllers and web app."""

from .ai import SearchOpponent, best_move, random_move
from .api import app
from .game import Board
from .match import Match, MatchController
from .rooms import RoomManager
from .session import RoomSession
from .store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "Board",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Match",
    "MatchController",
    "RoomManager",
    "RoomSession",
    "SearchOpponent",
    "app",
    "best_move",
    "random_move",
]
