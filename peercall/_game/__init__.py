"""
Backgammon played alongside a call over the same signalling channel.
"""

from ._client import BackgammonClient
from ._models import (
    BAR,
    CHECKERS_PER_PLAYER,
    OFF,
    Board,
    Color,
    GamePhase,
    GameSession,
    Player,
    Point,
)
from ._referee import BackgammonReferee, has_legal_moves
from ._server import register_backgammon_handlers

__all__ = [
    "BAR",
    "OFF",
    "CHECKERS_PER_PLAYER",
    "Board",
    "Color",
    "GamePhase",
    "GameSession",
    "Player",
    "Point",
    "BackgammonClient",
    "BackgammonReferee",
    "has_legal_moves",
    "register_backgammon_handlers",
]
