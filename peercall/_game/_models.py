"""
Backgammon data model shared by the client state machine and the referee.

Board indices run 0-23. White moves upwards (0 → 23) and bears off from its
home board 18-23; black moves downwards and bears off from 0-5. The bar is
addressed as `BAR` (-1) and bearing off as `OFF` (-2) in move requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .._types import GameError

# Wire events
EVENT_JOIN = "backgammon:join"
EVENT_START = "backgammon:start"
EVENT_ROLL = "backgammon:roll"
EVENT_MOVE = "backgammon:move"
EVENT_PASS = "backgammon:pass"
EVENT_LEAVE = "backgammon:leave"
EVENT_STATE = "backgammon:state"
EVENT_ERROR = "backgammon:error"
EVENT_GAME_OVER = "backgammon:game_over"

BAR = -1
OFF = -2
POINTS = 24
CHECKERS_PER_PLAYER = 15


class Color(str, Enum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> Color:
        return Color.BLACK if self == Color.WHITE else Color.WHITE

    @property
    def direction(self) -> int:
        """+1 for white, -1 for black."""
        return 1 if self == Color.WHITE else -1

    @property
    def home_board(self) -> range:
        return range(18, 24) if self == Color.WHITE else range(0, 6)


class GamePhase(str, Enum):
    """
    Phase of a match.

    WAITING → READY → ROLLING → MOVING → ROLLING (other player) ... → GAME_OVER
    """

    WAITING = "waiting"
    READY = "ready"
    ROLLING = "rolling"
    MOVING = "moving"
    GAME_OVER = "game_over"


@dataclass
class Point:
    checkers: int = 0
    color: Optional[Color] = None

    def is_open_for(self, color: Color) -> bool:
        """Empty, own checkers, or a single opposing blot."""
        return self.color is None or self.color == color or self.checkers <= 1

    def is_blot_of(self, color: Color) -> bool:
        return self.color == color and self.checkers == 1

    def to_dict(self) -> Dict[str, Any]:
        return {"checkers": self.checkers, "color": self.color.value if self.color else None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Point:
        color = data.get("color")
        return cls(checkers=int(data.get("checkers") or 0), color=Color(color) if color else None)


def _empty_points() -> List[Point]:
    return [Point() for _ in range(POINTS)]


@dataclass
class Board:
    """24 points plus the bar and borne-off counts of each color."""

    points: List[Point] = field(default_factory=_empty_points)
    white_bar: int = 0
    black_bar: int = 0
    white_off: int = 0
    black_off: int = 0

    @classmethod
    def initial(cls) -> Board:
        """Standard starting position."""
        board = cls()
        for index, count, color in (
            (0, 2, Color.WHITE),
            (11, 5, Color.WHITE),
            (16, 3, Color.WHITE),
            (18, 5, Color.WHITE),
            (23, 2, Color.BLACK),
            (12, 5, Color.BLACK),
            (7, 3, Color.BLACK),
            (5, 5, Color.BLACK),
        ):
            board.points[index] = Point(count, color)
        return board

    def bar(self, color: Color) -> int:
        return self.white_bar if color == Color.WHITE else self.black_bar

    def off(self, color: Color) -> int:
        return self.white_off if color == Color.WHITE else self.black_off

    def _add_bar(self, color: Color, amount: int) -> None:
        if color == Color.WHITE:
            self.white_bar += amount
        else:
            self.black_bar += amount

    def _add_off(self, color: Color) -> None:
        if color == Color.WHITE:
            self.white_off += 1
        else:
            self.black_off += 1

    def take(self, index: int) -> Color:
        """Remove one checker from a point."""
        point = self.points[index]
        if point.checkers == 0 or point.color is None:
            raise GameError(f"No checker on point {index}")
        color = point.color
        point.checkers -= 1
        if point.checkers == 0:
            point.color = None
        return color

    def place(self, index: int, color: Color) -> bool:
        """
        Put one checker on a point, hitting a lone opposing checker.

        Returns:
            True if an opposing checker was sent to the bar
        """
        point = self.points[index]
        hit = point.color is not None and point.color != color and point.checkers == 1
        if hit:
            self._add_bar(point.color, 1)
            point.checkers = 0
            point.color = None
        point.checkers += 1
        point.color = color
        return hit

    def enter_from_bar(self, color: Color, index: int) -> bool:
        self._add_bar(color, -1)
        return self.place(index, color)

    def bear_off(self, index: int) -> Color:
        color = self.take(index)
        self._add_off(color)
        return color

    def checker_count(self, color: Color) -> int:
        """Checkers of `color` on the board, the bar and off the board."""
        on_board = sum(p.checkers for p in self.points if p.color == color)
        return on_board + self.bar(color) + self.off(color)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": [p.to_dict() for p in self.points],
            "whiteBar": self.white_bar,
            "blackBar": self.black_bar,
            "whiteOff": self.white_off,
            "blackOff": self.black_off,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Board:
        points = [Point.from_dict(p or {}) for p in data.get("points") or []]
        if len(points) != POINTS:
            raise GameError(f"Board must have {POINTS} points, got {len(points)}")
        return cls(
            points=points,
            white_bar=int(data.get("whiteBar") or 0),
            black_bar=int(data.get("blackBar") or 0),
            white_off=int(data.get("whiteOff") or 0),
            black_off=int(data.get("blackOff") or 0),
        )


@dataclass
class Player:
    user_id: str
    sid: str
    color: Color


@dataclass
class GameSession:
    """
    One two-player match.

    Only `current_player` may roll (in ROLLING) or move (in MOVING).
    """

    game_id: str
    board: Board = field(default_factory=Board.initial)
    current_player: Color = Color.WHITE
    phase: GamePhase = GamePhase.WAITING
    dice: Optional[List[int]] = None
    players: List[Player] = field(default_factory=list)
    winner: Optional[Color] = None

    def player_by_sid(self, sid: str) -> Optional[Player]:
        return next((p for p in self.players if p.sid == sid), None)

    def player_by_user(self, user_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.user_id == user_id), None)

    def end_turn(self) -> None:
        self.dice = None
        self.phase = GamePhase.ROLLING
        self.current_player = self.current_player.opponent

    def state_for(self, player: Player) -> Dict[str, Any]:
        """The personalised `backgammon:state` payload for one player."""
        return {
            "board": self.board.to_dict(),
            "playerColor": player.color.value,
            "currentPlayer": self.current_player.value,
            "dice": list(self.dice) if self.dice is not None else None,
            "state": self.phase.value,
        }


__all__ = [
    "BAR",
    "OFF",
    "POINTS",
    "CHECKERS_PER_PLAYER",
    "Color",
    "GamePhase",
    "Point",
    "Board",
    "Player",
    "GameSession",
]
