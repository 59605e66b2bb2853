"""
Authoritative Backgammon rules.

The referee owns every `GameSession` and adjudicates each request coming from
a player's socket. A rejected request raises `GameError` with the message
the requesting player should see; the board is never touched in that case.
"""

from __future__ import annotations

import random
from typing import Dict, List, Optional

from .._types import GameError
from .._utils import logger
from ._models import (
    BAR,
    CHECKERS_PER_PLAYER,
    OFF,
    POINTS,
    Board,
    Color,
    GamePhase,
    GameSession,
    Player,
)


def _on_board(index: int) -> bool:
    return 0 <= index < POINTS


def bar_origin(color: Color) -> int:
    """Virtual point a checker on the bar enters from."""
    return -1 if color == Color.WHITE else POINTS


def can_bear_off(board: Board, color: Color) -> bool:
    """All of `color`'s checkers are in its home board and none is on the bar."""
    if board.bar(color) > 0:
        return False
    home = color.home_board
    return all(
        index in home
        for index, point in enumerate(board.points)
        if point.color == color and point.checkers > 0
    )


def bear_off_distance(color: Color, index: int) -> int:
    return POINTS - index if color == Color.WHITE else index + 1


def has_checkers_behind(board: Board, color: Color, index: int) -> bool:
    """Own checkers further from bearing off than `index`, inside the home board."""
    behind = range(18, index) if color == Color.WHITE else range(index + 1, 6)
    return any(
        board.points[i].color == color and board.points[i].checkers > 0 for i in behind
    )


def bear_off_die(board: Board, color: Color, index: int, dice: List[int]) -> Optional[int]:
    """
    Die that bears a checker off from `index`, if any.

    An exact die is always usable; a higher one only when no own checker
    sits further from home.
    """
    distance = bear_off_distance(color, index)
    if distance in dice:
        return distance
    higher = [d for d in dice if d > distance]
    if higher and not has_checkers_behind(board, color, index):
        return higher[0]
    return None


def dice_for_distance(
    board: Board, color: Color, origin: int, distance: int, dice: List[int]
) -> List[int]:
    """
    Dice that cover `distance` from `origin`, or an empty list.

    Single die first; then any multiple of a double with every intermediate
    point open; then both different dice in either order through an open
    intermediate point.
    """
    if distance <= 0:
        return []
    if distance in dice:
        return [distance]

    step = color.direction
    if len(dice) >= 2 and all(d == dice[0] for d in dice):
        die = dice[0]
        needed, remainder = divmod(distance, die)
        if remainder or needed > len(dice):
            return []
        position = origin
        for _ in range(needed):
            position += die * step
            if _on_board(position) and not board.points[position].is_open_for(color):
                logger.debug(f"Point {position} blocked for {color.value}")
                return []
        return [die] * needed

    if len(dice) == 2 and distance == dice[0] + dice[1]:
        for first in dice:
            middle = origin + first * step
            if _on_board(middle) and board.points[middle].is_open_for(color):
                return list(dice)
    return []


def has_legal_moves(board: Board, color: Color, dice: List[int]) -> bool:
    """Whether `color` can use at least one of `dice`."""
    step = color.direction

    if board.bar(color) > 0:
        origin = bar_origin(color)
        return any(
            board.points[origin + die * step].is_open_for(color) for die in set(dice)
        )

    bearing_off = can_bear_off(board, color)
    for index, point in enumerate(board.points):
        if point.color != color or point.checkers == 0:
            continue
        for die in set(dice):
            target = index + die * step
            if _on_board(target) and board.points[target].is_open_for(color):
                return True
        if bearing_off and bear_off_die(board, color, index, dice) is not None:
            return True
        for total in {sum(dice[:n]) for n in range(2, len(dice) + 1)}:
            target = index + total * step
            if _on_board(target) and dice_for_distance(board, color, index, total, dice):
                if board.points[target].is_open_for(color):
                    return True
    return False


class BackgammonReferee:
    """
    Keeps the authoritative state of every running match.

    Args:
        rng: Random source for dice (a seeded `random.Random` in tests)
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()
        self.games: Dict[str, GameSession] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, game_id: str) -> GameSession:
        game = self.games.get(game_id)
        if game is None:
            raise GameError("Game not found")
        return game

    def _current_player(self, game: GameSession, sid: str) -> Player:
        player = game.player_by_sid(sid)
        if player is None or player.color != game.current_player:
            raise GameError("Not your turn")
        return player

    # ------------------------------------------------------------------
    # Seating
    # ------------------------------------------------------------------

    def join(self, game_id: str, user_id: str, sid: str) -> GameSession:
        """
        Seat a player, creating the game on first join.

        The first player is white, the second black. A returning user keeps
        their color and is re-bound to the new socket.
        """
        game = self.games.get(game_id)
        if game is None:
            game = GameSession(game_id=game_id)
            self.games[game_id] = game
            logger.info(f"🎲 Created game {game_id}")

        player = game.player_by_user(user_id)
        if player is not None:
            player.sid = sid
            logger.info(f"🎲 {user_id} rejoined {game_id} as {player.color.value}")
        else:
            if len(game.players) >= 2:
                raise GameError("Game is full")
            taken = {p.color for p in game.players}
            color = Color.WHITE if Color.WHITE not in taken else Color.BLACK
            game.players.append(Player(user_id=user_id, sid=sid, color=color))
            logger.info(f"🎲 {user_id} joined {game_id} as {color.value}")

        if len(game.players) == 2 and game.phase == GamePhase.WAITING:
            game.phase = GamePhase.READY
        return game

    def start(self, game_id: str) -> GameSession:
        """White rolls first. Starting again after game over resets the board."""
        game = self.get(game_id)
        if len(game.players) != 2:
            raise GameError("Need 2 players to start")
        if game.phase == GamePhase.GAME_OVER:
            game.board = Board.initial()
            game.winner = None
        elif game.phase != GamePhase.READY:
            raise GameError("Game already started")

        game.phase = GamePhase.ROLLING
        game.current_player = Color.WHITE
        game.dice = None
        logger.info(f"🎮 Game {game_id} started")
        return game

    def leave(self, game_id: str, sid: str) -> Optional[GameSession]:
        """
        Remove the player on `sid`.

        Returns:
            The game if an opponent is still seated, None otherwise
        """
        game = self.games.get(game_id)
        if game is None:
            return None
        game.players = [p for p in game.players if p.sid != sid]
        if not game.players:
            del self.games[game_id]
            logger.info(f"🗑️ Deleted empty game {game_id}")
            return None
        return game

    def disconnect(self, sid: str) -> List[GameSession]:
        """Remove `sid` from every game; returns the games with an opponent left."""
        remaining = []
        for game_id, game in list(self.games.items()):
            if game.player_by_sid(sid) is None:
                continue
            game = self.leave(game_id, sid)
            if game is not None:
                remaining.append(game)
        return remaining

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def roll(self, game_id: str, sid: str) -> List[int]:
        """Roll two dice; doubles give four moves."""
        game = self.get(game_id)
        player = self._current_player(game, sid)
        if game.phase != GamePhase.ROLLING:
            raise GameError("Cannot roll now")

        first, second = self.rng.randint(1, 6), self.rng.randint(1, 6)
        game.dice = [first] * 4 if first == second else [first, second]
        game.phase = GamePhase.MOVING
        logger.info(f"🎲 {player.color.value} rolled {game.dice}")
        return list(game.dice)

    def move(self, game_id: str, sid: str, source: int, target: int) -> GameSession:
        """
        Move one checker from `source` to `target`.

        `source == BAR` enters from the bar, `target == OFF` bears off. A
        distance may be covered by one die or by a combined path whose
        intermediate points are open.
        """
        game = self.get(game_id)
        player = self._current_player(game, sid)
        if game.phase != GamePhase.MOVING or not game.dice:
            raise GameError("Roll the dice first")

        color = player.color
        board = game.board
        dice = game.dice
        from_bar = source == BAR
        bearing_off = target == OFF

        if not from_bar and board.bar(color) > 0:
            raise GameError("Must move checker from bar first!")

        if bearing_off:
            if from_bar:
                raise GameError("Cannot bear off from the bar")
            if not can_bear_off(board, color):
                raise GameError("Cannot bear off - not all checkers in home board!")
            if not _on_board(source) or board.points[source].color != color:
                raise GameError("No checker to bear off from this point")
            die = bear_off_die(board, color, source, dice)
            if die is None:
                distance = bear_off_distance(color, source)
                if any(d > distance for d in dice):
                    raise GameError(
                        f"Cannot bear off - need exact die {distance} or move other checkers first"
                    )
                raise GameError(f"Invalid bear off - no die matches distance {distance}")
            used = [die]
        else:
            if from_bar:
                if board.bar(color) == 0:
                    raise GameError("No checker on the bar")
                entry = range(0, 6) if color == Color.WHITE else range(18, 24)
                if target not in entry:
                    raise GameError("Invalid entry point from bar")
                origin = bar_origin(color)
            else:
                if not _on_board(source) or not _on_board(target):
                    raise GameError("Invalid point")
                origin = source
            distance = (target - origin) * color.direction
            if distance <= 0:
                raise GameError("Invalid move - wrong direction")
            used = dice_for_distance(board, color, origin, distance, dice)
            if not used:
                raise GameError(
                    f"Invalid move - distance {distance} doesn't match available dice {dice}"
                )
            if not from_bar and board.points[source].color != color:
                raise GameError("Invalid move - no checker to move from this point")
            if not board.points[target].is_open_for(color):
                raise GameError("Invalid move - destination blocked by opponent")

        if bearing_off:
            board.bear_off(source)
            logger.info(f"🏁 {color.value} bore off from point {source}")
        elif from_bar:
            if board.enter_from_bar(color, target):
                logger.info(f"💥 {color.value} hit a {color.opponent.value} checker")
        else:
            board.take(source)
            if board.place(target, color):
                logger.info(f"💥 {color.value} hit a {color.opponent.value} checker")

        for die in used:
            dice.remove(die)
        logger.debug(f"{color.value} moved {source} → {target}, dice left {dice}")

        if not dice:
            game.end_turn()

        if board.off(color) == CHECKERS_PER_PLAYER:
            game.phase = GamePhase.GAME_OVER
            game.winner = color
            game.dice = None
            logger.info(f"🏆 {color.value} wins game {game_id}")
        return game

    def pass_turn(self, game_id: str, sid: str) -> GameSession:
        """Give up the remaining dice; only allowed with no legal move."""
        game = self.get(game_id)
        player = self._current_player(game, sid)
        if game.phase != GamePhase.MOVING:
            raise GameError("Can only pass during moving phase")
        if has_legal_moves(game.board, player.color, game.dice or []):
            raise GameError("You still have legal moves available! Cannot pass turn.")

        logger.info(f"⏭️ {player.color.value} passed")
        game.end_turn()
        return game
