"""
Client half of a Backgammon match.

The client never decides whether a move is legal. It mirrors the state the
referee pushes, gates what the local player may request, and turns two point
selections into one `backgammon:move` request.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, List, Optional

from .._transports import SignalingTransport, Subscription
from .._types import GameError, Payload
from .._utils import logger
from ._models import (
    BAR,
    EVENT_ERROR,
    EVENT_GAME_OVER,
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_MOVE,
    EVENT_PASS,
    EVENT_ROLL,
    EVENT_START,
    EVENT_STATE,
    OFF,
    POINTS,
    Board,
    Color,
    GamePhase,
)


class BackgammonClient:
    """
    Local view of one match, driven by `backgammon:*` messages.

    Example:
        >>> game = BackgammonClient(transport, "room-1", "alice")
        >>> await game.join()
        >>> await game.roll()
        >>> await game.select_point(0)
        >>> await game.select_point(3)
    """

    def __init__(
        self,
        transport: SignalingTransport,
        game_id: str,
        user_id: str,
        error_clear_delay: float = 3.0,
    ) -> None:
        self.transport = transport
        self.game_id = game_id
        self.user_id = user_id
        self.error_clear_delay = error_clear_delay

        self.board = Board.initial()
        self.my_color: Optional[Color] = None
        self.current_player = Color.WHITE
        self.dice: Optional[List[int]] = None
        self.phase = GamePhase.WAITING
        self.winner: Optional[Color] = None
        self.selected: Optional[int] = None
        self.error = ""

        self.on_change: Optional[Callable[[BackgammonClient], Any]] = None

        self._subscriptions: List[Subscription] = []
        self._clear_task: Optional[asyncio.Task] = None
        self._joined = False

    @property
    def is_my_turn(self) -> bool:
        return self.my_color is not None and self.my_color == self.current_player

    def _can_act(self, phase: GamePhase) -> bool:
        return self.phase == phase and self.is_my_turn

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """Subscribe to the match and ask to be seated."""
        if self._joined:
            return
        self._joined = True
        self._subscriptions = [
            self.transport.on(EVENT_STATE, self._on_state),
            self.transport.on(EVENT_ERROR, self._on_error),
            self.transport.on(EVENT_GAME_OVER, self._on_game_over),
        ]
        logger.info(f"🎲 Joining game {self.game_id}")
        await self.transport.send(EVENT_JOIN, {"gameId": self.game_id, "userId": self.user_id})

    async def leave(self) -> None:
        """Unsubscribe and tell the referee this player left. Idempotent."""
        if not self._joined:
            return
        self._joined = False
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        if self._clear_task is not None:
            self._clear_task.cancel()
            self._clear_task = None
        await self.transport.send(EVENT_LEAVE, {"gameId": self.game_id})

    async def __aenter__(self) -> BackgammonClient:
        await self.join()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.leave()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_state(self, payload: Payload) -> None:
        try:
            board = Board.from_dict(payload.get("board") or {})
            phase = GamePhase(payload.get("state"))
            current = Color(payload.get("currentPlayer"))
            color = payload.get("playerColor")
            my_color = Color(color) if color else None
        except (GameError, ValueError, TypeError) as e:
            logger.warning(f"Malformed game state ignored: {e}")
            return

        self.board = board
        self.phase = phase
        self.current_player = current
        self.my_color = my_color
        dice = payload.get("dice")
        self.dice = [int(d) for d in dice] if dice else None
        if phase != GamePhase.MOVING:
            self.selected = None
        if phase != GamePhase.GAME_OVER:
            self.winner = None
        logger.debug(f"📊 {self.game_id}: {phase.value}, {current.value} to play, dice {self.dice}")
        self._changed()

    def _on_error(self, payload: Payload) -> None:
        self._show_error(str(payload.get("message") or "Unknown error"))

    def _on_game_over(self, payload: Payload) -> None:
        try:
            self.winner = Color(payload.get("winner"))
        except ValueError:
            logger.warning(f"Unknown winner {payload.get('winner')!r}")
            return
        self.phase = GamePhase.GAME_OVER
        self.selected = None
        logger.info(f"🏆 Game over, {self.winner.value} wins")
        self._changed()

    def _show_error(self, message: str) -> None:
        logger.error(f"❌ Backgammon error: {message}")
        self.error = message
        if self._clear_task is not None:
            self._clear_task.cancel()
        self._clear_task = asyncio.ensure_future(self._clear_error_later())
        self._changed()

    async def _clear_error_later(self) -> None:
        await asyncio.sleep(self.error_clear_delay)
        self.error = ""
        self._clear_task = None
        self._changed()

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            result = self.on_change(self)
        except Exception as e:
            logger.error(f"Error in game change callback: {e}")
            return
        if inspect.isawaitable(result):
            asyncio.ensure_future(result)

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Either seated player may start once both have joined."""
        logger.info("🎮 Starting game")
        await self.transport.send(EVENT_START, {"gameId": self.game_id})

    async def roll(self) -> bool:
        """
        Ask the referee to roll.

        Returns:
            False if it is not this player's turn to roll
        """
        if not self._can_act(GamePhase.ROLLING):
            self._show_error("Not your turn")
            return False
        logger.info("🎲 Rolling dice")
        await self.transport.send(EVENT_ROLL, {"gameId": self.game_id})
        return True

    async def _request_move(self, source: int, target: int) -> None:
        logger.info(f"🎯 Attempting move from {source} to {target}")
        self.selected = None
        await self.transport.send(
            EVENT_MOVE, {"gameId": self.game_id, "from": source, "to": target}
        )

    async def select_point(self, index: int) -> bool:
        """
        Select a source point, or move the selected checker to `index`.

        Selecting the selected point again deselects it. Any other point
        sends a move request and clears the selection.

        Returns:
            True if a move request was sent
        """
        if not self._can_act(GamePhase.MOVING):
            return False
        if not 0 <= index < POINTS:
            return False

        if self.selected is None:
            point = self.board.points[index]
            if point.color == self.my_color and point.checkers > 0:
                self.selected = index
                logger.debug(f"✅ Selected point {index}")
                self._changed()
            return False

        if self.selected == index:
            logger.debug(f"↩️ Deselected point {index}")
            self.selected = None
            self._changed()
            return False

        await self._request_move(self.selected, index)
        self._changed()
        return True

    def select_bar(self) -> bool:
        """Toggle selection of the bar; only possible with own checkers on it."""
        if not self._can_act(GamePhase.MOVING):
            return False
        if self.board.bar(self.my_color) == 0:
            return False
        self.selected = None if self.selected == BAR else BAR
        self._changed()
        return self.selected == BAR

    async def bear_off(self) -> bool:
        """Bear the selected checker off the board."""
        if not self._can_act(GamePhase.MOVING) or self.selected in (None, BAR):
            return False
        await self._request_move(self.selected, OFF)
        self._changed()
        return True

    async def pass_turn(self) -> bool:
        """Give up the remaining dice; the referee refuses while a move exists."""
        if not self._can_act(GamePhase.MOVING):
            return False
        self.selected = None
        await self.transport.send(EVENT_PASS, {"gameId": self.game_id})
        return True

    def __repr__(self) -> str:
        color = self.my_color.value if self.my_color else "spectator"
        return f"<BackgammonClient({self.game_id}, {color}, {self.phase.value})>"
