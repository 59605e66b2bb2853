"""
Socket.IO handlers for Backgammon.

`register_backgammon_handlers` binds the `backgammon:*` events on a
python-socketio `AsyncServer` and answers every accepted request with a
personalised `backgammon:state` to each seated player. Rejected requests get
a `backgammon:error` addressed to the requesting socket only.
"""

from __future__ import annotations

from typing import Any, Optional

import socketio

from .._types import GameError
from .._utils import logger
from ._models import (
    EVENT_ERROR,
    EVENT_GAME_OVER,
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_MOVE,
    EVENT_PASS,
    EVENT_ROLL,
    EVENT_START,
    EVENT_STATE,
    GamePhase,
    GameSession,
)
from ._referee import BackgammonReferee


def register_backgammon_handlers(
    server: socketio.AsyncServer,
    referee: Optional[BackgammonReferee] = None,
    namespace: Optional[str] = None,
) -> BackgammonReferee:
    """
    Bind the Backgammon events on `server`.

    The handlers also listen to `disconnect`; an application that needs its
    own disconnect handler should call `referee.disconnect(sid)` from it.

    Args:
        server: python-socketio AsyncServer
        referee: Rules engine to use (a fresh one by default)
        namespace: Socket.IO namespace

    Returns:
        The referee holding the games
    """
    referee = referee or BackgammonReferee()

    async def send_state(game: GameSession) -> None:
        for player in game.players:
            await server.emit(
                EVENT_STATE, game.state_for(player), to=player.sid, namespace=namespace
            )

    async def send_error(sid: str, message: str) -> None:
        await server.emit(EVENT_ERROR, {"message": message}, to=sid, namespace=namespace)

    async def notify_opponent(game: GameSession, sid: str, message: str) -> None:
        await server.emit(
            EVENT_ERROR,
            {"message": message},
            room=game.game_id,
            skip_sid=sid,
            namespace=namespace,
        )

    def game_id_of(data: Any) -> str:
        if not isinstance(data, dict) or not data.get("gameId"):
            raise GameError("Game not found")
        return str(data["gameId"])

    @server.on(EVENT_JOIN, namespace=namespace)
    async def on_join(sid: str, data: Any) -> None:
        try:
            game_id = game_id_of(data)
            user_id = data.get("userId")
            if not user_id:
                raise GameError("Failed to join game")
            game = referee.join(game_id, str(user_id), sid)
        except GameError as e:
            await send_error(sid, str(e))
            return
        await server.enter_room(sid, game_id, namespace=namespace)
        await send_state(game)

    @server.on(EVENT_START, namespace=namespace)
    async def on_start(sid: str, data: Any) -> None:
        try:
            game = referee.start(game_id_of(data))
        except GameError as e:
            await send_error(sid, str(e))
            return
        await send_state(game)

    @server.on(EVENT_ROLL, namespace=namespace)
    async def on_roll(sid: str, data: Any) -> None:
        try:
            game_id = game_id_of(data)
            referee.roll(game_id, sid)
        except GameError as e:
            await send_error(sid, str(e))
            return
        await send_state(referee.get(game_id))

    @server.on(EVENT_MOVE, namespace=namespace)
    async def on_move(sid: str, data: Any) -> None:
        try:
            game_id = game_id_of(data)
            source, target = int(data["from"]), int(data["to"])
        except (GameError, KeyError, TypeError, ValueError):
            await send_error(sid, "Failed to make move")
            return
        try:
            game = referee.move(game_id, sid, source, target)
        except GameError as e:
            await send_error(sid, str(e))
            return
        if game.phase == GamePhase.GAME_OVER:
            await server.emit(
                EVENT_GAME_OVER,
                {"winner": game.winner.value},
                room=game.game_id,
                namespace=namespace,
            )
        await send_state(game)

    @server.on(EVENT_PASS, namespace=namespace)
    async def on_pass(sid: str, data: Any) -> None:
        try:
            game = referee.pass_turn(game_id_of(data), sid)
        except GameError as e:
            await send_error(sid, str(e))
            return
        await send_state(game)

    @server.on(EVENT_LEAVE, namespace=namespace)
    async def on_leave(sid: str, data: Any) -> None:
        try:
            game_id = game_id_of(data)
        except GameError:
            return
        game = referee.leave(game_id, sid)
        if game is not None:
            await notify_opponent(game, sid, "Opponent left the game")
        await server.leave_room(sid, game_id, namespace=namespace)

    @server.on("disconnect", namespace=namespace)
    async def on_disconnect(sid: str, *args: Any) -> None:
        for game in referee.disconnect(sid):
            await notify_opponent(game, sid, "Opponent disconnected")

    logger.debug("🎲 Backgammon handlers registered")
    return referee
