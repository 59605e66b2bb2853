"""Tests for the Backgammon referee, its Socket.IO handlers and the player client."""

import pytest

from peercall import GameError, LocalRelay
from peercall._game import (
    BAR,
    CHECKERS_PER_PLAYER,
    OFF,
    BackgammonClient,
    BackgammonReferee,
    Board,
    Color,
    GamePhase,
    GameSession,
    Player,
    Point,
    has_legal_moves,
    register_backgammon_handlers,
)
from peercall._game._models import (
    EVENT_ERROR,
    EVENT_GAME_OVER,
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_MOVE,
    EVENT_PASS,
    EVENT_ROLL,
    EVENT_STATE,
)

from conftest import settle


class Dice:
    """Stands in for random.Random with a scripted sequence of rolls."""

    def __init__(self, *values):
        self.values = list(values)

    def randint(self, low, high):
        return self.values.pop(0)


def seated(referee, game_id="g1"):
    referee.join(game_id, "alice", "sid-a")
    referee.join(game_id, "bob", "sid-b")
    return referee.get(game_id)


def board_with(*placements, **counts):
    board = Board()
    for index, checkers, color in placements:
        board.points[index] = Point(checkers, color)
    for name, value in counts.items():
        setattr(board, name, value)
    return board


def moving(referee, board, dice, current=Color.WHITE):
    game = seated(referee)
    game.board = board
    game.phase = GamePhase.MOVING
    game.dice = list(dice)
    game.current_player = current
    return game


@pytest.fixture
def referee():
    return BackgammonReferee(rng=Dice(3, 5, 4, 4))


# =============================================================================
# SEATING
# =============================================================================


class TestSeating:
    def test_two_players_make_a_ready_game(self, referee):
        game = seated(referee)
        assert [(p.user_id, p.color) for p in game.players] == [
            ("alice", Color.WHITE),
            ("bob", Color.BLACK),
        ]
        assert game.phase == GamePhase.READY

    def test_rejoin_keeps_color(self, referee):
        seated(referee)
        game = referee.join("g1", "bob", "sid-b2")
        assert game.player_by_user("bob").sid == "sid-b2"
        assert game.player_by_sid("sid-b2").color == Color.BLACK
        assert len(game.players) == 2

    def test_third_player_refused(self, referee):
        seated(referee)
        with pytest.raises(GameError, match="Game is full"):
            referee.join("g1", "carol", "sid-c")

    def test_start_needs_two_players(self, referee):
        referee.join("g1", "alice", "sid-a")
        with pytest.raises(GameError, match="Need 2 players"):
            referee.start("g1")

    def test_start_once(self, referee):
        seated(referee)
        game = referee.start("g1")
        assert game.phase == GamePhase.ROLLING
        assert game.current_player == Color.WHITE
        with pytest.raises(GameError, match="already started"):
            referee.start("g1")

    def test_unknown_game(self, referee):
        with pytest.raises(GameError, match="Game not found"):
            referee.roll("nope", "sid-a")

    def test_leave_and_cleanup(self, referee):
        seated(referee)
        assert referee.leave("g1", "sid-a") is not None
        assert referee.leave("g1", "sid-b") is None
        assert "g1" not in referee.games

    def test_disconnect_reports_games_with_opponent(self, referee):
        seated(referee, "g1")
        seated(referee, "g2")
        remaining = referee.disconnect("sid-a")
        assert sorted(g.game_id for g in remaining) == ["g1", "g2"]


# =============================================================================
# ROLLING
# =============================================================================


class TestRoll:
    def test_roll_only_on_own_turn(self, referee):
        seated(referee)
        referee.start("g1")
        with pytest.raises(GameError, match="Not your turn"):
            referee.roll("g1", "sid-b")

    def test_roll_and_doubles(self, referee):
        game = seated(referee)
        referee.start("g1")

        assert referee.roll("g1", "sid-a") == [3, 5]
        assert game.phase == GamePhase.MOVING
        with pytest.raises(GameError, match="Cannot roll now"):
            referee.roll("g1", "sid-a")

        game.end_turn()
        assert referee.roll("g1", "sid-b") == [4, 4, 4, 4]

    def test_move_before_roll(self, referee):
        seated(referee)
        referee.start("g1")
        with pytest.raises(GameError, match="Roll the dice first"):
            referee.move("g1", "sid-a", 0, 3)


# =============================================================================
# MOVING
# =============================================================================


class TestMove:
    def test_single_die_move(self, referee):
        game = moving(referee, Board.initial(), [3, 5])
        referee.move("g1", "sid-a", 0, 3)

        assert game.board.points[0].checkers == 1
        assert game.board.points[3] == Point(1, Color.WHITE)
        assert game.dice == [5]
        assert game.phase == GamePhase.MOVING

    def test_combined_move_ends_turn(self, referee):
        game = moving(referee, Board.initial(), [3, 5])
        referee.move("g1", "sid-a", 0, 8)

        assert game.board.points[8] == Point(1, Color.WHITE)
        assert game.dice is None
        assert game.current_player == Color.BLACK
        assert game.phase == GamePhase.ROLLING

    def test_doubles_move_through_open_points(self, referee):
        game = moving(referee, Board.initial(), [2, 2, 2, 2])
        referee.move("g1", "sid-a", 0, 6)
        assert game.dice == [2]

    @pytest.mark.parametrize(
        "source, target, message",
        [
            (0, 5, "destination blocked"),
            (0, 2, "doesn't match"),
            (11, 9, "wrong direction"),
            (3, 6, "no checker to move"),
            (0, 30, "Invalid point"),
        ],
    )
    def test_rejected_moves_leave_board_untouched(self, referee, source, target, message):
        game = moving(referee, Board.initial(), [3, 5])
        before = game.board.to_dict()

        with pytest.raises(GameError, match=message):
            referee.move("g1", "sid-a", source, target)

        assert game.board.to_dict() == before
        assert game.dice == [3, 5]

    def test_hit_sends_blot_to_bar(self, referee):
        board = board_with((0, 15, Color.WHITE), (3, 1, Color.BLACK), (20, 14, Color.BLACK))
        game = moving(referee, board, [3, 1])

        referee.move("g1", "sid-a", 0, 3)

        assert game.board.black_bar == 1
        assert game.board.points[3] == Point(1, Color.WHITE)
        assert game.board.checker_count(Color.BLACK) == CHECKERS_PER_PLAYER
        assert game.board.checker_count(Color.WHITE) == CHECKERS_PER_PLAYER

    def test_checker_on_bar_moves_first(self, referee):
        board = board_with((12, 14, Color.BLACK), (0, 15, Color.WHITE), black_bar=1)
        moving(referee, board, [2, 6], current=Color.BLACK)

        with pytest.raises(GameError, match="from bar first"):
            referee.move("g1", "sid-b", 12, 10)

        game = referee.move("g1", "sid-b", BAR, 22)
        assert game.board.black_bar == 0
        assert game.board.points[22] == Point(1, Color.BLACK)
        assert game.dice == [6]

    def test_bar_entry_point_rules(self, referee):
        board = board_with((12, 14, Color.BLACK), (22, 2, Color.WHITE), black_bar=1)
        moving(referee, board, [2, 6], current=Color.BLACK)

        with pytest.raises(GameError, match="blocked"):
            referee.move("g1", "sid-b", BAR, 22)
        with pytest.raises(GameError, match="Invalid entry point"):
            referee.move("g1", "sid-b", BAR, 10)

    def test_empty_bar(self, referee):
        moving(referee, Board.initial(), [3, 5])
        with pytest.raises(GameError, match="No checker on the bar"):
            referee.move("g1", "sid-a", BAR, 2)


# =============================================================================
# BEARING OFF
# =============================================================================


class TestBearOff:
    def test_last_checker_wins(self, referee):
        board = board_with((22, 1, Color.WHITE), (3, 15, Color.BLACK), white_off=14)
        game = moving(referee, board, [2, 4])

        referee.move("g1", "sid-a", 22, OFF)

        assert game.board.white_off == CHECKERS_PER_PLAYER
        assert game.phase == GamePhase.GAME_OVER
        assert game.winner == Color.WHITE
        assert game.dice is None

    def test_higher_die_when_nothing_behind(self, referee):
        board = board_with((22, 1, Color.WHITE), (23, 1, Color.WHITE), white_off=13)
        game = moving(referee, board, [5, 6])

        referee.move("g1", "sid-a", 22, OFF)
        assert game.dice == [6]

    def test_higher_die_refused_with_checker_behind(self, referee):
        board = board_with((19, 1, Color.WHITE), (22, 1, Color.WHITE), white_off=13)
        moving(referee, board, [6])

        with pytest.raises(GameError, match="need exact die 2"):
            referee.move("g1", "sid-a", 22, OFF)

    def test_not_all_home(self, referee):
        moving(referee, Board.initial(), [6, 1])
        with pytest.raises(GameError, match="not all checkers in home board"):
            referee.move("g1", "sid-a", 18, OFF)

    def test_restart_after_game_over(self, referee):
        game = seated(referee)
        game.phase = GamePhase.GAME_OVER
        game.winner = Color.BLACK
        game.board = Board()

        referee.start("g1")

        assert game.board == Board.initial()
        assert game.winner is None
        assert game.phase == GamePhase.ROLLING


# =============================================================================
# PASSING
# =============================================================================


class TestPass:
    def test_pass_refused_with_legal_moves(self, referee):
        moving(referee, Board.initial(), [3, 5])
        with pytest.raises(GameError, match="still have legal moves"):
            referee.pass_turn("g1", "sid-a")

    def test_pass_when_bar_entry_blocked(self, referee):
        board = board_with(
            *[(i, 2, Color.BLACK) for i in range(6)],
            (12, 14, Color.WHITE),
            black_bar=3,
            white_bar=1,
        )
        game = moving(referee, board, [1, 2])

        referee.pass_turn("g1", "sid-a")

        assert game.current_player == Color.BLACK
        assert game.phase == GamePhase.ROLLING
        assert game.dice is None

    def test_pass_only_while_moving(self, referee):
        seated(referee)
        referee.start("g1")
        with pytest.raises(GameError, match="moving phase"):
            referee.pass_turn("g1", "sid-a")

    def test_bear_off_counts_as_legal_move(self):
        board = board_with((23, 1, Color.WHITE), white_off=14)
        assert has_legal_moves(board, Color.WHITE, [6])
        blocked = board_with((23, 1, Color.WHITE), (15, 14, Color.WHITE), (21, 2, Color.BLACK))
        assert not has_legal_moves(blocked, Color.WHITE, [6])


# =============================================================================
# SOCKET.IO HANDLERS
# =============================================================================


class FakeServer:
    """The slice of python-socketio's AsyncServer the handlers use."""

    def __init__(self):
        self.handlers = {}
        self.emitted = []
        self.rooms = []

    def on(self, event, handler=None, namespace=None):
        def register(fn):
            self.handlers[event] = fn
            return fn

        return register(handler) if handler else register

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        self.emitted.append((event, data, to or room, skip_sid))

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.append(("enter", sid, room))

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.append(("leave", sid, room))

    async def trigger(self, event, sid, data=None):
        await self.handlers[event](sid, data)

    def sent(self, event):
        return [e for e in self.emitted if e[0] == event]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def server_referee(server):
    return register_backgammon_handlers(server, referee=BackgammonReferee(rng=Dice(6, 2)))


async def join_both(server):
    await server.trigger(EVENT_JOIN, "sid-a", {"gameId": "g1", "userId": "alice"})
    await server.trigger(EVENT_JOIN, "sid-b", {"gameId": "g1", "userId": "bob"})
    server.emitted.clear()


class TestServerHandlers:
    @pytest.mark.asyncio
    async def test_join_sends_personal_state(self, server, server_referee):
        await server.trigger(EVENT_JOIN, "sid-a", {"gameId": "g1", "userId": "alice"})
        await server.trigger(EVENT_JOIN, "sid-b", {"gameId": "g1", "userId": "bob"})

        assert ("enter", "sid-b", "g1") in server.rooms
        last_two = server.sent(EVENT_STATE)[-2:]
        assert [(e[2], e[1]["playerColor"]) for e in last_two] == [
            ("sid-a", "white"),
            ("sid-b", "black"),
        ]
        assert last_two[0][1]["state"] == "ready"

    @pytest.mark.asyncio
    async def test_join_without_user(self, server, server_referee):
        await server.trigger(EVENT_JOIN, "sid-a", {"gameId": "g1"})
        assert server.emitted == [(EVENT_ERROR, {"message": "Failed to join game"}, "sid-a", None)]

    @pytest.mark.asyncio
    async def test_wrong_player_gets_error_only(self, server, server_referee):
        await join_both(server)
        await server.trigger("backgammon:start", "sid-b", {"gameId": "g1"})
        server.emitted.clear()

        await server.trigger(EVENT_ROLL, "sid-b", {"gameId": "g1"})

        assert server.emitted == [(EVENT_ERROR, {"message": "Not your turn"}, "sid-b", None)]

    @pytest.mark.asyncio
    async def test_roll_broadcasts_dice(self, server, server_referee):
        await join_both(server)
        await server.trigger("backgammon:start", "sid-a", {"gameId": "g1"})
        server.emitted.clear()

        await server.trigger(EVENT_ROLL, "sid-a", {"gameId": "g1"})

        states = server.sent(EVENT_STATE)
        assert len(states) == 2
        assert all(e[1]["dice"] == [6, 2] and e[1]["state"] == "moving" for e in states)

    @pytest.mark.asyncio
    async def test_malformed_move(self, server, server_referee):
        await join_both(server)
        await server.trigger(EVENT_MOVE, "sid-a", {"gameId": "g1", "from": "x"})
        assert server.emitted == [(EVENT_ERROR, {"message": "Failed to make move"}, "sid-a", None)]

    @pytest.mark.asyncio
    async def test_winning_move_announces_game_over(self, server, server_referee):
        await join_both(server)
        game = server_referee.get("g1")
        game.board = board_with((22, 1, Color.WHITE), (3, 15, Color.BLACK), white_off=14)
        game.phase = GamePhase.MOVING
        game.dice = [2, 5]

        await server.trigger(EVENT_MOVE, "sid-a", {"gameId": "g1", "from": 22, "to": OFF})

        assert server.emitted[0] == (EVENT_GAME_OVER, {"winner": "white"}, "g1", None)
        assert all(e[1]["state"] == "game_over" for e in server.sent(EVENT_STATE))

    @pytest.mark.asyncio
    async def test_pass_refused(self, server, server_referee):
        await join_both(server)
        await server.trigger("backgammon:start", "sid-a", {"gameId": "g1"})
        await server.trigger(EVENT_ROLL, "sid-a", {"gameId": "g1"})
        server.emitted.clear()

        await server.trigger(EVENT_PASS, "sid-a", {"gameId": "g1"})

        assert server.sent(EVENT_STATE) == []
        assert "legal moves" in server.sent(EVENT_ERROR)[0][1]["message"]

    @pytest.mark.asyncio
    async def test_leave_tells_opponent(self, server, server_referee):
        await join_both(server)
        await server.trigger(EVENT_LEAVE, "sid-a", {"gameId": "g1"})

        assert server.emitted == [
            (EVENT_ERROR, {"message": "Opponent left the game"}, "g1", "sid-a")
        ]
        assert ("leave", "sid-a", "g1") in server.rooms

    @pytest.mark.asyncio
    async def test_disconnect_tells_opponent(self, server, server_referee):
        await join_both(server)
        await server.handlers["disconnect"]("sid-b")

        assert server.emitted == [
            (EVENT_ERROR, {"message": "Opponent disconnected"}, "g1", "sid-b")
        ]
        assert [p.user_id for p in server_referee.get("g1").players] == ["alice"]


# =============================================================================
# PLAYER CLIENT
# =============================================================================


def state_payload(phase, current=Color.WHITE, color=Color.WHITE, dice=None, board=None):
    game = GameSession("g1", board=board or Board.initial(), phase=phase, current_player=current)
    game.dice = dice
    return game.state_for(Player("alice", "sid-a", color))


@pytest.fixture
def game_relay():
    return LocalRelay()


@pytest.fixture
def player(game_relay):
    return BackgammonClient(game_relay.connect("alice"), "g1", "alice", error_clear_delay=0.02)


def requests(relay, event):
    return [m.payload for m in relay.sent(event)]


class TestPlayerClient:
    @pytest.mark.asyncio
    async def test_join_once(self, player, game_relay):
        await player.join()
        await player.join()
        assert requests(game_relay, EVENT_JOIN) == [{"gameId": "g1", "userId": "alice"}]

    @pytest.mark.asyncio
    async def test_state_updates_view(self, player):
        changes = []
        player.on_change = changes.append
        await player.join()

        player.transport.dispatch(EVENT_STATE, state_payload(GamePhase.MOVING, dice=[3, 5]))

        assert player.my_color == Color.WHITE
        assert player.phase == GamePhase.MOVING
        assert player.dice == [3, 5]
        assert player.is_my_turn
        assert changes == [player]

    @pytest.mark.asyncio
    async def test_malformed_state_ignored(self, player):
        await player.join()
        player.transport.dispatch(EVENT_STATE, {"board": {"points": []}, "state": "moving"})
        assert player.phase == GamePhase.WAITING

    @pytest.mark.asyncio
    async def test_roll_out_of_turn_shows_error(self, player, game_relay):
        await player.join()
        player.transport.dispatch(EVENT_STATE, state_payload(GamePhase.ROLLING, current=Color.BLACK))

        assert await player.roll() is False
        assert player.error == "Not your turn"
        assert requests(game_relay, EVENT_ROLL) == []

        await settle(0.05)
        assert player.error == ""

    @pytest.mark.asyncio
    async def test_select_deselect_and_move(self, player, game_relay):
        await player.join()
        player.transport.dispatch(EVENT_STATE, state_payload(GamePhase.MOVING, dice=[3, 5]))

        assert await player.select_point(5) is False
        assert player.selected is None

        await player.select_point(0)
        assert player.selected == 0
        await player.select_point(0)
        assert player.selected is None

        await player.select_point(0)
        assert await player.select_point(3) is True
        assert player.selected is None
        assert requests(game_relay, EVENT_MOVE) == [{"gameId": "g1", "from": 0, "to": 3}]

    @pytest.mark.asyncio
    async def test_bar_and_bear_off(self, player, game_relay):
        await player.join()
        board = board_with((22, 1, Color.WHITE), white_bar=1)
        player.transport.dispatch(EVENT_STATE, state_payload(GamePhase.MOVING, dice=[2], board=board))

        assert player.select_bar() is True
        assert await player.select_point(1) is True
        assert requests(game_relay, EVENT_MOVE)[-1]["from"] == BAR

        await player.select_point(22)
        assert await player.bear_off() is True
        assert requests(game_relay, EVENT_MOVE)[-1] == {"gameId": "g1", "from": 22, "to": OFF}

    @pytest.mark.asyncio
    async def test_points_off_the_board_are_ignored(self, player, game_relay):
        await player.join()
        board = board_with((23, 1, Color.WHITE))
        player.transport.dispatch(EVENT_STATE, state_payload(GamePhase.MOVING, dice=[1], board=board))

        assert await player.select_point(-1) is False
        assert player.selected is None
        assert await player.select_point(24) is False

        await player.select_point(23)
        assert await player.select_point(24) is False
        assert await player.select_point(BAR) is False
        assert player.selected == 23
        assert requests(game_relay, EVENT_MOVE) == []

    @pytest.mark.asyncio
    async def test_no_actions_out_of_turn(self, player, game_relay):
        await player.join()
        player.transport.dispatch(
            EVENT_STATE, state_payload(GamePhase.MOVING, current=Color.BLACK, dice=[1, 2])
        )
        assert await player.select_point(0) is False
        assert await player.pass_turn() is False
        assert requests(game_relay, EVENT_PASS) == []

    @pytest.mark.asyncio
    async def test_server_error_and_game_over(self, player):
        await player.join()
        player.transport.dispatch(EVENT_ERROR, {"message": "Invalid point"})
        player.transport.dispatch(EVENT_GAME_OVER, {"winner": "black"})

        assert player.error == "Invalid point"
        assert player.winner == Color.BLACK
        assert player.phase == GamePhase.GAME_OVER

    @pytest.mark.asyncio
    async def test_leave_unsubscribes(self, player, game_relay):
        await player.join()
        await player.leave()
        await player.leave()

        assert player.transport.handler_count() == 0
        assert requests(game_relay, EVENT_LEAVE) == [{"gameId": "g1"}]
