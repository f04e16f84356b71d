"""
Test suite for WebSocket message handlers.

Drives dispatch() with mock WebSockets and checks what each connection
receives: personalized projections, targeted effect frames, and errors
that only ever reach the connection that caused them.

Run with: pytest test_handlers.py -v
"""

from unittest.mock import patch

import pytest

from handlers import ConnectionContext, dispatch, handle_disconnect
from models.cards import Color, NumberCard, PlusCard, SkipCard, WildCard
from room import RoomManager, RoomStatus
from services.admin_service import AdminService
from services.fanout import TopicFanout


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def clear(self):
        self.messages.clear()


def make_deps():
    rm = RoomManager()
    return dict(room_manager=rm, fanout=TopicFanout(), admin_service=AdminService(rm))


def make_ctx(connection_id="conn", is_admin=False):
    return ConnectionContext(websocket=MockWebSocket(), connection_id=connection_id, is_admin=is_admin)


async def seat_players(deps, count=3):
    """Create a room and join count-1 more players; returns their contexts."""
    host = make_ctx("conn-0")
    await dispatch({"action": "create", "playerName": "Alice", "avatar": "🐱"}, host, **deps)
    ctxs = [host]
    for i in range(1, count):
        ctx = make_ctx(f"conn-{i}")
        await dispatch({"action": "join", "roomCode": host.room_code, "playerName": f"P{i}"}, ctx, **deps)
        ctxs.append(ctx)
    return ctxs


async def start_game(deps, count=3):
    ctxs = await seat_players(deps, count)
    await dispatch({"action": "startGame"}, ctxs[0], **deps)
    room = deps["room_manager"].get_room(ctxs[0].room_code)
    for ctx in ctxs:
        ctx.websocket.clear()
    return ctxs, room


def rig(room, hands, top=NumberCard(Color.RED, 5)):
    """Replace the dealt hands and discard top with known cards."""
    for pid, hand in zip(room.seating, hands):
        room.players[pid].hand = list(hand)
    room.discard_pile = [top]
    room.active_color = top.color


def filler(n=3):
    return [NumberCard(Color.YELLOW, 1) for _ in range(n)]


# =============================================================================
# Lobby handlers
# =============================================================================

class TestLobby:

    @pytest.mark.asyncio
    async def test_create_room(self):
        deps = make_deps()
        ctx = make_ctx()

        await dispatch({"action": "create", "playerName": "Alice", "avatar": "🐱"}, ctx, **deps)

        created = ctx.websocket.messages_of_type("roomCreated")[0]
        assert created["roomCode"] == ctx.room_code
        assert created["playerId"] == ctx.player_id
        players = ctx.websocket.messages_of_type("playerList")[0]["players"]
        assert players[0]["name"] == "Alice"
        assert players[0]["isHost"] is True

    @pytest.mark.asyncio
    async def test_join_broadcasts_player_list(self):
        deps = make_deps()
        host, guest = await seat_players(deps, 2)

        assert guest.websocket.messages_of_type("joined")[0]["roomCode"] == host.room_code
        latest = host.websocket.messages_of_type("playerList")[-1]["players"]
        assert [p["name"] for p in latest] == ["Alice", "P1"]

    @pytest.mark.asyncio
    async def test_join_lowercase_code(self):
        deps = make_deps()
        host = (await seat_players(deps, 1))[0]
        guest = make_ctx("conn-g")

        await dispatch({"action": "join", "roomCode": host.room_code.lower(), "playerName": "Bob"}, guest, **deps)

        assert guest.room_code == host.room_code

    @pytest.mark.asyncio
    async def test_join_missing_room_errors_only_to_sender(self):
        deps = make_deps()
        host = (await seat_players(deps, 1))[0]
        host.websocket.clear()
        guest = make_ctx("conn-g")

        await dispatch({"action": "join", "roomCode": "ZZZZ", "playerName": "Bob"}, guest, **deps)

        assert guest.websocket.last_message() == {
            "type": "error",
            "code": "RoomNotFound",
            "message": "Room not found",
        }
        assert host.websocket.messages == []

    @pytest.mark.asyncio
    async def test_join_started_game(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        late = make_ctx("late")

        await dispatch({"action": "join", "roomCode": room.code, "playerName": "Late"}, late, **deps)

        assert late.websocket.last_message()["code"] == "GameAlreadyStarted"

    @pytest.mark.asyncio
    async def test_leave_transfers_host(self):
        deps = make_deps()
        host, guest = await seat_players(deps, 2)
        code = host.room_code

        await dispatch({"action": "leave"}, host, **deps)

        assert host.websocket.last_message()["type"] == "left"
        assert host.room_code is None
        room = deps["room_manager"].get_room(code)
        assert room.host_id == guest.player_id
        assert guest.websocket.messages_of_type("playerList")[-1]["players"][0]["isHost"] is True

    @pytest.mark.asyncio
    async def test_last_leave_closes_topic(self):
        deps = make_deps()
        host = (await seat_players(deps, 1))[0]
        code = host.room_code

        await dispatch({"action": "leave"}, host, **deps)

        assert deps["room_manager"].get_room(code) is None
        assert deps["fanout"].subscribers(code) == {}

    @pytest.mark.asyncio
    async def test_leave_when_not_in_room(self):
        deps = make_deps()
        ctx = make_ctx()
        await dispatch({"action": "leave"}, ctx, **deps)
        assert ctx.websocket.last_message()["code"] == "NotInRoom"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target,code", [
        ("missing", "RoomNotFound"),
        ("full", "RoomFull"),
        ("started", "GameAlreadyStarted"),
    ])
    async def test_failed_join_keeps_current_seat(self, target, code):
        deps = make_deps()
        ctxs, room = await start_game(deps, 4)
        mover = ctxs[3]
        hand = list(room.players[mover.player_id].hand)

        other = await seat_players(deps, 3)
        if target == "full":
            deps["room_manager"].max_players = 3
        elif target == "started":
            await dispatch({"action": "startGame"}, other[0], **deps)
        room_code = "ZZZZ" if target == "missing" else other[0].room_code

        await dispatch({"action": "join", "roomCode": room_code, "playerName": "Mover"}, mover, **deps)

        assert mover.websocket.last_message()["code"] == code
        assert mover.room_code == room.code
        assert room.players[mover.player_id].hand == hand
        assert len(room.seating) == 4
        assert deps["fanout"].connection_for(room.code, mover.player_id) is mover.websocket

    @pytest.mark.asyncio
    async def test_join_other_room_leaves_old_one(self):
        deps = make_deps()
        first = await seat_players(deps, 2)
        second = (await seat_players(deps, 1))[0]
        old_code, old_id = first[1].room_code, first[1].player_id

        await dispatch({"action": "join", "roomCode": second.room_code, "playerName": "P1"}, first[1], **deps)

        assert first[1].room_code == second.room_code
        old_room = deps["room_manager"].get_room(old_code)
        assert old_id not in old_room.players
        assert [p["name"] for p in first[0].websocket.messages_of_type("playerList")[-1]["players"]] == ["Alice"]


# =============================================================================
# Game handlers
# =============================================================================

class TestGame:

    @pytest.mark.asyncio
    async def test_non_host_start_rejected_privately(self):
        deps = make_deps()
        ctxs = await seat_players(deps)
        for ctx in ctxs:
            ctx.websocket.clear()

        await dispatch({"action": "startGame"}, ctxs[1], **deps)

        assert ctxs[1].websocket.last_message()["code"] == "NotHost"
        assert ctxs[0].websocket.messages == []
        assert ctxs[2].websocket.messages == []

    @pytest.mark.asyncio
    async def test_start_sends_personalized_state(self):
        deps = make_deps()
        ctxs = await seat_players(deps)

        await dispatch({"action": "startGame"}, ctxs[0], **deps)

        for ctx in ctxs:
            frame = ctx.websocket.messages_of_type("state")[-1]
            assert frame["yourPlayerId"] == ctx.player_id
            state = frame["gameState"]
            assert state["status"] == "playing"
            for entry in state["roster"]:
                assert entry["cardCount"] == 7
                assert ("hand" in entry) == (entry["id"] == ctx.player_id)

    @pytest.mark.asyncio
    async def test_play_out_of_turn_rejected_privately(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[1], **deps)

        assert ctxs[1].websocket.last_message()["code"] == "NotYourTurn"
        assert ctxs[0].websocket.messages == []
        assert ctxs[2].websocket.messages == []

    @pytest.mark.asyncio
    async def test_play_broadcasts_state(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        rig(room, [[NumberCard(Color.RED, 2)] + filler(), filler(), filler()])

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)

        for ctx in ctxs:
            state = ctx.websocket.messages_of_type("state")[-1]["gameState"]
            assert state["currentPlayerId"] == ctxs[1].player_id
            assert state["topCard"] == {"type": "number", "color": "red", "value": 2}

    @pytest.mark.asyncio
    async def test_wild_needs_color(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        rig(room, [[WildCard()] + filler(), filler(), filler()])

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)
        assert ctxs[0].websocket.last_message()["code"] == "MissingColorChoice"

        await dispatch({"action": "play", "cardIndex": 0, "chosenColor": "purple"}, ctxs[0], **deps)
        assert ctxs[0].websocket.last_message()["code"] == "InvalidMessage"

        await dispatch({"action": "play", "cardIndex": 0, "chosenColor": "green"}, ctxs[0], **deps)
        assert room.active_color == Color.GREEN

    @pytest.mark.asyncio
    async def test_skip_notifies_bypassed_players(self):
        deps = make_deps()
        ctxs, room = await start_game(deps, 4)
        rig(room, [[SkipCard(Color.RED)] + filler(), filler(), filler(), filler()])

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)

        for ctx in ctxs[1:3]:
            effect = ctx.websocket.messages_of_type("cardEffect")[0]
            assert effect["effect"] == "skipped"
            assert effect["targetPlayerId"] == ctx.player_id
        assert ctxs[3].websocket.messages_of_type("cardEffect") == []
        assert room.current_player_id() == ctxs[3].player_id

    @pytest.mark.asyncio
    async def test_forced_draw(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        rig(room, [[PlusCard(2, Color.RED)] + filler(), filler(), filler()])

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)
        penalty = ctxs[2].websocket.messages_of_type("cardEffect")[0]
        assert penalty["effect"] == "drawPenalty"
        assert penalty["pendingDraws"] == 2

        with patch("game.generate_card", return_value=NumberCard(Color.BLUE, 9)):
            await dispatch({"action": "draw"}, ctxs[1], **deps)

        drawn = ctxs[1].websocket.messages_of_type("cardDrawn")[0]
        assert drawn["forced"] is True
        assert drawn["cards"] == [{"type": "number", "color": "blue", "value": 9}] * 2
        assert ctxs[0].websocket.messages_of_type("cardDrawn") == []

    @pytest.mark.asyncio
    async def test_winning_play(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        rig(room, [[NumberCard(Color.RED, 3)], filler(), filler()])

        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)

        state = ctxs[2].websocket.messages_of_type("state")[-1]["gameState"]
        assert state["status"] == "finished"
        assert state["winner"] == ctxs[0].player_id


# =============================================================================
# Dispatch
# =============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame,code", [
        ([1, 2, 3], "InvalidMessage"),
        ({"playerName": "x"}, "InvalidMessage"),
        ({"action": "fly"}, "UnknownAction"),
        ({"action": "adminListRooms"}, "NotAuthorized"),
        ({"action": "create"}, "InvalidMessage"),
        ({"action": "play", "cardIndex": "zero"}, "InvalidMessage"),
        ({"action": "draw"}, "NotInRoom"),
    ])
    async def test_rejections(self, frame, code):
        deps = make_deps()
        ctx = make_ctx()
        await dispatch(frame, ctx, **deps)
        assert ctx.websocket.last_message()["type"] == "error"
        assert ctx.websocket.last_message()["code"] == code

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_and_room_survives(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)

        with patch("game.play_card", side_effect=RuntimeError("boom")):
            await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)

        assert ctxs[0].websocket.last_message()["code"] == "InternalError"
        assert deps["room_manager"].get_room(room.code) is room
        assert not room.lock.locked()


# =============================================================================
# Connectivity
# =============================================================================

class TestConnectivity:

    @pytest.mark.asyncio
    async def test_disconnect_marks_player_and_moves_turn(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)

        await handle_disconnect(ctxs[0], **deps)

        assert room.players[ctxs[0].player_id].connected is False
        assert room.current_player_id() == ctxs[1].player_id
        roster = ctxs[1].websocket.messages_of_type("playerList")[-1]["players"]
        assert roster[0]["connected"] is False

    @pytest.mark.asyncio
    async def test_disconnect_without_auto_advance(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)

        with patch("handlers.config.AUTO_ADVANCE_ON_DISCONNECT", False):
            await handle_disconnect(ctxs[0], **deps)

        assert room.current_player_id() == ctxs[0].player_id

    @pytest.mark.asyncio
    async def test_rejoin_supersedes_old_connection(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        old = ctxs[1]
        new = make_ctx("conn-new")

        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": old.player_id}, new, **deps)

        assert new.websocket.messages_of_type("rejoined")
        assert new.websocket.messages_of_type("state")[-1]["yourPlayerId"] == old.player_id
        assert old.websocket.messages_of_type("superseded")

        # The stale socket closing must not disconnect the replacement
        await handle_disconnect(old, **deps)
        assert room.players[old.player_id].connected is True
        assert deps["fanout"].connection_for(room.code, old.player_id) is new.websocket

    @pytest.mark.asyncio
    async def test_rejoin_after_disconnect_restores_hand(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        pid = ctxs[2].player_id
        hand = [c.to_dict() for c in room.players[pid].hand]

        await handle_disconnect(ctxs[2], **deps)
        new = make_ctx("conn-back")
        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": pid}, new, **deps)

        state = new.websocket.messages_of_type("state")[-1]["gameState"]
        mine = next(e for e in state["roster"] if e["id"] == pid)
        assert mine["connected"] is True
        assert mine["hand"] == hand

    @pytest.mark.asyncio
    async def test_rejoin_unknown_player(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        ctx = make_ctx("stranger")

        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": "p_ghost"}, ctx, **deps)

        assert ctx.websocket.last_message()["code"] == "PlayerNotFound"

    @pytest.mark.asyncio
    async def test_failed_rejoin_keeps_current_seat(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        ctx = ctxs[2]

        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": "p_bogus00"}, ctx, **deps)

        assert ctx.websocket.last_message()["code"] == "PlayerNotFound"
        assert ctx.player_id in room.players
        assert len(room.seating) == 3
        assert deps["fanout"].connection_for(room.code, ctx.player_id) is ctx.websocket

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame", [
        {"action": "leave"},
        {"action": "draw"},
        {"action": "play", "cardIndex": 0},
        {"action": "startGame"},
    ])
    async def test_superseded_connection_cannot_act(self, frame):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        old = ctxs[0]
        pid = old.player_id
        hand = list(room.players[pid].hand)
        new = make_ctx("conn-new")
        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": pid}, new, **deps)

        await dispatch(frame, old, **deps)

        assert old.websocket.last_message()["code"] == "NotInRoom"
        assert old.room_code is None
        assert room.players[pid].hand == hand
        assert room.current_player_id() == pid
        assert deps["fanout"].connection_for(room.code, pid) is new.websocket

    @pytest.mark.asyncio
    async def test_superseded_connection_create_keeps_player_seated(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        old = ctxs[1]
        pid = old.player_id
        new = make_ctx("conn-new")
        await dispatch({"action": "rejoin", "roomCode": room.code, "playerId": pid}, new, **deps)

        await dispatch({"action": "create", "playerName": "Again"}, old, **deps)

        assert old.room_code != room.code
        assert pid in room.players
        assert room.players[pid].connected is True


# =============================================================================
# Admin handlers
# =============================================================================

class TestAdmin:

    async def _admin(self, deps):
        ctx = make_ctx("admin-1", is_admin=True)
        deps["admin_service"].create_session(ctx.connection_id)
        return ctx

    @pytest.mark.asyncio
    async def test_observer_sees_all_hands(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)

        await dispatch({"action": "adminWatchRoom", "roomCode": room.code}, admin, **deps)
        rig(room, [[NumberCard(Color.RED, 2)] + filler(), filler(), filler()])
        await dispatch({"action": "play", "cardIndex": 0}, ctxs[0], **deps)

        update = admin.websocket.messages_of_type("adminGameUpdate")[-1]["gameState"]
        assert all("hand" in entry for entry in update["roster"])

    @pytest.mark.asyncio
    async def test_power_required(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)
        await dispatch({"action": "adminWatchRoom", "roomCode": room.code}, admin, **deps)

        await dispatch({"action": "adminSkipTurn"}, admin, **deps)
        assert admin.websocket.last_message()["code"] == "PowerDisabled"

        await dispatch({"action": "adminTogglePower", "power": "controlTurns"}, admin, **deps)
        await dispatch({"action": "adminSkipTurn"}, admin, **deps)

        assert admin.websocket.messages_of_type("adminResult")[-1]["action"] == "skipTurn"
        assert room.current_player_id() == ctxs[1].player_id
        assert ctxs[1].websocket.messages_of_type("state")[-1]["gameState"]["currentPlayerId"] == ctxs[1].player_id

    @pytest.mark.asyncio
    async def test_get_all_hands_rejects_bad_room_code(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)
        await dispatch({"action": "adminTogglePower", "power": "seeAllHands"}, admin, **deps)

        await dispatch({"action": "adminGetAllHands", "roomCode": 1234}, admin, **deps)
        assert admin.websocket.last_message()["code"] == "InvalidMessage"

        await dispatch({"action": "adminGetAllHands", "roomCode": room.code.lower()}, admin, **deps)
        hands = admin.websocket.messages_of_type("adminAllHands")[-1]["gameState"]
        assert all("hand" in entry for entry in hands["roster"])

    @pytest.mark.asyncio
    async def test_give_card(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)
        await dispatch({"action": "adminWatchRoom", "roomCode": room.code}, admin, **deps)
        await dispatch({"action": "adminTogglePower", "power": "manipulateCards"}, admin, **deps)

        await dispatch({
            "action": "adminGiveCard",
            "playerId": ctxs[1].player_id,
            "card": {"type": "plus20color", "color": "blue"},
        }, admin, **deps)

        assert room.players[ctxs[1].player_id].hand[-1] == PlusCard(20, Color.BLUE)

        await dispatch({
            "action": "adminGiveCard",
            "playerId": ctxs[1].player_id,
            "card": {"type": "number", "color": "blue", "value": 8},
        }, admin, **deps)
        assert admin.websocket.last_message()["code"] == "InvalidCard"

    @pytest.mark.asyncio
    async def test_end_game(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)
        await dispatch({"action": "adminWatchRoom", "roomCode": room.code}, admin, **deps)
        await dispatch({"action": "adminTogglePower", "power": "roomControl"}, admin, **deps)

        await dispatch({"action": "adminEndGame"}, admin, **deps)

        assert room.status == RoomStatus.FINISHED
        state = ctxs[0].websocket.messages_of_type("state")[-1]["gameState"]
        assert state["endReason"] == "admin"
        assert state["winner"] is None

    @pytest.mark.asyncio
    async def test_list_rooms(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)

        await dispatch({"action": "adminListRooms"}, admin, **deps)

        rooms = admin.websocket.last_message()["rooms"]
        assert rooms[0]["code"] == room.code
        assert rooms[0]["status"] == "playing"

    @pytest.mark.asyncio
    async def test_admin_disconnect_cleans_up(self):
        deps = make_deps()
        ctxs, room = await start_game(deps)
        admin = await self._admin(deps)
        await dispatch({"action": "adminWatchRoom", "roomCode": room.code}, admin, **deps)

        await handle_disconnect(admin, **deps)

        assert not deps["fanout"].has_observers(room.code)
        assert deps["admin_service"].session_count() == 0
