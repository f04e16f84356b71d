"""WebSocket message handlers for the Plus Stack card game.

Each handler corresponds to a single inbound action. dispatch() validates
the envelope, looks the action up in HANDLERS (or ADMIN_HANDLERS for
privileged connections) and reports any rejection to the originating
connection only.

Every room mutation happens inside room_writer(), which holds the room's
lock across validate, apply and fanout, so actions on one room are applied
one at a time in the order they were accepted.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import WebSocket

import game
from config import config
from errors import AdminError, ErrorCode, GameError, InvalidMessage, RoomError
from game import PlayResult
from logging_config import player_id_var, room_code_var
from models.messages import (
    CreateRoomMessage,
    Envelope,
    ForceDrawMessage,
    GiveCardMessage,
    JoinRoomMessage,
    PlayCardMessage,
    PlayerTargetMessage,
    RejoinMessage,
    RemoveCardMessage,
    RoomQueryMessage,
    SetTopCardMessage,
    TogglePowerMessage,
    WatchRoomMessage,
    parse_message,
)
from room import Room, RoomManager, RoomStatus
from services.admin_service import AdminService
from services.fanout import TopicFanout

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: Optional[str] = None
    room_code: Optional[str] = None
    is_admin: bool = False


# ---------------------------------------------------------------------------
# Projection / fanout helpers
# ---------------------------------------------------------------------------

@asynccontextmanager
async def room_writer(room_manager: RoomManager, room_code: str) -> AsyncIterator[Room]:
    """
    Hold a room's single-writer lock.

    Raises RoomError(ROOM_NOT_FOUND) if the room does not exist, or was
    destroyed while waiting for the lock.
    """
    room = room_manager.require_room(room_code)
    async with room.lock:
        if room_manager.get_room(room.code) is not room:
            raise RoomError(ErrorCode.ROOM_NOT_FOUND)
        yield room


async def broadcast_player_list(room: Room, fanout: TopicFanout) -> None:
    """Send the lobby roster (no hands) to every member."""
    await fanout.publish(room.code, {
        "type": "playerList",
        "players": room.player_list(),
    })


async def broadcast_room_state(room: Room, fanout: TopicFanout) -> None:
    """
    Send each member their own projection, and observers the full one.

    Members see every card count but only their own hand.
    """
    await fanout.publish_personalized(room.code, lambda pid: {
        "type": "state",
        "gameState": room.get_state(pid),
        "yourPlayerId": pid,
    })

    if fanout.has_observers(room.code):
        await fanout.publish_observers(room.code, {
            "type": "adminGameUpdate",
            "gameState": room.get_state(None, reveal_all=True),
        })


async def notify_card_effects(room: Room, result: PlayResult, fanout: TopicFanout) -> None:
    """Tell the affected members about skip/reverse/swap/penalty effects."""
    for effect in result.effects:
        if effect.effect == "skipped":
            for target in effect.target_ids:
                await fanout.send_to(room.code, target, {
                    "type": "cardEffect",
                    "effect": "skipped",
                    "targetPlayerId": target,
                    "byPlayerId": result.player_id,
                })
        elif effect.effect == "reversed":
            await fanout.publish(room.code, {
                "type": "cardEffect",
                "effect": "reversed",
                "direction": room.direction,
                "byPlayerId": result.player_id,
            })
        elif effect.effect == "swapped":
            partner = effect.target_ids[0]
            await fanout.send_to(room.code, result.player_id, {
                "type": "cardEffect",
                "effect": "youSwapped",
                "targetPlayerId": result.player_id,
                "withPlayerId": partner,
            })
            await fanout.send_to(room.code, partner, {
                "type": "cardEffect",
                "effect": "swapped",
                "targetPlayerId": partner,
                "byPlayerId": result.player_id,
            })
        elif effect.effect == "drawPenalty":
            await fanout.publish(room.code, {
                "type": "cardEffect",
                "effect": "drawPenalty",
                "pendingDraws": effect.amount,
                "byPlayerId": result.player_id,
            })


async def broadcast_after_membership_change(room_manager: RoomManager, room: Room, fanout: TopicFanout) -> None:
    """Fan out after a member left, or tear the topic down if the room is gone."""
    if room_manager.get_room(room.code) is not room:
        fanout.close_topic(room.code)
        return
    await broadcast_player_list(room, fanout)
    if room.status != RoomStatus.WAITING:
        await broadcast_room_state(room, fanout)


def _current_seat(ctx: ConnectionContext, fanout: TopicFanout) -> Optional[tuple[str, str]]:
    """
    Get the (room_code, player_id) this connection currently speaks for.

    A binding only counts while this socket is still the player's
    subscription. Connections that were superseded, kicked or whose room
    was destroyed lose their binding here.
    """
    if not ctx.room_code or not ctx.player_id:
        return None
    if fanout.connection_for(ctx.room_code, ctx.player_id) is not ctx.websocket:
        logger.debug(f"Connection {ctx.connection_id} no longer holds {ctx.player_id}")
        _unbind(ctx)
        return None
    return ctx.room_code, ctx.player_id


def _require_seat(ctx: ConnectionContext, fanout: TopicFanout) -> tuple[str, str]:
    seat = _current_seat(ctx, fanout)
    if seat is None:
        raise InvalidMessage(ErrorCode.NOT_IN_ROOM)
    return seat


async def _release_seat(
    websocket: WebSocket,
    room_code: str,
    player_id: str,
    *,
    room_manager: RoomManager,
    fanout: TopicFanout,
) -> None:
    """Give up a seat this connection held, after it has moved elsewhere."""
    fanout.unsubscribe(room_code, player_id, websocket)
    room = room_manager.get_room(room_code)
    if room is None:
        return
    async with room.lock:
        if room_manager.get_room(room.code) is not room:
            return
        room_manager.leave(room.code, player_id)
        await broadcast_after_membership_change(room_manager, room, fanout)


def _bind(ctx: ConnectionContext, room_code: str, player_id: str) -> None:
    ctx.room_code = room_code
    ctx.player_id = player_id
    room_code_var.set(room_code)
    player_id_var.set(player_id)


def _unbind(ctx: ConnectionContext) -> None:
    ctx.room_code = None
    ctx.player_id = None
    room_code_var.set(None)
    player_id_var.set(None)


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    msg = parse_message(CreateRoomMessage, data)
    previous = _current_seat(ctx, fanout)

    result = room_manager.create(msg.player_name, msg.avatar)
    room = room_manager.get_room(result.room_code)
    async with room.lock:
        fanout.subscribe(room.code, result.player_id, ctx.websocket)
        _bind(ctx, room.code, result.player_id)

        await ctx.websocket.send_json({
            "type": "roomCreated",
            "roomCode": room.code,
            "playerId": result.player_id,
        })
        await broadcast_player_list(room, fanout)

    if previous:
        await _release_seat(ctx.websocket, *previous, room_manager=room_manager, fanout=fanout)


async def handle_join(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    msg = parse_message(JoinRoomMessage, data)
    previous = _current_seat(ctx, fanout)
    if previous and previous[0] == msg.room_code.upper():
        raise InvalidMessage(ErrorCode.INVALID_MESSAGE, "Already in this room")

    # The old seat is only given up once the new one is secured
    async with room_writer(room_manager, msg.room_code) as room:
        result = room_manager.join(room.code, msg.player_name, msg.avatar)
        fanout.subscribe(room.code, result.player_id, ctx.websocket)
        _bind(ctx, room.code, result.player_id)

        await ctx.websocket.send_json({
            "type": "joined",
            "roomCode": room.code,
            "playerId": result.player_id,
        })
        await broadcast_player_list(room, fanout)

    if previous:
        await _release_seat(ctx.websocket, *previous, room_manager=room_manager, fanout=fanout)


async def handle_rejoin(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    msg = parse_message(RejoinMessage, data)
    previous = _current_seat(ctx, fanout)

    async with room_writer(room_manager, msg.room_code) as room:
        room_manager.reconnect(room.code, msg.player_id)
        superseded = fanout.subscribe(room.code, msg.player_id, ctx.websocket)
        _bind(ctx, room.code, msg.player_id)

        if superseded is not None:
            try:
                await superseded.send_json({
                    "type": "superseded",
                    "message": "Connected from another session",
                })
            except Exception as e:
                logger.debug(f"Could not notify superseded connection: {e}")

        await ctx.websocket.send_json({
            "type": "rejoined",
            "roomCode": room.code,
            "playerId": msg.player_id,
        })
        await broadcast_player_list(room, fanout)
        if room.status != RoomStatus.WAITING:
            await broadcast_room_state(room, fanout)

    if previous and previous != (ctx.room_code, ctx.player_id):
        await _release_seat(ctx.websocket, *previous, room_manager=room_manager, fanout=fanout)


async def handle_leave(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    room_code, player_id = _require_seat(ctx, fanout)
    _unbind(ctx)
    await _release_seat(ctx.websocket, room_code, player_id, room_manager=room_manager, fanout=fanout)
    await ctx.websocket.send_json({"type": "left", "roomCode": room_code, "playerId": player_id})


# ---------------------------------------------------------------------------
# Game handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    room_code, player_id = _require_seat(ctx, fanout)
    async with room_writer(room_manager, room_code) as room:
        room_manager.start_game(room.code, player_id)
        await broadcast_room_state(room, fanout)


async def handle_play(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    msg = parse_message(PlayCardMessage, data)
    room_code, player_id = _require_seat(ctx, fanout)
    async with room_writer(room_manager, room_code) as room:
        result = game.play_card(room, player_id, msg.card_index, msg.chosen_color)
        await notify_card_effects(room, result, fanout)
        await broadcast_room_state(room, fanout)


async def handle_draw(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, **kw) -> None:
    room_code, player_id = _require_seat(ctx, fanout)
    async with room_writer(room_manager, room_code) as room:
        forced = room.pending_draws > 0
        cards = game.draw_card(room, player_id)

        await ctx.websocket.send_json({
            "type": "cardDrawn",
            "cards": [card.to_dict() for card in cards],
            "forced": forced,
        })
        await broadcast_room_state(room, fanout)


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------

async def handle_disconnect(ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: Optional[AdminService] = None, **kw) -> None:
    """
    Clean up after a connection closes.

    The player keeps their seat and hand. If this socket was superseded by
    a newer connection for the same player nothing changes. Otherwise the
    player is marked disconnected and, when configured, the turn moves on
    if it was theirs.
    """
    if ctx.is_admin:
        fanout.remove_observer_by_ws(ctx.websocket)
        if admin_service:
            admin_service.close_session(ctx.connection_id)
        return

    if not ctx.room_code or not ctx.player_id:
        return

    room = room_manager.get_room(ctx.room_code)
    if room is None:
        fanout.unsubscribe(ctx.room_code, ctx.player_id, ctx.websocket)
        return

    async with room.lock:
        if not fanout.unsubscribe(room.code, ctx.player_id, ctx.websocket):
            return
        if room_manager.get_room(room.code) is not room:
            return

        room_manager.disconnect(room.code, ctx.player_id)
        if config.AUTO_ADVANCE_ON_DISCONNECT and game.settle_turn(room):
            logger.info(f"Turn in room {room.code} moved on from disconnected {ctx.player_id}")

        await broadcast_player_list(room, fanout)
        if room.status != RoomStatus.WAITING:
            await broadcast_room_state(room, fanout)


# ---------------------------------------------------------------------------
# Admin handlers
# ---------------------------------------------------------------------------

def _watched_room_code(ctx: ConnectionContext, admin_service: AdminService) -> str:
    session = admin_service.get_session(ctx.connection_id)
    if not session.watched_room:
        raise InvalidMessage(ErrorCode.NOT_IN_ROOM, "Not watching a room")
    return session.watched_room


async def _admin_reply(ctx: ConnectionContext, action: str, **fields) -> None:
    await ctx.websocket.send_json({"type": "adminResult", "action": action, "success": True, **fields})


async def handle_admin_list_rooms(data: dict, ctx: ConnectionContext, *, admin_service: AdminService, **kw) -> None:
    await ctx.websocket.send_json({
        "type": "adminRoomList",
        "rooms": admin_service.list_rooms(),
    })


async def handle_admin_watch_room(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    msg = parse_message(WatchRoomMessage, data)
    async with room_writer(room_manager, msg.room_code) as room:
        if not fanout.add_observer(room.code, ctx.websocket, ctx.connection_id):
            raise AdminError(ErrorCode.NOT_AUTHORIZED, "Room is at its observer limit")
        admin_service.set_watched_room(ctx.connection_id, room.code)
        await ctx.websocket.send_json({
            "type": "adminRoomState",
            "gameState": room.get_state(None, reveal_all=True),
        })


async def handle_admin_unwatch_room(data: dict, ctx: ConnectionContext, *, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    fanout.remove_observer_by_ws(ctx.websocket)
    admin_service.set_watched_room(ctx.connection_id, None)
    await _admin_reply(ctx, "unwatchRoom")


async def handle_admin_toggle_power(data: dict, ctx: ConnectionContext, *, admin_service: AdminService, **kw) -> None:
    msg = parse_message(TogglePowerMessage, data)
    enabled = admin_service.toggle_power(ctx.connection_id, msg.power)
    await ctx.websocket.send_json({"type": "adminPower", "power": msg.power, "enabled": enabled})


async def handle_admin_get_all_hands(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "seeAllHands")
    msg = parse_message(RoomQueryMessage, data)
    room_code = msg.room_code or _watched_room_code(ctx, admin_service)
    async with room_writer(room_manager, room_code) as room:
        await ctx.websocket.send_json({
            "type": "adminAllHands",
            "gameState": room.get_state(None, reveal_all=True),
        })


async def handle_admin_give_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "manipulateCards")
    msg = parse_message(GiveCardMessage, data)
    try:
        card = msg.card.to_card() if msg.card else None
    except ValueError as e:
        raise AdminError(ErrorCode.INVALID_CARD, str(e)) from None

    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        given = admin_service.give_card(room, msg.player_id, card)
        await _admin_reply(ctx, "giveCard", card=given.to_dict(), playerId=msg.player_id)
        await broadcast_room_state(room, fanout)


async def handle_admin_remove_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "manipulateCards")
    msg = parse_message(RemoveCardMessage, data)
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        removed = admin_service.remove_card(room, msg.player_id, msg.card_index)
        await _admin_reply(ctx, "removeCard", card=removed.to_dict(), playerId=msg.player_id)
        await broadcast_room_state(room, fanout)


async def handle_admin_set_top_card(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "manipulateCards")
    msg = parse_message(SetTopCardMessage, data)
    try:
        card = msg.card.to_card()
    except ValueError as e:
        raise AdminError(ErrorCode.INVALID_CARD, str(e)) from None

    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.set_top_card(room, card)
        await _admin_reply(ctx, "setTopCard", card=card.to_dict())
        await broadcast_room_state(room, fanout)


async def handle_admin_skip_turn(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "controlTurns")
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.skip_turn(room)
        await _admin_reply(ctx, "skipTurn", currentPlayerId=room.current_player_id())
        await broadcast_room_state(room, fanout)


async def handle_admin_reverse_direction(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "controlTurns")
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.reverse_direction(room)
        await _admin_reply(ctx, "reverseDirection", direction=room.direction)
        await broadcast_room_state(room, fanout)


async def handle_admin_force_draw(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "controlTurns")
    msg = parse_message(ForceDrawMessage, data)
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        cards = admin_service.force_draw(room, msg.player_id, msg.count)
        await fanout.send_to(room.code, msg.player_id, {
            "type": "cardDrawn",
            "cards": [card.to_dict() for card in cards],
            "forced": True,
        })
        await _admin_reply(ctx, "forceDraw", playerId=msg.player_id, count=len(cards))
        await broadcast_room_state(room, fanout)


async def handle_admin_set_current_player(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "controlTurns")
    msg = parse_message(PlayerTargetMessage, data)
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.set_current_player(room, msg.player_id)
        await _admin_reply(ctx, "setCurrentPlayer", currentPlayerId=msg.player_id)
        await broadcast_room_state(room, fanout)


async def handle_admin_kick_player(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "roomControl")
    msg = parse_message(PlayerTargetMessage, data)
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        kicked_ws = fanout.connection_for(room.code, msg.player_id)
        admin_service.kick_player(room, msg.player_id)
        fanout.unsubscribe(room.code, msg.player_id)

        if kicked_ws is not None:
            try:
                await kicked_ws.send_json({"type": "kicked", "roomCode": room.code})
            except Exception as e:
                logger.debug(f"Could not notify kicked player: {e}")

        await _admin_reply(ctx, "kickPlayer", playerId=msg.player_id)
        await broadcast_after_membership_change(room_manager, room, fanout)


async def handle_admin_force_start(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "roomControl")
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.force_start(room)
        await _admin_reply(ctx, "forceStart")
        await broadcast_room_state(room, fanout)


async def handle_admin_end_game(data: dict, ctx: ConnectionContext, *, room_manager: RoomManager, fanout: TopicFanout, admin_service: AdminService, **kw) -> None:
    admin_service.require_power(ctx.connection_id, "roomControl")
    async with room_writer(room_manager, _watched_room_code(ctx, admin_service)) as room:
        admin_service.end_game(room)
        await _admin_reply(ctx, "endGame")
        await broadcast_room_state(room, fanout)


# ---------------------------------------------------------------------------
# Handler dispatch tables
# ---------------------------------------------------------------------------

HANDLERS = {
    "create": handle_create,
    "join": handle_join,
    "rejoin": handle_rejoin,
    "leave": handle_leave,
    "startGame": handle_start_game,
    "play": handle_play,
    "draw": handle_draw,
}

ADMIN_HANDLERS = {
    "adminListRooms": handle_admin_list_rooms,
    "adminWatchRoom": handle_admin_watch_room,
    "adminUnwatchRoom": handle_admin_unwatch_room,
    "adminTogglePower": handle_admin_toggle_power,
    "adminGetAllHands": handle_admin_get_all_hands,
    "adminGiveCard": handle_admin_give_card,
    "adminRemoveCard": handle_admin_remove_card,
    "adminSetTopCard": handle_admin_set_top_card,
    "adminSkipTurn": handle_admin_skip_turn,
    "adminReverseDirection": handle_admin_reverse_direction,
    "adminForceDraw": handle_admin_force_draw,
    "adminSetCurrentPlayer": handle_admin_set_current_player,
    "adminKickPlayer": handle_admin_kick_player,
    "adminForceStart": handle_admin_force_start,
    "adminEndGame": handle_admin_end_game,
}


async def dispatch(data, ctx: ConnectionContext, **deps) -> None:
    """
    Route one inbound frame to its handler.

    Rejections (GameError) go back to this connection only. Unexpected
    exceptions are logged and reported as an internal error; they never
    end the connection loop.
    """
    try:
        if not isinstance(data, dict):
            raise InvalidMessage(ErrorCode.INVALID_MESSAGE, "Message must be a JSON object")
        action = parse_message(Envelope, data).action

        handler = HANDLERS.get(action)
        if handler is None and action in ADMIN_HANDLERS:
            if not ctx.is_admin:
                raise AdminError(ErrorCode.NOT_AUTHORIZED)
            handler = ADMIN_HANDLERS[action]
        if handler is None:
            raise InvalidMessage(ErrorCode.UNKNOWN_ACTION, f"Unknown action: {action}")

        await handler(data, ctx, **deps)
    except GameError as e:
        logger.debug(f"Rejected {data.get('action') if isinstance(data, dict) else data!r}: {e.code.value}")
        await ctx.websocket.send_json(e.to_message())
    except Exception:
        logger.exception("Unhandled error while processing message")
        await ctx.websocket.send_json(GameError(ErrorCode.INTERNAL_ERROR).to_message())
