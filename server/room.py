"""
Room registry for multiplayer Plus Stack games.

This module owns room existence, membership, host identity and room-level
status. It knows nothing about card rules beyond handing dealing off to
game.deal() when a game starts.

A Room contains:
    - A unique room code for joining (uppercase letters)
    - The seating order: an ordered list of player ids that defines turn
      rotation, plus an id -> seat index lookup kept in sync with it
    - The Players themselves (name, avatar, connectivity, hand)
    - The shared turn state the rules engine mutates (pointer, direction,
      discard pile, active color, pending draws, reverse stack)
    - An asyncio.Lock that serializes every mutation of this room
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional

from constants import (
    ATTRITION_END_REASON,
    MAX_PLAYERS,
    MIN_PLAYERS_TO_START,
    PLAYER_ID_LENGTH,
    ROOM_CODE_LENGTH,
)
from errors import ErrorCode, RoomError
from models.cards import Card, Color

logger = logging.getLogger(__name__)


class RoomStatus(str, Enum):
    """
    Room lifecycle.

    Flow: WAITING -> PLAYING -> FINISHED (terminal)
    """

    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass
class Player:
    """
    A seated member of a room.

    Attributes:
        id: Unique player identifier ("p_" + 7 base-36 chars).
        name: Display name.
        avatar: Avatar token chosen by the client (usually an emoji).
        connected: False while the player's connection is down. A
            disconnected player keeps their seat and hand.
        hand: The player's cards, in the order they were received.
    """

    id: str
    name: str
    avatar: str = ""
    connected: bool = True
    hand: list[Card] = field(default_factory=list)


class JoinResult(NamedTuple):
    """Identity handed back to the caller of create/join."""

    room_code: str
    player_id: str


@dataclass
class Room:
    """
    A game room.

    Attributes:
        code: Room code (e.g., "ABCD").
        players: Mapping of player id to Player. Never iterated for order.
        seating: Player ids in seating (turn) order.
        seat_index: Player id -> index into seating.
        host_id: Id of the member allowed to start the game.
        status: Lifecycle status.
        turn_index: Index into seating of the player whose turn it is.
        direction: +1 or -1.
        discard_pile: Played cards, most recent last (bounded history).
        active_color: Color the next play must match.
        pending_draws: Accumulated, unresolved draw penalty.
        reverse_stack_count: Consecutive reverse plays (0..MAX_REVERSE_STACK).
        winner: Winning player id once finished, None otherwise.
        end_reason: Why the game finished ("win", "lastPlayerStanding", "admin").
        created_at: Creation timestamp.
        lock: Single-writer boundary for this room's state.
    """

    code: str
    players: dict[str, Player] = field(default_factory=dict)
    seating: list[str] = field(default_factory=list)
    seat_index: dict[str, int] = field(default_factory=dict)
    host_id: Optional[str] = None
    status: RoomStatus = RoomStatus.WAITING
    turn_index: int = 0
    direction: int = 1
    discard_pile: list[Card] = field(default_factory=list)
    active_color: Optional[Color] = None
    pending_draws: int = 0
    reverse_stack_count: int = 0
    winner: Optional[str] = None
    end_reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> Player:
        """
        Seat a player at the end of the seating order.

        The first player seated becomes the host.

        Args:
            player: The player to add.

        Returns:
            The added Player.
        """
        self.players[player.id] = player
        self.seating.append(player.id)
        self.seat_index[player.id] = len(self.seating) - 1
        if self.host_id is None:
            self.host_id = player.id
        return player

    def remove_player(self, player_id: str) -> Optional[Player]:
        """
        Remove a player from the room.

        Keeps the turn pointer on a valid seat: removing a seat before the
        pointer shifts it back by one; removing the turn-holder hands the turn
        to whoever is next in the current direction. A pending draw penalty
        owed by a departing turn-holder is dropped. If a game is in progress
        and only one member remains, that member wins by default.

        Host is reassigned to the earliest remaining seat when the host leaves.

        Args:
            player_id: ID of the player to remove.

        Returns:
            The removed Player, or None if not found.
        """
        if player_id not in self.players:
            return None

        seat = self.seat_index[player_id]
        was_turn_holder = self.status == RoomStatus.PLAYING and seat == self.turn_index

        player = self.players.pop(player_id)
        self.seating.pop(seat)
        self._reindex()

        if not self.seating:
            self.host_id = None
            return player

        if self.host_id == player_id:
            self.host_id = self.seating[0]

        if self.status == RoomStatus.PLAYING:
            count = len(self.seating)
            if seat < self.turn_index:
                self.turn_index -= 1
            elif seat == self.turn_index and self.direction == -1:
                self.turn_index -= 1
            self.turn_index %= count

            if was_turn_holder:
                self.pending_draws = 0

            if count == 1:
                self.status = RoomStatus.FINISHED
                self.winner = self.seating[0]
                self.end_reason = ATTRITION_END_REASON

        return player

    def _reindex(self) -> None:
        self.seat_index = {pid: i for i, pid in enumerate(self.seating)}

    def get_player(self, player_id: str) -> Optional[Player]:
        """Get a player by ID, or None if not found."""
        return self.players.get(player_id)

    def seat_of(self, player_id: str) -> Optional[int]:
        """Get a player's seat index, or None if not seated."""
        return self.seat_index.get(player_id)

    def player_at(self, seat: int) -> Player:
        """Get the player sitting at a seat index."""
        return self.players[self.seating[seat]]

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return len(self.seating) == 0

    def is_host(self, player_id: str) -> bool:
        return self.host_id == player_id

    def connected_count(self) -> int:
        """Count members whose connection is up."""
        return sum(1 for p in self.players.values() if p.connected)

    def is_abandoned(self) -> bool:
        """Every member is disconnected (eligible for external cleanup)."""
        return bool(self.seating) and self.connected_count() == 0

    # -------------------------------------------------------------------------
    # Turn state accessors
    # -------------------------------------------------------------------------

    def current_player_id(self) -> Optional[str]:
        """Get the id of the player whose turn it is (None before the game)."""
        if self.status == RoomStatus.WAITING or not self.seating:
            return None
        return self.seating[self.turn_index]

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it is."""
        player_id = self.current_player_id()
        return self.players[player_id] if player_id else None

    def top_card(self) -> Optional[Card]:
        """Get the top card of the discard pile (if any)."""
        if self.discard_pile:
            return self.discard_pile[-1]
        return None

    # -------------------------------------------------------------------------
    # Client views
    # -------------------------------------------------------------------------

    def player_list(self) -> list[dict]:
        """
        Get the lobby roster for client display.

        Never includes hands.
        """
        return [
            {
                "id": p.id,
                "name": p.name,
                "avatar": p.avatar,
                "connected": p.connected,
                "isHost": p.id == self.host_id,
            }
            for p in (self.players[pid] for pid in self.seating)
        ]

    def get_state(self, for_player_id: Optional[str], reveal_all: bool = False) -> dict:
        """
        Build the projection of this room for one viewer.

        Every roster entry carries a card count; only the viewer's own entry
        carries the hand, unless reveal_all is set (privileged observers).

        Args:
            for_player_id: The player who will receive this state, or None
                for an observer.
            reveal_all: Include every member's hand.

        Returns:
            Dict suitable for JSON serialization.
        """
        roster = []
        for pid in self.seating:
            player = self.players[pid]
            entry = {
                "id": player.id,
                "name": player.name,
                "avatar": player.avatar,
                "connected": player.connected,
                "isHost": player.id == self.host_id,
                "cardCount": len(player.hand),
            }
            if reveal_all or pid == for_player_id:
                entry["hand"] = [card.to_dict() for card in player.hand]
            roster.append(entry)

        top = self.top_card()
        return {
            "roomCode": self.code,
            "status": self.status.value,
            "hostId": self.host_id,
            "currentPlayerId": self.current_player_id(),
            "topCard": top.to_dict() if top else None,
            "activeColor": self.active_color.value if self.active_color else None,
            "direction": self.direction,
            "pendingDraws": self.pending_draws,
            "reverseStackCount": self.reverse_stack_count,
            "roster": roster,
            "winner": self.winner,
            "endReason": self.end_reason,
        }


class RoomManager:
    """
    Registry of all active game rooms.

    Provides room creation with unique codes, membership actions and
    lookup. A single RoomManager instance is owned by the server and handed
    to the session handlers; nothing else holds a long-lived reference.

    Membership methods are synchronous validate-then-apply steps. Callers
    that may race (the WebSocket handlers) hold room.lock around them.
    """

    def __init__(
        self,
        max_players: int = MAX_PLAYERS,
        min_players: int = MIN_PLAYERS_TO_START,
        code_length: int = ROOM_CODE_LENGTH,
    ) -> None:
        """Initialize an empty room registry."""
        self.rooms: dict[str, Room] = {}
        self.max_players = max_players
        self.min_players = min_players
        self.code_length = code_length

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code."""
        for _ in range(max_attempts):
            code = "".join(random.choices(string.ascii_uppercase, k=self.code_length))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def _generate_player_id(self, room: Optional[Room] = None) -> str:
        """Generate a player id not already seated in the room."""
        alphabet = string.ascii_lowercase + string.digits
        while True:
            player_id = "p_" + "".join(random.choices(alphabet, k=PLAYER_ID_LENGTH))
            if room is None or player_id not in room.players:
                return player_id

    def get_room(self, code: str) -> Optional[Room]:
        """
        Get a room by its code (case-insensitive).

        Args:
            code: The room code.

        Returns:
            The Room if found, None otherwise.
        """
        if not code:
            return None
        return self.rooms.get(code.upper())

    def require_room(self, code: str) -> Room:
        """Get a room by code or raise RoomError(ROOM_NOT_FOUND)."""
        room = self.get_room(code)
        if room is None:
            raise RoomError(ErrorCode.ROOM_NOT_FOUND)
        return room

    def remove_room(self, code: str) -> None:
        """
        Delete a room.

        Args:
            code: The room code to remove.
        """
        if code in self.rooms:
            del self.rooms[code]
            logger.info(f"Room {code} removed")

    def find_player_room(self, player_id: str) -> Optional[Room]:
        """
        Find which room a player is in.

        Args:
            player_id: The player ID to search for.

        Returns:
            The Room containing the player, or None.
        """
        for room in self.rooms.values():
            if player_id in room.players:
                return room
        return None

    # -------------------------------------------------------------------------
    # Membership actions
    # -------------------------------------------------------------------------

    def create(self, name: str, avatar: str) -> JoinResult:
        """
        Create a room with the caller as its only member and host.

        Args:
            name: Host display name.
            avatar: Host avatar token.

        Returns:
            JoinResult with the new room code and host player id.
        """
        code = self._generate_code()
        room = Room(code=code)
        player = Player(id=self._generate_player_id(room), name=name, avatar=avatar)
        room.add_player(player)
        self.rooms[code] = room
        logger.info(f"Room {code} created by {player.id}")
        return JoinResult(code, player.id)

    def join(self, room_code: str, name: str, avatar: str) -> JoinResult:
        """
        Seat a new player at the end of the seating order.

        Raises:
            RoomError: ROOM_NOT_FOUND, ROOM_FULL or GAME_ALREADY_STARTED.
        """
        room = self.require_room(room_code)

        if len(room.seating) >= self.max_players:
            raise RoomError(ErrorCode.ROOM_FULL)

        if room.status != RoomStatus.WAITING:
            raise RoomError(ErrorCode.GAME_ALREADY_STARTED)

        player = Player(id=self._generate_player_id(room), name=name, avatar=avatar)
        room.add_player(player)
        logger.info(f"Player {player.id} joined room {room.code} ({len(room.seating)} seated)")
        return JoinResult(room.code, player.id)

    def leave(self, room_code: str, player_id: str) -> Optional[Player]:
        """
        Remove a member; destroy the room if it becomes empty.

        Unknown rooms and players are ignored.

        Returns:
            The removed Player, or None if nothing was removed.
        """
        room = self.get_room(room_code)
        if room is None:
            return None

        previous_host = room.host_id
        was_playing = room.status == RoomStatus.PLAYING
        player = room.remove_player(player_id)
        if player is None:
            return None

        if room.is_empty():
            self.remove_room(room.code)
            return player

        if room.host_id != previous_host:
            logger.info(f"Host of room {room.code} transferred to {room.host_id}")

        if room.status == RoomStatus.PLAYING:
            # game imports room at module level, so this import is deferred
            from game import settle_turn
            settle_turn(room)
        elif was_playing and room.status == RoomStatus.FINISHED:
            logger.info(f"Room {room.code} finished: {room.winner} is the last player standing")

        logger.info(f"Player {player_id} left room {room.code}")
        return player

    def kick(self, room_code: str, player_id: str) -> Optional[Player]:
        """Administratively remove a member (same semantics as leave)."""
        player = self.leave(room_code, player_id)
        if player:
            logger.info(f"Player {player_id} kicked from room {room_code.upper()}")
        return player

    def disconnect(self, room_code: str, player_id: str) -> None:
        """
        Mark a member as disconnected.

        Seating, hand and pointer are untouched. A pending draw penalty owed
        by the disconnecting turn-holder is cleared so the next player does
        not inherit it. Unknown rooms and players are ignored.
        """
        room = self.get_room(room_code)
        if room is None:
            return

        player = room.get_player(player_id)
        if player is None:
            return

        player.connected = False
        if room.current_player_id() == player_id and room.status == RoomStatus.PLAYING:
            room.pending_draws = 0
        logger.info(f"Player {player_id} disconnected from room {room.code}")

    def reconnect(self, room_code: str, player_id: str) -> Player:
        """
        Mark a member as connected again.

        Only the connectivity flag changes.

        Raises:
            RoomError: ROOM_NOT_FOUND or PLAYER_NOT_FOUND.
        """
        room = self.require_room(room_code)
        player = room.get_player(player_id)
        if player is None:
            raise RoomError(ErrorCode.PLAYER_NOT_FOUND)

        player.connected = True
        logger.info(f"Player {player_id} reconnected to room {room.code}")
        return player

    def start_game(self, room_code: str, requester_id: str) -> Room:
        """
        Start the game: deal hands and flip the room to PLAYING.

        Raises:
            RoomError: ROOM_NOT_FOUND, NOT_HOST, NOT_ENOUGH_PLAYERS or
                ALREADY_STARTED.
        """
        room = self.require_room(room_code)

        if room.host_id != requester_id:
            raise RoomError(ErrorCode.NOT_HOST)

        if len(room.seating) < self.min_players:
            raise RoomError(
                ErrorCode.NOT_ENOUGH_PLAYERS,
                f"Need at least {self.min_players} players to start",
            )

        if room.status != RoomStatus.WAITING:
            raise RoomError(ErrorCode.ALREADY_STARTED)

        # game imports room at module level, so this import is deferred
        from game import deal
        deal(room)
        logger.info(f"Game started in room {room.code} with {len(room.seating)} players")
        return room
