"""
Admin service for privileged observers.

An admin session is opened by a WebSocket connection that presented the
configured ADMIN_TOKEN. Each session has four powers, all disabled until
toggled on:

    seeAllHands      - request an unredacted snapshot of any room
    manipulateCards  - give/remove cards, replace the discard top
    controlTurns     - skip the turn, reverse direction, force draws,
                       move the turn pointer
    roomControl      - kick players, force-start, end the game

Mutations here are thin callers of the same room/engine operations the
players use. Callers hold room.lock around them, and every method
validates before it mutates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import game
from errors import AdminError, ErrorCode, RoomError, TurnError
from logging_config import get_logger
from models.cards import Card, WildCard, card_color
from room import Player, Room, RoomManager, RoomStatus

logger = get_logger(__name__)

POWERS = ("seeAllHands", "manipulateCards", "controlTurns", "roomControl")

# A forced start still needs someone to take turns against
MIN_PLAYERS_FORCE_START = 2


@dataclass
class AdminSession:
    """State for one privileged connection."""

    session_id: str
    watched_room: Optional[str] = None
    powers: dict[str, bool] = field(default_factory=lambda: {p: False for p in POWERS})
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AdminService:
    """
    Admin powers and privileged room mutations.

    Provides:
    - Session and power management
    - Room listing
    - Card manipulation, turn control and room control
    """

    def __init__(self, room_manager: RoomManager):
        """
        Initialize admin service.

        Args:
            room_manager: The server's room registry.
        """
        self.room_manager = room_manager
        self._sessions: dict[str, AdminSession] = {}

    # -------------------------------------------------------------------------
    # Sessions & powers
    # -------------------------------------------------------------------------

    def create_session(self, session_id: str) -> AdminSession:
        session = AdminSession(session_id=session_id)
        self._sessions[session_id] = session
        logger.info(f"Admin session {session_id} opened")
        return session

    def close_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None):
            logger.info(f"Admin session {session_id} closed")

    def get_session(self, session_id: str) -> AdminSession:
        """
        Get an admin session.

        Raises:
            AdminError: NOT_AUTHORIZED if the session does not exist.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise AdminError(ErrorCode.NOT_AUTHORIZED)
        return session

    def toggle_power(self, session_id: str, power: str) -> bool:
        """
        Flip one power on or off.

        Returns:
            The power's new state.
        """
        session = self.get_session(session_id)
        if power not in session.powers:
            raise AdminError(ErrorCode.INVALID_MESSAGE, f"Unknown power: {power}")
        session.powers[power] = not session.powers[power]
        logger.info(f"Admin {session_id} set {power}={session.powers[power]}")
        return session.powers[power]

    def has_power(self, session_id: str, power: str) -> bool:
        session = self._sessions.get(session_id)
        return bool(session and session.powers.get(power))

    def require_power(self, session_id: str, power: str) -> None:
        """
        Raise unless the session has the power enabled.

        Raises:
            AdminError: NOT_AUTHORIZED or POWER_DISABLED.
        """
        self.get_session(session_id)
        if not self.has_power(session_id, power):
            raise AdminError(ErrorCode.POWER_DISABLED, f'Power "{power}" is not enabled')

    def set_watched_room(self, session_id: str, room_code: Optional[str]) -> None:
        self.get_session(session_id).watched_room = room_code

    def session_count(self) -> int:
        return len(self._sessions)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_rooms(self) -> list[dict]:
        """
        Summarize every active room.

        Returns:
            List of dicts with code, status, player count, host and age.
        """
        return [
            {
                "code": room.code,
                "status": room.status.value,
                "playerCount": len(room.seating),
                "connectedCount": room.connected_count(),
                "hostId": room.host_id,
                "createdAt": room.created_at.isoformat(),
            }
            for room in self.room_manager.rooms.values()
        ]

    # -------------------------------------------------------------------------
    # Card manipulation
    # -------------------------------------------------------------------------

    def _require_player(self, room: Room, player_id: str) -> Player:
        player = room.get_player(player_id)
        if player is None:
            raise RoomError(ErrorCode.PLAYER_NOT_FOUND)
        return player

    def give_card(self, room: Room, player_id: str, card: Optional[Card] = None) -> Card:
        """Append a card (generated if not given) to a player's hand."""
        player = self._require_player(room, player_id)
        card = card or game.generate_card()
        player.hand.append(card)
        logger.with_context(room_code=room.code).info(f"Admin gave {card.card_type.value} to {player_id}")
        return card

    def remove_card(self, room: Room, player_id: str, card_index: int) -> Card:
        """Remove a card from a player's hand by index."""
        player = self._require_player(room, player_id)
        if card_index < 0 or card_index >= len(player.hand):
            raise TurnError(ErrorCode.INVALID_CARD_INDEX)
        card = player.hand.pop(card_index)
        logger.with_context(room_code=room.code).info(f"Admin removed {card.card_type.value} from {player_id}")
        return card

    def set_top_card(self, room: Room, card: Card) -> Card:
        """
        Replace the top of the discard pile.

        The active color follows the card; a wild uses its chosenColor, and
        any other colorless card gets a random color.
        """
        if room.status != RoomStatus.PLAYING:
            raise TurnError(ErrorCode.GAME_NOT_IN_PROGRESS)

        color = card_color(card)
        if color is None:
            if isinstance(card, WildCard) and card.resolved_color:
                color = card.resolved_color
            else:
                color = game.random_color()

        if room.discard_pile:
            room.discard_pile[-1] = card
        else:
            room.discard_pile.append(card)
        room.active_color = color
        logger.info(f"Admin set top card in room {room.code} to {card.card_type.value}")
        return card

    # -------------------------------------------------------------------------
    # Turn control
    # -------------------------------------------------------------------------

    def _require_playing(self, room: Room) -> None:
        if room.status != RoomStatus.PLAYING:
            raise TurnError(ErrorCode.GAME_NOT_IN_PROGRESS)

    def skip_turn(self, room: Room) -> None:
        self._require_playing(room)
        skipped = room.current_player_id()
        game.pass_turn(room)
        logger.info(f"Admin skipped {skipped} in room {room.code}")

    def reverse_direction(self, room: Room) -> None:
        self._require_playing(room)
        room.direction = -room.direction
        logger.info(f"Admin reversed direction in room {room.code} (now {room.direction:+d})")

    def force_draw(self, room: Room, player_id: str, count: int) -> list[Card]:
        """Append count generated cards to a player's hand (turn unchanged)."""
        player = self._require_player(room, player_id)
        cards = [game.generate_card() for _ in range(count)]
        player.hand.extend(cards)
        logger.with_context(room_code=room.code, player_id=player_id).info(f"Admin forced a draw of {count}")
        return cards

    def set_current_player(self, room: Room, player_id: str) -> None:
        self._require_playing(room)
        self._require_player(room, player_id)
        room.turn_index = room.seat_of(player_id)
        logger.info(f"Admin gave the turn to {player_id} in room {room.code}")

    # -------------------------------------------------------------------------
    # Room control
    # -------------------------------------------------------------------------

    def kick_player(self, room: Room, player_id: str) -> Player:
        self._require_player(room, player_id)
        return self.room_manager.kick(room.code, player_id)

    def force_start(self, room: Room) -> None:
        """Start the game regardless of host or the usual player minimum."""
        if room.status != RoomStatus.WAITING:
            raise RoomError(ErrorCode.ALREADY_STARTED)
        if len(room.seating) < MIN_PLAYERS_FORCE_START:
            raise RoomError(
                ErrorCode.NOT_ENOUGH_PLAYERS,
                f"Need at least {MIN_PLAYERS_FORCE_START} players to start",
            )
        game.deal(room)
        logger.info(f"Admin force-started room {room.code}")

    def end_game(self, room: Room) -> None:
        if room.status == RoomStatus.FINISHED:
            raise TurnError(ErrorCode.GAME_NOT_IN_PROGRESS)
        game.end_game(room)
